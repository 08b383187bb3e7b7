"""SQLite access for the conversation store."""

import logging
from pathlib import Path

import aiosqlite

from chattree.db.schema import SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_FILE_PRAGMAS = ("journal_mode=WAL", "synchronous=NORMAL")
_PRAGMAS = ("busy_timeout=5000",)


class Database:
    """One aiosqlite connection. Writes commit immediately."""

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._conn = connection

    @classmethod
    async def connect(cls, path: str = "chattree.db") -> "Database":
        """Open ``path`` (``:memory:`` for a throwaway database) and bring its schema up to date."""
        if path != MEMORY:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        pragmas = _PRAGMAS if path == MEMORY else _FILE_PRAGMAS + _PRAGMAS
        for pragma in pragmas:
            await conn.execute(f"PRAGMA {pragma}")

        db = cls(conn)
        try:
            await db._migrate()
        except SchemaVersionError:
            await conn.close()
            raise
        return db

    async def schema_version(self) -> int:
        row = await self.fetchone("PRAGMA user_version")
        return row[0] if row is not None else 0

    async def _migrate(self) -> None:
        version = await self.schema_version()
        if version > SCHEMA_VERSION:
            raise SchemaVersionError(version)
        if version == SCHEMA_VERSION:
            return
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
        await self._conn.commit()
        logger.info("Database schema upgraded from version %d to %d", version, SCHEMA_VERSION)

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Run one write statement and commit. Returns the number of rows it changed."""
        async with self._conn.execute(sql, params) as cursor:
            changed = cursor.rowcount
        await self._conn.commit()
        return changed

    async def fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        async with self._conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def close(self) -> None:
        await self._conn.close()


class SchemaVersionError(Exception):
    def __init__(self, version: int) -> None:
        self.version = version
        super().__init__(
            f"Database schema version {version} is newer than this build supports ({SCHEMA_VERSION})"
        )
