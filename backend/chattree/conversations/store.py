"""Conversation persistence: one JSON document per conversation."""

import logging

import aiosqlite
from pydantic import ValidationError

from chattree.db.connection import Database
from chattree.models import Conversation

logger = logging.getLogger(__name__)


class ConversationStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(self, conversation: Conversation) -> None:
        """Insert or replace the whole conversation document."""
        try:
            await self._db.execute(
                """INSERT INTO conversations
                   (conversation_id, title, model, document, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(conversation_id) DO UPDATE SET
                       title = excluded.title,
                       model = excluded.model,
                       document = excluded.document,
                       updated_at = excluded.updated_at""",
                (
                    conversation.id,
                    conversation.title,
                    conversation.model,
                    conversation.model_dump_json(),
                    conversation.created_at.isoformat(),
                    conversation.updated_at.isoformat(),
                ),
            )
        except aiosqlite.Error as e:
            raise StorageError(conversation.id, str(e)) from e
        logger.debug("Saved conversation %s", conversation.id)

    async def load(self, conversation_id: str) -> Conversation | None:
        row = await self._db.fetchone(
            "SELECT document FROM conversations WHERE conversation_id = ?",
            (conversation_id,),
        )
        if row is None:
            return None
        try:
            return Conversation.model_validate_json(row["document"])
        except ValidationError as e:
            raise StorageError(conversation_id, f"Corrupt conversation document: {e}") from e

    async def list_summaries(self) -> list[aiosqlite.Row]:
        """Summary rows, most recently updated first."""
        return await self._db.fetchall(
            "SELECT conversation_id, title, model, created_at, updated_at "
            "FROM conversations ORDER BY updated_at DESC"
        )

    async def delete(self, conversation_id: str) -> bool:
        deleted = await self._db.execute(
            "DELETE FROM conversations WHERE conversation_id = ?", (conversation_id,)
        )
        return deleted > 0


class StorageError(Exception):
    def __init__(self, conversation_id: str, detail: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Storage error for conversation {conversation_id}: {detail}")
