"""Content-addressed file store for message attachments."""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from pathlib import Path


def file_reference(data: bytes) -> str:
    """The reference a FileStore returns for ``data``."""
    return hashlib.sha256(data).hexdigest()


class FileStore(ABC):
    @abstractmethod
    async def store(self, data: bytes) -> str:
        """Persist ``data`` and return ``file_reference(data)``."""
        ...

    @abstractmethod
    async def load(self, sha: str) -> bytes:
        """Raises FileNotFoundError for unknown references."""
        ...


class LocalFileStore(FileStore):
    """Stores each blob once under ``<root>/<sha>``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    async def store(self, data: bytes) -> str:
        sha = file_reference(data)
        await asyncio.to_thread(self._write, sha, data)
        return sha

    async def load(self, sha: str) -> bytes:
        if not sha.isalnum():
            raise FileNotFoundError(sha)
        return await asyncio.to_thread((self._root / sha).read_bytes)

    def _write(self, sha: str, data: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._root / sha
        if not path.exists():
            path.write_bytes(data)
