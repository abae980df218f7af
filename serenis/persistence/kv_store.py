"""Key-value storage backends.

The session layer needs only a string store with get/set/delete under fixed
keys. Two backends implement the KeyValueStore protocol:

- SqliteKeyValueStore: durable, one row per key (aiosqlite)
- MemoryKeyValueStore: process-local dict, for tests and ephemeral runs

Backends raise on failure; the session layer decides what to absorb.
"""

from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

import aiosqlite
import structlog

from serenis.core.exceptions import StorageError

log = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """Protocol for string key-value stores."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Overwrite the value stored under key."""
        ...

    async def delete(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error."""
        ...


class SqliteKeyValueStore:
    """Key-value store backed by the kv_store table.

    Opens a connection per call; writes are
    last-write-wins with a single writer.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)

    async def get(self, key: str) -> Optional[str]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read key {key!r}: {e}") from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO kv_store (key, value, updated_at) "
                    "VALUES (?, ?, datetime('now')) "
                    "ON CONFLICT(key) DO UPDATE SET "
                    "value = excluded.value, updated_at = excluded.updated_at",
                    (key, value),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to write key {key!r}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to delete key {key!r}: {e}") from e


class MemoryKeyValueStore:
    """Dict-backed store. Nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)
