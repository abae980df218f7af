"""
SQLite file backing the local key-value store.

The schema (schema.sql) is a single ``kv_store`` table created with
``IF NOT EXISTS``; record-level migrations live in serenis.domain.session.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import aiosqlite
import structlog

from serenis.core.config import settings

log = structlog.get_logger(__name__)

SCHEMA_FILE = Path(__file__).parent / "schema.sql"


def _resolve(db_path: Optional[Path]) -> Path:
    return Path(db_path or settings.database_path)


async def init_database(db_path: Optional[Path] = None) -> Path:
    """Create the database file and table if missing. Existing data is kept.

    Returns:
        Path of the initialized database

    Raises:
        FileNotFoundError: If schema.sql is not packaged alongside this module
    """
    path = _resolve(db_path)
    if not SCHEMA_FILE.exists():
        log.error("schema_file_not_found", path=str(SCHEMA_FILE))
        raise FileNotFoundError(f"Schema file not found: {SCHEMA_FILE}")

    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(path) as db:
        await db.execute("PRAGMA journal_mode = WAL")
        await db.executescript(SCHEMA_FILE.read_text())
        await db.commit()

    log.info("database_initialized", path=str(path))
    return path


async def check_database_health(db_path: Optional[Path] = None) -> Dict[str, Any]:
    """Key count and integrity of the store, for the health endpoints."""
    path = _resolve(db_path)
    try:
        async with aiosqlite.connect(path) as db:
            async with db.execute("SELECT COUNT(*) FROM kv_store") as cursor:
                (key_count,) = await cursor.fetchone()
            async with db.execute("PRAGMA integrity_check") as cursor:
                integrity = await cursor.fetchone()
    except aiosqlite.Error as e:
        log.error("database_health_check_failed", path=str(path), error=str(e))
        return {"status": "unhealthy", "error": str(e), "path": str(path)}

    return {
        "status": "healthy",
        "key_count": key_count,
        "integrity": integrity[0] if integrity else "unknown",
        "path": str(path),
    }
