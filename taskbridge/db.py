"""Database layer using aiosqlite with raw SQL.

Holds the thread -> session bindings. Uses WAL mode so reads from the
monitors never wait on a mute/unmute write.
All queries use parameterized ? placeholders, no string interpolation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

logger = logging.getLogger(__name__)

# Module-level connection, initialized once at startup
_db: aiosqlite.Connection | None = None


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS thread_sessions (
    thread_id       TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    muted           INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_thread_sessions_session ON thread_sessions(session_id);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Initialize database connection and create schema.

    Args:
        db_path: Path to the SQLite database file, or ":memory:".

    Returns:
        The aiosqlite connection object.
    """
    global _db

    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(db_path)
    _db.row_factory = aiosqlite.Row

    # Execute schema (each statement separately for WAL pragma)
    for statement in SCHEMA_SQL.strip().split(";"):
        statement = statement.strip()
        if statement:
            await _db.execute(statement)

    await _db.commit()

    logger.info("Database initialized at %s", db_path)
    return _db


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db:
        await _db.close()
        _db = None
        logger.info("Database connection closed")


def get_db() -> aiosqlite.Connection:
    """Get the current database connection.

    Raises:
        RuntimeError: If the database has not been initialized.
    """
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db


async def execute(sql: str, params: tuple[Any, ...] = ()) -> aiosqlite.Cursor:
    """Execute a SQL statement with parameters."""
    db = get_db()
    cursor = await db.execute(sql, params)
    await db.commit()
    return cursor


async def fetchone(sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
    """Execute a query and return a single row as a dict, or None."""
    db = get_db()
    cursor = await db.execute(sql, params)
    row = await cursor.fetchone()
    if row is None:
        return None
    return dict(row)


async def fetchall(sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
    """Execute a query and return all rows as a list of dicts."""
    db = get_db()
    cursor = await db.execute(sql, params)
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


def now_iso() -> str:
    """Return current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()
