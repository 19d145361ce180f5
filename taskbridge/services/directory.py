"""Thread -> session directory backed by the thread_sessions table.

The directory is the only source of truth for which session a Discord
thread drives and whether the thread is muted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aiosqlite

from taskbridge import db
from taskbridge.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ThreadRecord:
    """One thread's binding to a remote session."""

    thread_id: str
    session_id: str
    muted: bool = False
    created_at: str = ""

    @classmethod
    def from_row(cls, row: dict) -> ThreadRecord:
        return cls(
            thread_id=row["thread_id"],
            session_id=row["session_id"],
            muted=bool(row["muted"]),
            created_at=row["created_at"],
        )


class ThreadDirectory:
    """Get/create/update-mute access to thread records."""

    async def get(self, thread_id: str) -> ThreadRecord | None:
        """Return the record for a thread, or None.

        A lookup miss and a database error look the same to callers; the
        error is only logged.
        """
        try:
            row = await db.fetchone(
                "SELECT * FROM thread_sessions WHERE thread_id = ?", (thread_id,)
            )
        except (aiosqlite.Error, RuntimeError):
            logger.exception("Failed to look up thread %s", thread_id)
            return None
        if row is None:
            logger.debug("No session recorded for thread %s", thread_id)
            return None
        return ThreadRecord.from_row(row)

    async def create(self, thread_id: str, session_id: str) -> ThreadRecord:
        """Persist a new unmuted record.

        Raises:
            PersistenceError: On any database failure, including a thread
                that already has a record.
        """
        record = ThreadRecord(
            thread_id=thread_id,
            session_id=session_id,
            muted=False,
            created_at=db.now_iso(),
        )
        try:
            await db.execute(
                """INSERT INTO thread_sessions
                   (thread_id, session_id, muted, created_at)
                   VALUES (?, ?, 0, ?)""",
                (record.thread_id, record.session_id, record.created_at),
            )
        except (aiosqlite.Error, RuntimeError) as e:
            raise PersistenceError(
                f"Failed to store session {session_id} for thread {thread_id}: {e}"
            ) from e
        logger.info("Stored session mapping: %s -> %s", thread_id, session_id)
        return record

    async def set_muted(self, thread_id: str, muted: bool) -> None:
        """Update the mute flag of an existing record.

        Raises:
            PersistenceError: On database failure or if the thread has no record.
        """
        try:
            cursor = await db.execute(
                "UPDATE thread_sessions SET muted = ? WHERE thread_id = ?",
                (1 if muted else 0, thread_id),
            )
        except (aiosqlite.Error, RuntimeError) as e:
            raise PersistenceError(
                f"Failed to update mute state for thread {thread_id}: {e}"
            ) from e
        if cursor.rowcount == 0:
            raise PersistenceError(f"No session recorded for thread {thread_id}")
        logger.info("Thread %s %s", thread_id, "muted" if muted else "unmuted")

    async def list_all(self) -> list[ThreadRecord]:
        """Return every record, oldest first.

        Raises:
            PersistenceError: On database failure.
        """
        try:
            rows = await db.fetchall(
                "SELECT * FROM thread_sessions ORDER BY created_at"
            )
        except (aiosqlite.Error, RuntimeError) as e:
            raise PersistenceError(f"Failed to list thread sessions: {e}") from e
        return [ThreadRecord.from_row(row) for row in rows]
