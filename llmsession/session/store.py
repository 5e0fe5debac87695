"""
SQLite-backed session store.

Every session is one row: its full serialized form (``ChatSession.to_json``)
in ``payload`` and a handful of columns copied out of it so that listing
does not have to decode every payload.  Pending messages travel inside the
payload, so a session saved in the middle of a turn loads back as an
interrupted session ready for ``Orchestrator.resume_session``.

Dependencies: ``aiosqlite``.  Writes go through a single lock; SQLite in
WAL mode allows one writer at a time.

Schema versions are tracked with ``PRAGMA user_version`` and upgraded in
``init()``.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from llmsession.session.models import ChatSession

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 1

# version -> statements that bring the previous version up to it
MIGRATIONS: dict[int, tuple[str, ...]] = {
    1: (
        """CREATE TABLE sessions (
            session_id    TEXT PRIMARY KEY,
            title         TEXT NOT NULL DEFAULT '',
            state         TEXT NOT NULL,
            message_count INTEGER NOT NULL DEFAULT 0,
            pending_count INTEGER NOT NULL DEFAULT 0,
            created_at    TEXT NOT NULL,
            updated_at    TEXT NOT NULL,
            payload       TEXT NOT NULL
        )""",
        "CREATE INDEX idx_sessions_updated ON sessions(updated_at)",
    ),
}

_SUMMARY_COLUMNS = (
    "session_id",
    "title",
    "state",
    "message_count",
    "pending_count",
    "created_at",
    "updated_at",
)


class SessionStore:
    """
    Async SQLite store for chat sessions.

    Usage::

        async with SessionStore("~/.llmsession/sessions.db") as store:
            await store.save(session)
            session = await store.load(session_id)

    Parameters
    ----------
    db_path:
        Database file.  ``~`` is expanded and missing parent directories
        are created.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._conn: aiosqlite.Connection | None = None

    @property
    def _db(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SessionStore is not open; call init() first")
        return self._conn

    async def init(self) -> None:
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._upgrade()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> SessionStore:
        await self.init()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def get_schema_version(self) -> int:
        async with self._db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _upgrade(self) -> None:
        version = await self.get_schema_version()
        if version > SCHEMA_VERSION:
            raise RuntimeError(
                f"{self.db_path} has schema version {version}, newer than "
                f"supported version {SCHEMA_VERSION}"
            )
        while version < SCHEMA_VERSION:
            version += 1
            for stmt in MIGRATIONS[version]:
                await self._db.execute(stmt)
            # PRAGMA does not take bound parameters
            await self._db.execute(f"PRAGMA user_version = {int(version)}")
            await self._db.commit()
            logger.debug("Session store %s upgraded to schema %d", self.db_path, version)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def save(self, session: ChatSession) -> None:
        """Insert *session*, or replace the stored copy with the same id."""
        row = (
            session.session_id,
            session.title,
            session.state.value,
            len(session.messages),
            len(session.pending_messages),
            session.created_at.isoformat(),
            session.updated_at.isoformat(),
            session.to_json(),
        )
        async with self._lock:
            await self._db.execute(
                """INSERT INTO sessions (session_id, title, state, message_count,
                       pending_count, created_at, updated_at, payload)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET
                       title = excluded.title,
                       state = excluded.state,
                       message_count = excluded.message_count,
                       pending_count = excluded.pending_count,
                       updated_at = excluded.updated_at,
                       payload = excluded.payload""",
                row,
            )
            await self._db.commit()
        logger.debug(
            "Saved session %s (%s, %d pending)",
            session.session_id,
            session.state.value,
            len(session.pending_messages),
        )

    async def load(self, session_id: str) -> ChatSession | None:
        async with self._db.execute(
            "SELECT payload FROM sessions WHERE session_id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return ChatSession.from_json(row["payload"])

    async def list_sessions(self) -> list[dict[str, Any]]:
        """Summaries of all stored sessions, most recently updated first."""
        query = (
            f"SELECT {', '.join(_SUMMARY_COLUMNS)} FROM sessions "
            "ORDER BY updated_at DESC"
        )
        async with self._db.execute(query) as cursor:
            rows = await cursor.fetchall()
        return [{col: row[col] for col in _SUMMARY_COLUMNS} for row in rows]

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            cursor = await self._db.execute(
                "DELETE FROM sessions WHERE session_id = ?", (session_id,)
            )
            await self._db.commit()
        return cursor.rowcount > 0
