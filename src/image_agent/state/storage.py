"""Storage providers for agent sessions.

Providers persist sessions as plain dicts (``AgentSession.to_dict()``); the
state manager is the only caller.
"""
from __future__ import annotations

import copy
import json
import sqlite3
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from image_agent.logging import get_logger

logger = get_logger("state.storage")


class StorageProvider(ABC):
    """save/load/list/delete over serialized sessions."""

    @abstractmethod
    def save(self, session_id: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    def load(self, session_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    def list(self, user_id: str) -> list[dict[str, Any]]:
        """All sessions of one user, most recently updated first."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Delete a session. Returns True if it existed."""


class InMemoryStorageProvider(StorageProvider):
    """Process-lifetime storage for development and tests.

    Stored dicts are deep-copied in and out so callers never share state with
    the store.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        self._sessions[session_id] = copy.deepcopy(data)

    def load(self, session_id: str) -> dict[str, Any] | None:
        data = self._sessions.get(session_id)
        return copy.deepcopy(data) if data is not None else None

    def list(self, user_id: str) -> list[dict[str, Any]]:
        sessions = [copy.deepcopy(s) for s in self._sessions.values() if s.get("user_id") == user_id]
        sessions.sort(key=lambda s: s.get("updated_at", 0), reverse=True)
        return sessions

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def cleanup_old_sessions(self, max_age_seconds: float) -> int:
        """Drop sessions not updated within ``max_age_seconds``. Returns count removed."""
        cutoff = time.time() - max_age_seconds
        stale = [sid for sid, s in self._sessions.items() if s.get("updated_at", 0) < cutoff]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.info("Removed %d stale sessions", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)


class SQLiteStorageProvider(StorageProvider):
    """SQLite-backed durable session storage."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            db_dir = Path.home() / ".image-agent"
            db_dir.mkdir(parents=True, exist_ok=True)
            db_path = db_dir / "sessions.db"
        self._db_path = str(db_path)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database tables."""
        with sqlite3.connect(self._db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agent_sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    status TEXT DEFAULT 'idle',
                    created_at REAL,
                    updated_at REAL,
                    data TEXT DEFAULT '{}'
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_agent_sessions_user ON agent_sessions (user_id)"
            )
            conn.commit()

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        now = time.time()
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(
                """INSERT INTO agent_sessions (id, user_id, status, created_at, updated_at, data)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                   status=excluded.status, updated_at=excluded.updated_at, data=excluded.data""",
                (
                    session_id,
                    data.get("user_id", ""),
                    data.get("status", "idle"),
                    data.get("created_at", now),
                    data.get("updated_at", now),
                    json.dumps(data, default=str),
                ),
            )
            conn.commit()

    def load(self, session_id: str) -> dict[str, Any] | None:
        with sqlite3.connect(self._db_path) as conn:
            row = conn.execute(
                "SELECT data FROM agent_sessions WHERE id = ?", (session_id,)
            ).fetchone()
            return json.loads(row[0]) if row else None

    def list(self, user_id: str) -> list[dict[str, Any]]:
        with sqlite3.connect(self._db_path) as conn:
            rows = conn.execute(
                "SELECT data FROM agent_sessions WHERE user_id = ? ORDER BY updated_at DESC",
                (user_id,),
            ).fetchall()
            return [json.loads(r[0]) for r in rows]

    def delete(self, session_id: str) -> bool:
        with sqlite3.connect(self._db_path) as conn:
            cursor = conn.execute("DELETE FROM agent_sessions WHERE id = ?", (session_id,))
            conn.commit()
            return cursor.rowcount > 0
