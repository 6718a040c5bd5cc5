"""Session state manager.

Owns session lifecycle, history, steps and the per-session image store. Live
sessions are cached in memory and written through to a ``StorageProvider``
on ``save_session``; callers outside the orchestrator only ever receive
snapshots.
"""
from __future__ import annotations

import copy
import time
import uuid
from typing import Any

from image_agent.config import AgentConfig
from image_agent.errors import SessionNotFoundError
from image_agent.logging import get_logger
from image_agent.models import (
    AgentSession,
    AgentStep,
    ChatMessage,
    ImageArtifact,
    ToolExecutionResult,
)
from image_agent.state.storage import InMemoryStorageProvider, StorageProvider
from image_agent.tools.references import uploaded_key

logger = get_logger("state.manager")


def new_session_id() -> str:
    return f"agent_{uuid.uuid4().hex[:12]}"


class StateManager:
    """
    Manages agent sessions.

    Example:
        manager = StateManager()
        session = manager.create_session("user-1", AgentConfig(max_steps=5))
        snapshot = manager.get_session(session.session_id)
    """

    def __init__(self, storage: StorageProvider | None = None) -> None:
        self.storage = storage or InMemoryStorageProvider()
        self._active: dict[str, AgentSession] = {}
        self._last_activity: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        config: AgentConfig | None = None,
        session_id: str | None = None,
    ) -> AgentSession:
        session = AgentSession(
            session_id=session_id or new_session_id(),
            user_id=user_id,
            config=config or AgentConfig(),
        )
        self._active[session.session_id] = session
        self._touch(session.session_id)
        self.storage.save(session.session_id, session.to_dict())
        logger.info("Created session %s for user %s", session.session_id, user_id)
        return copy.deepcopy(session)

    def get_session(self, session_id: str) -> AgentSession:
        """Snapshot of a session. Repeated calls without writes return equal state."""
        return copy.deepcopy(self.load_session(session_id))

    def load_session(self, session_id: str) -> AgentSession:
        """The live session object, loading it from storage if not cached.

        Only the session's owning orchestrator loop may mutate the returned
        object.
        """
        session = self._active.get(session_id)
        if session is not None:
            return session
        data = self.storage.load(session_id)
        if data is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)
        session = AgentSession.from_dict(data)
        self._active[session_id] = session
        self._touch(session_id)
        return session

    def save_session(self, session_id: str) -> None:
        session = self._require(session_id)
        session.updated_at = time.time()
        self._touch(session_id)
        self.storage.save(session_id, session.to_dict())

    def update_session(self, session_id: str, **updates: Any) -> AgentSession:
        """Set attributes on the live session (status, error, ...)."""
        session = self._require(session_id)
        for key, value in updates.items():
            if not hasattr(session, key):
                raise AttributeError(f"AgentSession has no attribute '{key}'")
            setattr(session, key, value)
        session.updated_at = time.time()
        self._touch(session_id)
        return session

    def delete_session(self, session_id: str) -> bool:
        cached = self._active.pop(session_id, None) is not None
        self._last_activity.pop(session_id, None)
        stored = self.storage.delete(session_id)
        if cached or stored:
            logger.info("Deleted session %s", session_id)
        return cached or stored

    def get_user_sessions(self, user_id: str) -> list[AgentSession]:
        """All sessions of a user, newest activity first. Cached state wins over storage."""
        sessions = []
        for data in self.storage.list(user_id):
            live = self._active.get(data["session_id"])
            sessions.append(copy.deepcopy(live) if live else AgentSession.from_dict(data))
        return sessions

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def add_message(self, session_id: str, message: ChatMessage) -> None:
        self._require(session_id).messages.append(message)
        self._touch(session_id)

    def add_step(self, session_id: str, step: AgentStep) -> None:
        session = self._require(session_id)
        session.steps.append(step)
        session.token_usage = session.token_usage + step.token_usage
        session.total_credits_used += step.credits_used
        self._touch(session_id)

    def get_tool_result(self, session_id: str, call_id: str) -> ToolExecutionResult | None:
        return self._require(session_id).tool_results().get(call_id)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def add_image(self, session_id: str, image: ImageArtifact) -> None:
        self._require(session_id).images[image.key] = image
        self._touch(session_id)

    def add_uploads(self, session_id: str, urls: list[str]) -> list[str]:
        """Store uploaded images and return their keys (``uploaded:<n>``)."""
        session = self._require(session_id)
        start = sum(1 for img in session.images.values() if img.source == "upload")
        keys = []
        for offset, url in enumerate(urls):
            key = uploaded_key(start + offset)
            mime = url[5:url.index(";")] if url.startswith("data:") and ";" in url else None
            session.images[key] = ImageArtifact(key=key, url=url, source="upload", mime_type=mime)
            keys.append(key)
        self._touch(session_id)
        return keys

    def get_image(self, session_id: str, key: str) -> ImageArtifact | None:
        return self._require(session_id).images.get(key)

    def get_images(self, session_id: str) -> list[ImageArtifact]:
        return list(self._require(session_id).images.values())

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup_inactive_sessions(self, max_inactive_seconds: float = 30 * 60) -> int:
        """Evict idle sessions from the in-memory cache. Storage is untouched."""
        now = time.time()
        stale = [
            sid
            for sid, last in self._last_activity.items()
            if now - last > max_inactive_seconds
            and sid in self._active
            and not self._active[sid].status.is_active
        ]
        for sid in stale:
            del self._active[sid]
            del self._last_activity[sid]
        if stale:
            logger.debug("Evicted %d inactive sessions from cache", len(stale))
        return len(stale)

    def get_stats(self) -> dict[str, int]:
        return {
            "activeSessions": len(self._active),
            "totalImages": sum(len(s.images) for s in self._active.values()),
            "totalSteps": sum(len(s.steps) for s in self._active.values()),
        }

    def _require(self, session_id: str) -> AgentSession:
        return self.load_session(session_id)

    def _touch(self, session_id: str) -> None:
        self._last_activity[session_id] = time.time()
