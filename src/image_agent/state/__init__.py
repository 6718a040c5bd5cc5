"""Session state: the state manager and its storage providers."""
from __future__ import annotations

from image_agent.state.manager import StateManager, new_session_id
from image_agent.state.storage import InMemoryStorageProvider, SQLiteStorageProvider, StorageProvider

__all__ = [
    "StateManager",
    "StorageProvider",
    "InMemoryStorageProvider",
    "SQLiteStorageProvider",
    "new_session_id",
]
