"""Tests for the state manager and storage providers."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from image_agent.config import AgentConfig
from image_agent.errors import SessionNotFoundError
from image_agent.models import (
    AgentSession,
    AgentStep,
    ChatMessage,
    ImageArtifact,
    SessionError,
    SessionStatus,
    TokenUsage,
    ToolCall,
    ToolExecution,
    ToolExecutionResult,
)
from image_agent.state.manager import StateManager, new_session_id
from image_agent.state.storage import InMemoryStorageProvider, SQLiteStorageProvider


def _populated_session() -> AgentSession:
    call = ToolCall(id="call_1", name="remove_background", arguments={"image_url": "UPLOADED_IMAGE"})
    execution = ToolExecution(tool_name="remove_background", call_id="call_1", arguments=dict(call.arguments))
    execution.finish(ToolExecutionResult(success=True, data={"image_ref": "step:0:tool:call_1"}, credits_used=1))
    assistant = ChatMessage(role="assistant", tool_calls=[call])
    return AgentSession(
        session_id="agent_abc123def456",
        user_id="user-1",
        config=AgentConfig(max_steps=3, available_tools=["remove_background"]),
        status=SessionStatus.COMPLETED,
        messages=[ChatMessage(role="user", content="hi", image_refs=["uploaded:0"]), assistant],
        steps=[AgentStep(step_index=0, assistant_message=assistant, tool_executions=[execution], token_usage=TokenUsage(10, 5))],
        total_credits_used=1,
        images={"uploaded:0": ImageArtifact(key="uploaded:0", url="data:image/png;base64,AAA")},
        error=SessionError(code="X", message="y"),
    )


class TestSessionIds:
    def test_format(self) -> None:
        session_id = new_session_id()
        assert session_id.startswith("agent_")
        assert len(session_id) == len("agent_") + 12


class TestStateManager:
    def test_create_and_get(self) -> None:
        manager = StateManager()
        created = manager.create_session("user-1", AgentConfig(max_steps=5))

        session = manager.get_session(created.session_id)

        assert session.status == SessionStatus.IDLE
        assert session.config.max_steps == 5
        assert session.messages == []

    def test_get_session_is_idempotent(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        manager.add_message(sid, ChatMessage(role="user", content="hello"))

        assert manager.get_session(sid) == manager.get_session(sid)

    def test_snapshots_are_isolated(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id

        snapshot = manager.get_session(sid)
        snapshot.messages.append(ChatMessage(role="user", content="sneaky"))

        assert manager.get_session(sid).messages == []

    def test_missing_session(self) -> None:
        with pytest.raises(SessionNotFoundError):
            StateManager().get_session("agent_nope")

    def test_delete(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id

        assert manager.delete_session(sid) is True
        assert manager.delete_session(sid) is False
        with pytest.raises(SessionNotFoundError):
            manager.get_session(sid)

    def test_user_sessions_newest_first(self) -> None:
        manager = StateManager()
        first = manager.create_session("user-1").session_id
        second = manager.create_session("user-1").session_id
        manager.create_session("user-2")
        manager.update_session(first, status=SessionStatus.COMPLETED)
        manager.save_session(first)

        sessions = manager.get_user_sessions("user-1")

        assert [s.session_id for s in sessions] == [first, second]

    def test_update_unknown_attribute(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        with pytest.raises(AttributeError):
            manager.update_session(sid, colour="blue")

    def test_add_step_accumulates_tokens(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        message = ChatMessage(role="assistant", content="ok")
        manager.add_step(sid, AgentStep(step_index=0, assistant_message=message, token_usage=TokenUsage(10, 5)))
        manager.add_step(sid, AgentStep(step_index=1, assistant_message=message, token_usage=TokenUsage(3, 2)))

        assert manager.get_session(sid).token_usage.total_tokens == 20

    def test_add_step_accumulates_successful_credits(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        step = AgentStep(step_index=0, assistant_message=ChatMessage(role="assistant"))
        paid = ToolExecution(tool_name="upscale_image", call_id="call_1")
        paid.finish(ToolExecutionResult(success=True, credits_used=2))
        failed = ToolExecution(tool_name="upscale_image", call_id="call_2")
        failed.finish(ToolExecutionResult.failure("boom", "TOOL_HANDLER_ERROR"))
        step.tool_executions.extend([paid, failed])

        manager.add_step(sid, step)

        assert manager.get_session(sid).total_credits_used == 2

    def test_uploads_numbered_across_turns(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id

        assert manager.add_uploads(sid, ["data:image/png;base64,A", "https://x/b.jpg"]) == ["uploaded:0", "uploaded:1"]
        assert manager.add_uploads(sid, ["https://x/c.jpg"]) == ["uploaded:2"]
        assert manager.get_image(sid, "uploaded:0").mime_type == "image/png"
        assert len(manager.get_images(sid)) == 3

    def test_tool_result_lookup(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        session = _populated_session()
        for step in session.steps:
            manager.add_step(sid, step)

        result = manager.get_tool_result(sid, "call_1")

        assert result is not None
        assert result.data == {"image_ref": "step:0:tool:call_1"}
        assert manager.get_tool_result(sid, "call_2") is None

    def test_cleanup_evicts_cache_but_keeps_storage(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        manager.add_message(sid, ChatMessage(role="user", content="hello"))
        manager.save_session(sid)
        manager._last_activity[sid] = time.time() - 3600

        assert manager.cleanup_inactive_sessions() == 1
        assert manager.get_stats()["activeSessions"] == 0
        assert manager.get_session(sid).messages[0].content == "hello"

    def test_cleanup_skips_running_sessions(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        manager.update_session(sid, status=SessionStatus.RUNNING)
        manager._last_activity[sid] = time.time() - 3600

        assert manager.cleanup_inactive_sessions() == 0

    def test_stats(self) -> None:
        manager = StateManager()
        sid = manager.create_session("user-1").session_id
        manager.add_uploads(sid, ["https://x/a.png"])

        assert manager.get_stats() == {"activeSessions": 1, "totalImages": 1, "totalSteps": 0}


class TestStorageProviders:
    def test_in_memory_round_trip(self) -> None:
        storage = InMemoryStorageProvider()
        session = _populated_session()

        storage.save(session.session_id, session.to_dict())

        assert AgentSession.from_dict(storage.load(session.session_id)) == session
        assert len(storage) == 1

    def test_in_memory_cleanup_old_sessions(self) -> None:
        storage = InMemoryStorageProvider()
        storage.save("old", {"session_id": "old", "user_id": "u", "updated_at": time.time() - 100})
        storage.save("new", {"session_id": "new", "user_id": "u", "updated_at": time.time()})

        assert storage.cleanup_old_sessions(50) == 1
        assert storage.load("old") is None
        assert storage.load("new") is not None

    def test_sqlite_round_trip(self, tmp_path: Path) -> None:
        storage = SQLiteStorageProvider(tmp_path / "sessions.db")
        session = _populated_session()

        storage.save(session.session_id, session.to_dict())
        restored = AgentSession.from_dict(storage.load(session.session_id))

        assert restored == session
        assert [s["session_id"] for s in storage.list("user-1")] == [session.session_id]
        assert storage.list("user-2") == []
        assert storage.delete(session.session_id) is True
        assert storage.delete(session.session_id) is False
        assert storage.load(session.session_id) is None

    def test_manager_reloads_from_durable_storage(self, tmp_path: Path) -> None:
        db_path = tmp_path / "sessions.db"
        first = StateManager(SQLiteStorageProvider(db_path))
        sid = first.create_session("user-1", AgentConfig(max_steps=4)).session_id
        first.add_message(sid, ChatMessage(role="user", content="persist me"))
        first.save_session(sid)

        second = StateManager(SQLiteStorageProvider(db_path))
        session = second.get_session(sid)

        assert session.config.max_steps == 4
        assert session.messages[0].content == "persist me"
