"""Shared pytest fixtures for image-agent tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from image_agent.adapters.base import ChatOptions, ModelGateway, ModelResponse
from image_agent.config import AgentConfig, RuntimeSettings
from image_agent.events import EventBus
from image_agent.models import ChatMessage, ImageArtifact, ToolCall, ToolExecutionContext
from image_agent.orchestrator import Orchestrator
from image_agent.service import AgentService
from image_agent.services import InMemoryBilling
from image_agent.state.manager import StateManager
from image_agent.tools.catalog import create_default_registry
from image_agent.tools.executor import ToolExecutor
from image_agent.tools.registry import ToolRegistry


class ScriptedGateway(ModelGateway):
    """Model gateway that replays queued responses.

    Queue items are ModelResponse objects or exceptions to raise. An empty
    queue answers with a plain final message.
    """

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        images: dict[str, ImageArtifact] | None = None,
    ) -> ModelResponse:
        self.calls.append(
            {
                "messages": list(messages),
                "tools": tools,
                "options": options,
                "images": dict(images or {}),
            }
        )
        if not self.responses:
            return ModelResponse(content="Done.")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeBackend:
    """Processing backend that records calls and returns a result URL."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any, dict[str, Any]]] = []
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}

    async def process(self, operation: str, input: Any, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((operation, input, dict(params)))
        if operation in self.delays:
            await asyncio.sleep(self.delays[operation])
        if operation in self.failures:
            raise self.failures[operation]
        return {"resultUrl": f"https://cdn.example.com/{operation}/{len(self.calls)}.png"}


def tool_response(*calls: tuple[str, str, dict[str, Any]], content: str = "") -> ModelResponse:
    """ModelResponse requesting ``(call_id, tool_name, arguments)`` calls."""
    return ModelResponse(
        content=content,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=args) for call_id, name, args in calls],
        finish_reason="tool_calls",
    )


@pytest.fixture
def make_tool_response() -> Callable[..., ModelResponse]:
    return tool_response


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def billing() -> InMemoryBilling:
    return InMemoryBilling(default_credits=100)


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings(default_tool_timeout_seconds=5.0, tool_timeout_multiplier=3.0)


@pytest.fixture
def registry(backend: FakeBackend, billing: InMemoryBilling) -> ToolRegistry:
    return create_default_registry(backend, billing)


@pytest.fixture
def executor(registry: ToolRegistry, settings: RuntimeSettings) -> ToolExecutor:
    return ToolExecutor(registry, settings)


@pytest.fixture
def state() -> StateManager:
    return StateManager()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def orchestrator(
    state: StateManager,
    gateway: ScriptedGateway,
    executor: ToolExecutor,
    registry: ToolRegistry,
    billing: InMemoryBilling,
    bus: EventBus,
) -> Orchestrator:
    return Orchestrator(state, gateway, executor, registry, billing, events=bus)


@pytest.fixture
def service(state: StateManager, orchestrator: Orchestrator, registry: ToolRegistry) -> AgentService:
    return AgentService(state, orchestrator, registry)


@pytest.fixture
def make_session(state: StateManager) -> Callable[..., str]:
    """Create a session and return its id."""

    def _make(user_id: str = "user-1", **config: Any) -> str:
        return state.create_session(user_id, AgentConfig(**config)).session_id

    return _make


@pytest.fixture
def make_context() -> Callable[..., ToolExecutionContext]:
    def _make(**overrides: Any) -> ToolExecutionContext:
        values: dict[str, Any] = {
            "user_id": "user-1",
            "session_id": "agent_test",
            "available_credits": 100,
        }
        values.update(overrides)
        return ToolExecutionContext(**values)

    return _make
