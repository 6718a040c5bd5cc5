"""
Agent service: the caller-facing API.

Wraps the state manager, orchestrator and event transformer behind the
operations the HTTP surface and the CLI expose:

    create_session(user_id, config)        -> {sessionId, status, config}
    send_message(session_id, text, images) -> async iterator of AgentEvent
    run_message(session_id, text, images)  -> TurnResult (blocking mode)
    get_session(session_id)                -> status + step/message summary
    delete_session(session_id)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

from image_agent.adapters.base import ModelGateway
from image_agent.adapters.openai import OpenAIGateway
from image_agent.config import AgentConfig, RuntimeSettings
from image_agent.errors import SessionNotFoundError, ValidationError
from image_agent.events import DONE, ERROR, AgentEvent, EventBus, EventStreamTransformer
from image_agent.logging import get_logger
from image_agent.orchestrator import Orchestrator
from image_agent.services import BillingService, HttpProcessingBackend, InMemoryBilling, ProcessingBackend
from image_agent.state.manager import StateManager
from image_agent.state.storage import InMemoryStorageProvider, SQLiteStorageProvider, StorageProvider
from image_agent.tools.catalog import create_default_registry
from image_agent.tools.executor import ToolExecutor
from image_agent.tools.registry import ToolRegistry

logger = get_logger("service")


@dataclass
class TurnResult:
    """Outcome of a blocking ``send_message``."""

    session_id: str
    status: str
    final_message: str | None = None
    total_credits_used: int = 0
    steps: int = 0
    error: dict[str, Any] | None = None
    events: list[AgentEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "status": self.status,
            "finalMessage": self.final_message,
            "totalCreditsUsed": self.total_credits_used,
            "steps": self.steps,
            "error": self.error,
            "events": [e.to_dict() for e in self.events],
        }


class AgentService:
    """
    Caller-facing agent API.

    Example:
        service = AgentService.from_settings(RuntimeSettings.from_env())
        created = service.create_session("user-1", {"maxSteps": 5})
        async for event in service.send_message(created["sessionId"], "Remove the background", [data_url]):
            print(event.type, event.payload)
    """

    def __init__(
        self,
        state: StateManager,
        orchestrator: Orchestrator,
        registry: ToolRegistry,
        transformer: EventStreamTransformer | None = None,
        default_model: str | None = None,
        backend: ProcessingBackend | None = None,
    ) -> None:
        self.state = state
        self.orchestrator = orchestrator
        self.registry = registry
        self.transformer = transformer or EventStreamTransformer()
        self.default_model = default_model
        self._backend = backend

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        gateway: ModelGateway | None = None,
        backend: ProcessingBackend | None = None,
        billing: BillingService | None = None,
        storage: StorageProvider | None = None,
        events: EventBus | None = None,
    ) -> AgentService:
        """Wire a service from runtime settings. Any collaborator can be injected."""
        if storage is None:
            if settings.storage == "sqlite":
                storage = SQLiteStorageProvider(settings.sqlite_path)
            else:
                storage = InMemoryStorageProvider()
        if backend is None:
            backend = HttpProcessingBackend(
                settings.backend_url,
                api_key=settings.backend_api_key,
                timeout=settings.default_tool_timeout_seconds * settings.tool_timeout_multiplier,
            )
        billing = billing or InMemoryBilling(settings.default_credits)
        gateway = gateway or OpenAIGateway(settings)

        registry = create_default_registry(backend, billing)
        state = StateManager(storage)
        executor = ToolExecutor(registry, settings)
        orchestrator = Orchestrator(state, gateway, executor, registry, billing, events=events)
        return cls(state, orchestrator, registry, default_model=settings.default_model, backend=backend)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, user_id: str, config: dict[str, Any] | AgentConfig | None = None) -> dict[str, Any]:
        """Validate the config and create an idle session."""
        if not user_id:
            raise ValidationError("userId is required")
        if isinstance(config, AgentConfig):
            agent_config = config
        else:
            data = dict(config or {})
            if self.default_model:
                data.setdefault("model", self.default_model)
            agent_config = AgentConfig.from_dict(data)
        agent_config.validate(self.registry)

        session = self.state.create_session(user_id, agent_config)
        return {
            "sessionId": session.session_id,
            "status": session.status.value,
            "config": session.config.to_dict(),
        }

    def get_session(self, session_id: str) -> dict[str, Any]:
        return self.state.get_session(session_id).summary()

    def list_sessions(self, user_id: str) -> list[dict[str, Any]]:
        if not user_id:
            raise ValidationError("userId is required")
        return [s.summary() for s in self.state.get_user_sessions(user_id)]

    def delete_session(self, session_id: str) -> None:
        self.orchestrator.ensure_idle(session_id)
        if not self.state.delete_session(session_id):
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)

    def cancel(self, session_id: str) -> bool:
        """Request cancellation. Returns False if no turn is running."""
        self.state.load_session(session_id)
        return self.orchestrator.cancel(session_id)

    def list_tools(self, category: str | None = None) -> list[dict[str, Any]]:
        tools = self.registry.get_tools_by_category(category) if category else self.registry.list_tools()
        return [t.info() for t in tools]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_message(
        self,
        session_id: str,
        text: str,
        images: list[str] | None = None,
        stream: bool = True,
    ) -> AsyncGenerator[AgentEvent, None]:
        """
        Start a turn and return its consumer event stream.

        Validation, SessionNotFound and SessionBusy are raised here, before
        the stream is handed out.
        """
        images = self._check_message(session_id, text, images)
        events = self.orchestrator.run_turn(session_id, text or "", images, stream=stream)
        return self.transformer.transform(events)

    async def run_message(self, session_id: str, text: str, images: list[str] | None = None) -> TurnResult:
        """Run a turn in blocking mode and return the final result."""
        collected = [e async for e in self.send_message(session_id, text, images, stream=False)]
        session = self.state.get_session(session_id)
        result = TurnResult(
            session_id=session_id,
            status=session.status.value,
            total_credits_used=session.total_credits_used,
            steps=len(session.steps),
            events=collected,
        )
        for event in collected:
            if event.type == DONE:
                result.final_message = event.payload.get("finalMessage")
            elif event.type == ERROR:
                result.error = {"code": event.payload.get("code"), "message": event.payload.get("message")}
        return result

    def _check_message(self, session_id: str, text: str, images: list[str] | None) -> list[str]:
        self.state.load_session(session_id)
        self.orchestrator.ensure_idle(session_id)
        if text is not None and not isinstance(text, str):
            raise ValidationError("message must be a string")
        images = list(images or [])
        if any(not isinstance(url, str) or not url for url in images):
            raise ValidationError("images must be a list of URLs or data URLs")
        if not (text or "").strip() and not images:
            raise ValidationError("message or images is required")
        return images

    async def close(self) -> None:
        close = getattr(self._backend, "close", None)
        if close is not None:
            await close()
