"""
Event system for the agent runtime.

Three layers:

- ``EventBus``: lifecycle hooks (session start/end, step start/end, tool
  status) that observers subscribe to.
- ``StreamEvent``: the internal event stream produced by the model gateway
  and the orchestrator while a turn runs.
- ``EventStreamTransformer``: turns the internal stream into the ordered,
  consumer-facing ``AgentEvent`` sequence (content_delta, tool_start,
  tool_result, step_complete, done, error).

Example:
    from image_agent.events import EventBus, TOOL_STATUS

    bus = EventBus()

    @bus.on(TOOL_STATUS)
    def log_status(event):
        print(event.call_id, event.status)
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from typing import Any

from image_agent.logging import get_logger

logger = get_logger("events")


# ---------------------------------------------------------------------------
# Lifecycle events
# ---------------------------------------------------------------------------

SESSION_START = "session_start"
SESSION_END = "session_end"
STEP_START = "step_start"
STEP_END = "step_end"
TOOL_STATUS = "tool_status"


@dataclass
class SessionStartEvent:
    """Emitted when a turn begins."""

    session_id: str
    user_id: str
    model: str
    step_index: int


@dataclass
class SessionEndEvent:
    """Emitted when a turn reaches a terminal status."""

    session_id: str
    status: str  # "completed", "failed", "cancelled"
    steps: int
    total_credits_used: int
    error_code: str | None = None
    error: str | None = None


@dataclass
class StepStartEvent:
    session_id: str
    step_index: int
    message_count: int


@dataclass
class StepEndEvent:
    session_id: str
    step_index: int
    tool_call_count: int
    credits_used: int


@dataclass
class ToolStatusEvent:
    """Tool lifecycle: pending -> running -> success | error | cancelled."""

    session_id: str
    step_index: int
    call_id: str
    tool_name: str
    status: str
    credits_used: int = 0
    error: str | None = None


# ---------------------------------------------------------------------------
# Stream event types
# ---------------------------------------------------------------------------


@dataclass
class StreamEvent:
    """
    A structured event emitted during model streaming or turn execution.

    Event type lifecycle for a single model response:
        text_delta*
        tool_call_start -> tool_call_delta* -> tool_call_end
        usage
        done

    Orchestrator-level events:
        tool_start / tool_result
        step_complete
        turn_done / error
    """

    type: str
    """Event type. One of:
    - ``text_delta``
    - ``tool_call_start``, ``tool_call_delta``, ``tool_call_end``
    - ``usage``, ``done`` (end of one model response)
    - ``tool_start``, ``tool_result``, ``step_complete``
    - ``turn_done``, ``error``
    """

    content: str = ""
    """Text content (for text_delta) or final message (for turn_done)."""

    tool_name: str | None = None
    tool_call_id: str | None = None

    step: int = 0
    """Step index the event belongs to."""

    args: dict[str, Any] | None = None
    """Tool arguments (for tool_call_end and tool_start)."""

    args_delta: str | None = None
    """Partial JSON arguments (for tool_call_delta)."""

    result: dict[str, Any] | None = None
    """Serialized ToolExecutionResult payload (for tool_result)."""

    error: str | None = None
    error_code: str | None = None

    finish_reason: str | None = None
    """Provider finish reason (for done): 'stop', 'tool_calls', 'length'."""

    payload: dict[str, Any] = field(default_factory=dict)
    """Extra data: usage counts, step summary, turn summary."""


@dataclass
class AgentEvent:
    """Consumer-facing event: ``{type, payload}``."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"


CONTENT_DELTA = "content_delta"
TOOL_START = "tool_start"
TOOL_RESULT = "tool_result"
STEP_COMPLETE = "step_complete"
DONE = "done"
ERROR = "error"


class EventStreamTransformer:
    """Maps internal StreamEvents to consumer AgentEvents, preserving order.

    Provider-level detail (argument fragments, per-response ``done``, usage)
    is dropped; everything else maps one-to-one.
    """

    def transform_event(self, event: StreamEvent) -> AgentEvent | None:
        if event.type == "text_delta":
            if not event.content:
                return None
            return AgentEvent(CONTENT_DELTA, {"content": event.content, "step": event.step})
        if event.type == "tool_start":
            return AgentEvent(
                TOOL_START,
                {"toolName": event.tool_name, "args": event.args or {}, "callId": event.tool_call_id},
            )
        if event.type == "tool_result":
            result = event.result or {}
            payload: dict[str, Any] = {
                "callId": event.tool_call_id,
                "toolName": event.tool_name,
                "success": bool(result.get("success")),
                "creditsUsed": result.get("creditsUsed", 0),
            }
            if payload["success"]:
                payload["data"] = result.get("data")
            else:
                payload["error"] = result.get("error")
                payload["code"] = result.get("code")
            return AgentEvent(TOOL_RESULT, payload)
        if event.type == "step_complete":
            return AgentEvent(STEP_COMPLETE, {"step": event.step, **event.payload})
        if event.type == "turn_done":
            return AgentEvent(
                DONE,
                {
                    "finalMessage": event.content,
                    "totalCreditsUsed": event.payload.get("totalCreditsUsed", 0),
                    "steps": event.payload.get("steps", 0),
                },
            )
        if event.type == "error":
            return AgentEvent(
                ERROR,
                {"code": event.error_code or "INTERNAL_ERROR", "message": event.error or "", **event.payload},
            )
        return None

    async def transform(self, events: AsyncGenerator[StreamEvent, None]) -> AsyncGenerator[AgentEvent, None]:
        """Map a turn's stream; closing this stream closes ``events`` as well."""
        try:
            async for event in events:
                out = self.transform_event(event)
                if out is not None:
                    yield out
        finally:
            await events.aclose()


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------

EventHandler = Callable[..., Any]


@dataclass
class _HandlerEntry:
    event: str
    handler: EventHandler
    priority: int = 0  # lower runs first


class EventBus:
    """
    Lifecycle event bus.

    Handlers are called in priority order (lower first) and can be sync or
    async. A failing handler is logged and never interrupts the agent loop.

    Usage:
        bus = EventBus()

        @bus.on(SESSION_END)
        def on_end(event: SessionEndEvent):
            print(event.status)

        unsub = bus.on(STEP_END, handler)
        unsub()
    """

    def __init__(self) -> None:
        self._handlers: list[_HandlerEntry] = []

    def on(
        self,
        event: str,
        handler: EventHandler | None = None,
        priority: int = 0,
    ) -> Callable[[], None] | Callable[[EventHandler], EventHandler]:
        """Register a handler. Returns an unsubscribe function, or acts as a decorator."""
        if handler is not None:
            entry = _HandlerEntry(event=event, handler=handler, priority=priority)
            self._handlers.append(entry)

            def unsubscribe() -> None:
                try:
                    self._handlers.remove(entry)
                except ValueError:
                    pass

            return unsubscribe

        def decorator(fn: EventHandler) -> EventHandler:
            self.on(event, fn, priority=priority)
            return fn

        return decorator

    def off(self, event: str, handler: EventHandler) -> None:
        """Remove a specific handler for an event."""
        self._handlers = [
            h for h in self._handlers if not (h.event == event and h.handler is handler)
        ]

    def has_handlers(self, event: str) -> bool:
        return any(h.event == event for h in self._handlers)

    async def emit(self, event: str, data: Any = None) -> list[Any]:
        """Emit an event and collect non-None handler results."""
        relevant = sorted(
            (h for h in self._handlers if h.event == event),
            key=lambda h: h.priority,
        )

        results: list[Any] = []
        for entry in relevant:
            try:
                result = entry.handler(data)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    result = await result
                if result is not None:
                    results.append(result)
            except Exception as e:
                logger.warning("Event handler error (event=%s): %s", event, e)
        return results
