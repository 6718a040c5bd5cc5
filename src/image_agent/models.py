"""
Core data models for the agent runtime.

Sessions, steps, tool executions and image artifacts are plain dataclasses.
They serialize to plain dicts (``to_dict``/``from_dict``) so storage providers
never need to know about the classes themselves.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from image_agent.config import AgentConfig


class SessionStatus(str, Enum):
    """Lifecycle status of an agent session."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING_TOOL = "waiting_tool"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.RUNNING, SessionStatus.WAITING_TOOL)


class ToolExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class TokenUsage:
    """Token counts for a single model request."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass
class ToolCall:
    """A model-requested invocation of a named tool."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = ""

    @classmethod
    def from_raw(cls, id: str, name: str, raw_arguments: str) -> ToolCall:
        """Build a tool call from provider argument text; unparsable text yields {}."""
        try:
            parsed = json.loads(raw_arguments) if raw_arguments.strip() else {}
        except json.JSONDecodeError:
            parsed = {}
        if not isinstance(parsed, dict):
            parsed = {}
        return cls(id=id, name=name, arguments=parsed, raw_arguments=raw_arguments)

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.raw_arguments or json.dumps(self.arguments),
            },
        }


@dataclass
class ChatMessage:
    """A message in the session history.

    User messages reference their attached images by artifact key in
    ``image_refs``; the binary payload lives in the session's image store.
    """

    role: str  # "system", "user", "assistant", "tool"
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    image_refs: list[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            tool_calls=[ToolCall(**tc) for tc in data.get("tool_calls", [])],
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            image_refs=list(data.get("image_refs", [])),
            timestamp=data.get("timestamp", time.time()),
        )


@dataclass
class ToolExecutionResult:
    """Outcome of a single tool invocation.

    ``credits_used`` is always 0 when ``success`` is False.
    """

    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    execution_time_ms: int = 0
    credits_used: int = 0

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str,
        execution_time_ms: int = 0,
        data: Any = None,
    ) -> ToolExecutionResult:
        return cls(
            success=False,
            data=data,
            error=error,
            error_code=error_code,
            execution_time_ms=execution_time_ms,
            credits_used=0,
        )

    def to_payload(self) -> dict[str, Any]:
        """Wire shape used in tool-result messages and events."""
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
            if self.error_code:
                payload["code"] = self.error_code
        payload["executionTimeMs"] = self.execution_time_ms
        payload["creditsUsed"] = self.credits_used
        return payload

    def to_message_content(self) -> str:
        return json.dumps(self.to_payload(), default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolExecutionResult:
        return cls(**data)


@dataclass
class ToolExecution:
    """Runtime record of performing one tool call. Belongs to one step."""

    tool_name: str
    call_id: str
    arguments: dict[str, Any] = field(default_factory=dict)
    status: ToolExecutionStatus = ToolExecutionStatus.PENDING
    result: ToolExecutionResult | None = None
    execution_time_ms: int = 0
    credits_used: int = 0
    started_at: float | None = None
    completed_at: float | None = None

    def finish(self, result: ToolExecutionResult) -> None:
        self.result = result
        if result.success:
            self.status = ToolExecutionStatus.SUCCESS
        elif result.error_code == "CANCELLED":
            self.status = ToolExecutionStatus.CANCELLED
        else:
            self.status = ToolExecutionStatus.ERROR
        self.execution_time_ms = result.execution_time_ms
        self.credits_used = result.credits_used if result.success else 0
        self.completed_at = time.time()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolExecution:
        result = data.get("result")
        return cls(
            tool_name=data["tool_name"],
            call_id=data["call_id"],
            arguments=dict(data.get("arguments", {})),
            status=ToolExecutionStatus(data.get("status", "pending")),
            result=ToolExecutionResult.from_dict(result) if result else None,
            execution_time_ms=data.get("execution_time_ms", 0),
            credits_used=data.get("credits_used", 0),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class AgentStep:
    """One model call plus the tool executions it requested. Append-only."""

    step_index: int
    assistant_message: ChatMessage
    tool_executions: list[ToolExecution] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def credits_used(self) -> int:
        return sum(
            e.credits_used for e in self.tool_executions
            if e.status == ToolExecutionStatus.SUCCESS
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentStep:
        return cls(
            step_index=data["step_index"],
            assistant_message=ChatMessage.from_dict(data["assistant_message"]),
            tool_executions=[ToolExecution.from_dict(e) for e in data.get("tool_executions", [])],
            timestamp=data.get("timestamp", time.time()),
            token_usage=TokenUsage(**data.get("token_usage", {})),
        )


@dataclass
class ImageArtifact:
    """An image uploaded by the user or produced by a tool, addressed by key.

    Keys are ``uploaded:<n>`` for uploads and ``step:<i>:tool:<call_id>`` for
    tool outputs.
    """

    key: str
    url: str  # remote URL or data: URL
    source: str = "upload"  # "upload", "generated", "processed"
    mime_type: str | None = None
    created_at: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionError:
    code: str
    message: str


@dataclass
class AgentSession:
    """Full state of one agent session. Owned by the StateManager."""

    session_id: str
    user_id: str
    config: AgentConfig
    status: SessionStatus = SessionStatus.IDLE
    messages: list[ChatMessage] = field(default_factory=list)
    steps: list[AgentStep] = field(default_factory=list)
    total_credits_used: int = 0
    images: dict[str, ImageArtifact] = field(default_factory=dict)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    error: SessionError | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def final_message(self) -> str | None:
        """Content of the last assistant message without tool calls, if any."""
        for msg in reversed(self.messages):
            if msg.role == "assistant" and not msg.tool_calls:
                return msg.content
            if msg.role == "user":
                return None
        return None

    def tool_results(self) -> dict[str, ToolExecutionResult]:
        """All recorded tool results keyed by call id, in execution order."""
        results: dict[str, ToolExecutionResult] = {}
        for step in self.steps:
            for execution in step.tool_executions:
                if execution.result is not None:
                    results[execution.call_id] = execution.result
        return results

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["config"] = self.config.to_dict()
        for step in data["steps"]:
            for execution in step["tool_executions"]:
                execution["status"] = ToolExecutionStatus(execution["status"]).value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentSession:
        error = data.get("error")
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            config=AgentConfig.from_dict(data.get("config", {})),
            status=SessionStatus(data.get("status", "idle")),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            steps=[AgentStep.from_dict(s) for s in data.get("steps", [])],
            total_credits_used=data.get("total_credits_used", 0),
            images={k: ImageArtifact(**v) for k, v in data.get("images", {}).items()},
            token_usage=TokenUsage(**data.get("token_usage", {})),
            error=SessionError(**error) if error else None,
            created_at=data.get("created_at", time.time()),
            updated_at=data.get("updated_at", time.time()),
        )

    def summary(self) -> dict[str, Any]:
        """Caller-facing status plus step/message summary."""
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "status": self.status.value,
            "config": self.config.to_dict(),
            "steps": [
                {
                    "stepIndex": s.step_index,
                    "content": s.assistant_message.content,
                    "toolExecutions": [
                        {
                            "toolName": e.tool_name,
                            "callId": e.call_id,
                            "status": e.status.value,
                            "creditsUsed": e.credits_used,
                            "executionTimeMs": e.execution_time_ms,
                        }
                        for e in s.tool_executions
                    ],
                }
                for s in self.steps
            ],
            "messageCount": len(self.messages),
            "finalMessage": self.final_message,
            "totalCreditsUsed": self.total_credits_used,
            "images": sorted(self.images),
            "error": asdict(self.error) if self.error else None,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class ToolExecutionContext:
    """Per-call context handed to the executor and tool handlers."""

    user_id: str
    session_id: str
    available_credits: int
    previous_results: dict[str, ToolExecutionResult] = field(default_factory=dict)
    cancel_event: asyncio.Event | None = None
    uploaded_images: list[str] = field(default_factory=list)
    artifacts: dict[str, ImageArtifact] = field(default_factory=dict)
    step_index: int = 0

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
