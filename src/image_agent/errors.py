"""
Error taxonomy for the agent runtime.

Every error carries a stable ``code`` that callers can switch on, plus the
HTTP status the web layer maps it to. Tool-level failures are normally
carried inside ``ToolExecutionResult.error_code`` rather than raised; the
exception classes for them exist so handlers and backends can raise a typed
error that the executor converts at its boundary.
"""

from __future__ import annotations

from typing import Any

# Stable taxonomy codes
VALIDATION_ERROR = "VALIDATION_ERROR"
SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
SESSION_BUSY = "SESSION_BUSY"
PROVIDER_ERROR = "PROVIDER_ERROR"
TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
TOOL_TIMEOUT = "TOOL_TIMEOUT"
TOOL_HANDLER_ERROR = "TOOL_HANDLER_ERROR"
INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
STEP_LIMIT_EXCEEDED = "STEP_LIMIT_EXCEEDED"
CANCELLED = "CANCELLED"
INTERNAL_ERROR = "INTERNAL_ERROR"


class AgentError(Exception):
    """Base class for all agent runtime errors."""

    code: str = INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(AgentError):
    """Bad configuration, bad arguments, or an unresolvable image reference."""

    code = VALIDATION_ERROR
    status_code = 400


class DuplicateToolError(ValidationError):
    """Raised at registration time when a tool name is already taken."""


class SessionNotFoundError(AgentError):
    code = SESSION_NOT_FOUND
    status_code = 404


class SessionBusyError(AgentError):
    """A turn is already running for this session."""

    code = SESSION_BUSY
    status_code = 409


class ProviderError(AgentError):
    """The language-model provider failed or returned a malformed stream."""

    code = PROVIDER_ERROR
    status_code = 502

    def __init__(
        self,
        message: str = "",
        provider_status: int | None = None,
        retryable: bool = False,
        **details: Any,
    ) -> None:
        super().__init__(message, **details)
        self.provider_status = provider_status
        self.retryable = retryable


class ToolNotFoundError(AgentError):
    code = TOOL_NOT_FOUND
    status_code = 404


class ToolTimeoutError(AgentError):
    code = TOOL_TIMEOUT
    status_code = 504


class ToolHandlerError(AgentError):
    code = TOOL_HANDLER_ERROR
    status_code = 500


class BackendError(ToolHandlerError):
    """Raised by a processing backend when the remote operation fails."""


class InsufficientCreditsError(AgentError):
    code = INSUFFICIENT_CREDITS
    status_code = 402


class StepLimitExceededError(AgentError):
    code = STEP_LIMIT_EXCEEDED
    status_code = 422


class AgentCancelledError(AgentError):
    """Raised inside the loop when the session's cancellation signal is set."""

    code = CANCELLED
    status_code = 499
