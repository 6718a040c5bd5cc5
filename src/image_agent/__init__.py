"""
Image Agent - A conversational tool-calling agent for image processing.

A language model decides which image tools to run, in what order and with
what arguments, across multiple turns. The runtime tracks credits, images
produced mid-conversation, step budgets and failures, and streams progress
to the caller as ordered events.

Example:
    from image_agent import AgentService, RuntimeSettings

    service = AgentService.from_settings(RuntimeSettings.from_env())
    session = service.create_session("user-1", {"maxSteps": 5})

    async for event in service.send_message(
        session["sessionId"],
        "Remove the background from this image",
        ["data:image/png;base64,..."],
    ):
        print(event.type, event.payload)
"""

from image_agent.adapters import ChatOptions, ModelGateway, ModelResponse, OpenAIGateway
from image_agent.config import AgentConfig, RuntimeSettings
from image_agent.errors import (
    AgentCancelledError,
    AgentError,
    InsufficientCreditsError,
    ProviderError,
    SessionBusyError,
    SessionNotFoundError,
    StepLimitExceededError,
    ValidationError,
)
from image_agent.events import AgentEvent, EventBus, EventStreamTransformer, StreamEvent
from image_agent.logging import get_logger, setup_logging
from image_agent.models import (
    AgentSession,
    AgentStep,
    ChatMessage,
    ImageArtifact,
    SessionStatus,
    ToolCall,
    ToolExecution,
    ToolExecutionContext,
    ToolExecutionResult,
)
from image_agent.orchestrator import Orchestrator
from image_agent.service import AgentService, TurnResult
from image_agent.services import BillingService, HttpProcessingBackend, InMemoryBilling, ProcessingBackend
from image_agent.state import InMemoryStorageProvider, SQLiteStorageProvider, StateManager, StorageProvider
from image_agent.tools import RegisteredTool, ToolExecutor, ToolRegistry, create_default_registry

__version__ = "0.1.0"

__all__ = [
    # Service
    "AgentService",
    "TurnResult",
    "Orchestrator",
    # Config
    "AgentConfig",
    "RuntimeSettings",
    # Models
    "AgentSession",
    "AgentStep",
    "ChatMessage",
    "ImageArtifact",
    "SessionStatus",
    "ToolCall",
    "ToolExecution",
    "ToolExecutionContext",
    "ToolExecutionResult",
    # Tools
    "RegisteredTool",
    "ToolRegistry",
    "ToolExecutor",
    "create_default_registry",
    # Gateways
    "ModelGateway",
    "ModelResponse",
    "ChatOptions",
    "OpenAIGateway",
    # State
    "StateManager",
    "StorageProvider",
    "InMemoryStorageProvider",
    "SQLiteStorageProvider",
    # Collaborators
    "BillingService",
    "ProcessingBackend",
    "InMemoryBilling",
    "HttpProcessingBackend",
    # Events
    "EventBus",
    "StreamEvent",
    "AgentEvent",
    "EventStreamTransformer",
    # Errors
    "AgentError",
    "ValidationError",
    "SessionNotFoundError",
    "SessionBusyError",
    "ProviderError",
    "InsufficientCreditsError",
    "StepLimitExceededError",
    "AgentCancelledError",
    # Logging
    "setup_logging",
    "get_logger",
]
