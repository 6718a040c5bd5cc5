"""Tool registry: the catalog of capabilities the model may call."""
from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from image_agent.errors import DuplicateToolError
from image_agent.logging import get_logger

if TYPE_CHECKING:
    from image_agent.models import ToolExecutionContext, ToolExecutionResult

logger = get_logger("tools.registry")

ToolCategory = Literal[
    "image_editing",
    "image_generation",
    "image_analysis",
    "text_processing",
    "file_management",
    "web_research",
    "social_media",
    "translation",
    "utility",
]

ToolHandler = Callable[[dict[str, Any], "ToolExecutionContext"], Awaitable["ToolExecutionResult"]]
ArgValidator = Callable[[dict[str, Any]], "str | None"]


@dataclass(frozen=True)
class RegisteredTool:
    """A callable capability with its schema, cost and handler.

    ``validate_args`` returns an error message, or None when the arguments
    are acceptable. ``image_params`` names the arguments that carry image
    references; it defaults to ``("image_url",)`` for tools that require an
    image.
    """

    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler
    category: ToolCategory = "utility"
    credits_required: int = 0
    estimated_time_seconds: float = 0
    requires_image: bool = False
    produces_image: bool = False
    validate_args: ArgValidator | None = None
    image_params: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.requires_image and not self.image_params:
            object.__setattr__(self, "image_params", ("image_url",))

    def definition(self) -> dict[str, Any]:
        """Tool definition in OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "creditsRequired": self.credits_required,
            "estimatedTimeSeconds": self.estimated_time_seconds,
            "requiresImage": self.requires_image,
            "producesImage": self.produces_image,
            "parameters": self.parameters,
        }


class ToolRegistry:
    """Registry of tools available to agent sessions.

    Built once at startup and read-only afterwards; sessions share one
    instance without locking.
    """

    def __init__(self, tools: list[RegisteredTool] | None = None) -> None:
        self._tools: dict[str, RegisteredTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: RegisteredTool) -> None:
        if tool.name in self._tools:
            raise DuplicateToolError(f"Tool '{tool.name}' is already registered", tool=tool.name)
        self._tools[tool.name] = tool
        logger.debug("Registered tool %s (%s, %d credits)", tool.name, tool.category, tool.credits_required)

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[RegisteredTool]:
        return list(self._tools.values())

    def get_tools_by_category(self, category: str) -> list[RegisteredTool]:
        return [t for t in self._tools.values() if t.category == category]

    def names(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self, allowlist: list[str] | None = None) -> list[dict[str, Any]]:
        """Get tool definitions in OpenAI function calling format.

        With an allowlist, only those tools are returned, in registry order.
        Unknown names are ignored here; ``AgentConfig.validate`` rejects them
        before a session is created.
        """
        allowed = set(allowlist) if allowlist is not None else None
        return [
            t.definition()
            for t in self._tools.values()
            if allowed is None or t.name in allowed
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[RegisteredTool]:
        return iter(self._tools.values())
