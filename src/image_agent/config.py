"""
Configuration models for the image agent.

Two layers:

- ``AgentConfig``: per-session model and loop settings, sent by callers when a
  session is created.
- ``RuntimeSettings``: process-wide provider, timeout, retry and storage
  settings, loaded from YAML files or the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from dotenv import load_dotenv

from image_agent.errors import ValidationError

if TYPE_CHECKING:
    from image_agent.tools.registry import ToolRegistry

DEFAULT_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_BACKEND_URL = "http://127.0.0.1:8000/api/tools"

UPLOADED_IMAGE = "UPLOADED_IMAGE"

DEFAULT_SYSTEM_PROMPT = f"""You are an AI agent specialized in image editing and processing.

When a user sends an image, it is already included in the message. You can see and analyze it directly. When you need to process the image with a tool, pass the special value "{UPLOADED_IMAGE}" as the image_url parameter and the system will use the uploaded image automatically.

Tools that produce an image return an "image_ref" such as "step:0:tool:call_1". To chain operations, pass that image_ref (or the id of the earlier tool call) as the image_url of the next tool.

When a user asks you to process an uploaded image:
1. Describe briefly what you see
2. Choose the appropriate tool and call it with image_url: "{UPLOADED_IMAGE}"
3. Report the result

Always respond in the user's language. Be helpful and concise."""

StorageKind = Literal["memory", "sqlite"]


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key, so camelCase and snake_case both work."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class AgentConfig:
    """
    Per-session configuration.

    Example:
        config = AgentConfig.from_dict({"maxSteps": 5, "availableTools": ["remove_background"]})
        config.validate(registry)
    """

    model: str = DEFAULT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = 0.7
    max_tokens: int = 4096
    max_steps: int = 10
    available_tools: list[str] | None = None  # None = all registered tools

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentConfig:
        """Create config from a dictionary with camelCase or snake_case keys."""
        tools = _pick(data, "availableTools", "available_tools")
        return cls(
            model=_pick(data, "model", default=DEFAULT_MODEL),
            system_prompt=_pick(data, "systemPrompt", "system_prompt", default=DEFAULT_SYSTEM_PROMPT),
            temperature=_pick(data, "temperature", default=0.7),
            max_tokens=_pick(data, "maxTokens", "max_tokens", default=4096),
            max_steps=_pick(data, "maxSteps", "max_steps", default=10),
            available_tools=list(tools) if tools is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "systemPrompt": self.system_prompt,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "maxSteps": self.max_steps,
            "availableTools": self.available_tools,
        }

    def validate(self, registry: ToolRegistry | None = None) -> None:
        """Raise ValidationError for out-of-range values or unknown allowlisted tools."""
        if not self.model:
            raise ValidationError("model must not be empty")
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float)):
            raise ValidationError("temperature must be a number")
        if not 0 <= self.temperature <= 2:
            raise ValidationError("temperature must be between 0 and 2", temperature=self.temperature)
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ValidationError("maxTokens must be a positive integer", maxTokens=self.max_tokens)
        if isinstance(self.max_steps, bool) or not isinstance(self.max_steps, int) or self.max_steps < 1:
            raise ValidationError("maxSteps must be an integer >= 1", maxSteps=self.max_steps)
        if self.available_tools is not None and registry is not None:
            unknown = [name for name in self.available_tools if name not in registry]
            if unknown:
                raise ValidationError(
                    f"Unknown tool(s) in availableTools: {', '.join(unknown)}",
                    unknown=unknown,
                )


@dataclass
class RuntimeSettings:
    """
    Process-wide settings.

    Example YAML:
        api_key: sk-...
        base_url: https://openrouter.ai/api/v1
        default_model: anthropic/claude-sonnet-4
        request_timeout_seconds: 120
        max_retries: 2
        storage: sqlite
        sqlite_path: ./sessions.db
        backend_url: http://localhost:8080/api/tools
    """

    # Model provider
    api_key: str | None = None
    base_url: str | None = None
    default_model: str = DEFAULT_MODEL
    request_timeout_seconds: float = 120.0  # Gateway only, independent of tool timeouts

    # Retries
    max_retries: int = 2  # Transient network errors
    retry_backoff_seconds: float = 1.0
    retry_backoff_max_seconds: float = 8.0
    rate_limit_retry_delay_seconds: float = 2.0  # Single retry after a 429

    # Tools
    default_tool_timeout_seconds: float = 60.0
    tool_timeout_multiplier: float = 3.0

    # Storage
    storage: StorageKind = "memory"
    sqlite_path: Path = field(default_factory=lambda: Path("image_agent_sessions.db"))

    # Collaborators
    backend_url: str = DEFAULT_BACKEND_URL
    backend_api_key: str | None = None
    default_credits: int = 100

    log_level: str = "WARNING"

    def tool_timeout(self, estimated_time_seconds: float | None) -> float:
        """Timeout for a tool run, derived from its time estimate."""
        if not estimated_time_seconds or estimated_time_seconds <= 0:
            return self.default_tool_timeout_seconds
        return estimated_time_seconds * self.tool_timeout_multiplier

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuntimeSettings:
        """Create settings from a dictionary."""
        defaults = cls()
        storage = data.get("storage", defaults.storage)
        if storage not in ("memory", "sqlite"):
            raise ValidationError(f"Unknown storage provider: {storage}")
        return cls(
            api_key=data.get("api_key"),
            base_url=data.get("base_url"),
            default_model=data.get("default_model", defaults.default_model),
            request_timeout_seconds=float(data.get("request_timeout_seconds", defaults.request_timeout_seconds)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            retry_backoff_seconds=float(data.get("retry_backoff_seconds", defaults.retry_backoff_seconds)),
            retry_backoff_max_seconds=float(
                data.get("retry_backoff_max_seconds", defaults.retry_backoff_max_seconds)
            ),
            rate_limit_retry_delay_seconds=float(
                data.get("rate_limit_retry_delay_seconds", defaults.rate_limit_retry_delay_seconds)
            ),
            default_tool_timeout_seconds=float(
                data.get("default_tool_timeout_seconds", defaults.default_tool_timeout_seconds)
            ),
            tool_timeout_multiplier=float(data.get("tool_timeout_multiplier", defaults.tool_timeout_multiplier)),
            storage=storage,
            sqlite_path=Path(data["sqlite_path"]) if data.get("sqlite_path") else defaults.sqlite_path,
            backend_url=data.get("backend_url") or defaults.backend_url,
            backend_api_key=data.get("backend_api_key"),
            default_credits=int(data.get("default_credits", defaults.default_credits)),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> RuntimeSettings:
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> RuntimeSettings:
        """Load settings from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    @classmethod
    def from_env(cls, dotenv: bool = True, **overrides: Any) -> RuntimeSettings:
        """Create settings from environment variables (and a .env file)."""
        if dotenv:
            load_dotenv()

        env_map = {
            "api_key": ("IMAGE_AGENT_API_KEY", "OPENAI_API_KEY"),
            "base_url": ("IMAGE_AGENT_BASE_URL", "OPENAI_BASE_URL"),
            "default_model": ("IMAGE_AGENT_MODEL",),
            "request_timeout_seconds": ("IMAGE_AGENT_REQUEST_TIMEOUT",),
            "max_retries": ("IMAGE_AGENT_MAX_RETRIES",),
            "default_tool_timeout_seconds": ("IMAGE_AGENT_TOOL_TIMEOUT",),
            "storage": ("IMAGE_AGENT_STORAGE",),
            "sqlite_path": ("IMAGE_AGENT_SQLITE_PATH",),
            "backend_url": ("IMAGE_AGENT_BACKEND_URL",),
            "backend_api_key": ("IMAGE_AGENT_BACKEND_API_KEY",),
            "default_credits": ("IMAGE_AGENT_DEFAULT_CREDITS",),
            "log_level": ("IMAGE_AGENT_LOG_LEVEL",),
        }
        data: dict[str, Any] = {}
        for key, names in env_map.items():
            for name in names:
                value = os.environ.get(name)
                if value:
                    data[key] = value
                    break
        data.update(overrides)
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary. API keys are masked."""
        return {
            "api_key": "***" if self.api_key else None,
            "base_url": self.base_url,
            "default_model": self.default_model,
            "request_timeout_seconds": self.request_timeout_seconds,
            "max_retries": self.max_retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "retry_backoff_max_seconds": self.retry_backoff_max_seconds,
            "rate_limit_retry_delay_seconds": self.rate_limit_retry_delay_seconds,
            "default_tool_timeout_seconds": self.default_tool_timeout_seconds,
            "tool_timeout_multiplier": self.tool_timeout_multiplier,
            "storage": self.storage,
            "sqlite_path": str(self.sqlite_path),
            "backend_url": self.backend_url,
            "backend_api_key": "***" if self.backend_api_key else None,
            "default_credits": self.default_credits,
            "log_level": self.log_level,
        }
