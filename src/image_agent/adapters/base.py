"""
Base model gateway interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from image_agent.config import DEFAULT_MODEL
from image_agent.events import StreamEvent
from image_agent.models import ChatMessage, ImageArtifact, TokenUsage, ToolCall


@dataclass
class ChatOptions:
    """Per-request model settings."""

    model: str = DEFAULT_MODEL
    system_prompt: str = ""
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass
class ModelResponse:
    """A complete model response."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)


class ModelGateway(ABC):
    """
    Abstract base class for language-model providers.

    Gateways take the session history (with image references), the tool
    schemas and the request options, and return either a complete
    ``ModelResponse`` or a stream of ``StreamEvent`` objects.

    Streaming contract:
        text_delta*                      content as it arrives
        tool_call_start / tool_call_delta* / tool_call_end
                                         ``tool_call_end`` carries the parsed
                                         ``args`` and the raw text in ``content``
        usage?                           token counts in ``payload``
        done                             with ``finish_reason``

    Example implementation for a custom provider:

        class MyGateway(ModelGateway):
            async def chat_completion(self, messages, tools, options, images=None):
                reply = await my_client.complete(...)
                return ModelResponse(content=reply.text)
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        images: dict[str, ImageArtifact] | None = None,
    ) -> ModelResponse:
        """
        Send one blocking request.

        Args:
            messages: Session history (user/assistant/tool messages)
            tools: Tool definitions in OpenAI function calling format
            options: Model, system prompt, temperature, max tokens
            images: Session image store, used to expand image references

        Returns:
            ModelResponse with content and completed tool calls

        Raises:
            ProviderError: on provider or network failure
        """

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        images: dict[str, ImageArtifact] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream structured events.

        Default implementation wraps ``chat_completion()`` into a sequence of
        events. Override for true incremental streaming.
        """
        response = await self.chat_completion(messages, tools, options, images)

        if response.content:
            yield StreamEvent(type="text_delta", content=response.content)

        for tc in response.tool_calls:
            yield StreamEvent(type="tool_call_start", tool_call_id=tc.id, tool_name=tc.name)
            yield StreamEvent(
                type="tool_call_end",
                tool_call_id=tc.id,
                tool_name=tc.name,
                args=tc.arguments,
                content=tc.raw_arguments,
            )

        yield StreamEvent(
            type="usage",
            payload={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )
        yield StreamEvent(type="done", finish_reason=response.finish_reason or "stop")


def fold_stream_event(response: ModelResponse, event: StreamEvent) -> None:
    """Apply one gateway stream event to a response being assembled."""
    if event.type == "text_delta":
        response.content += event.content
    elif event.type == "tool_call_end":
        response.tool_calls.append(
            ToolCall(
                id=event.tool_call_id or "",
                name=event.tool_name or "",
                arguments=dict(event.args or {}),
                raw_arguments=event.content,
            )
        )
    elif event.type == "usage":
        response.usage = response.usage + TokenUsage(
            input_tokens=event.payload.get("input_tokens", 0),
            output_tokens=event.payload.get("output_tokens", 0),
        )
    elif event.type == "done":
        response.finish_reason = event.finish_reason


async def collect_stream(events: AsyncIterator[StreamEvent]) -> ModelResponse:
    """Fold a gateway event stream back into a ModelResponse."""
    response = ModelResponse()
    async for event in events:
        fold_stream_event(response, event)
    return response
