"""
OpenAI-compatible model gateway.

Works with any provider exposing the chat completions API (OpenAI,
OpenRouter, local servers) through the ``openai`` client.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from image_agent.adapters.base import ChatOptions, ModelGateway, ModelResponse
from image_agent.config import RuntimeSettings
from image_agent.errors import ProviderError
from image_agent.events import StreamEvent
from image_agent.logging import get_logger
from image_agent.models import ChatMessage, ImageArtifact, TokenUsage, ToolCall
from image_agent.utils.json_parse import ToolCallAccumulator

logger = get_logger("adapters.openai")


def _retry_after_seconds(error: openai.APIStatusError) -> float | None:
    """Delay from retry-after-ms / retry-after headers, if present."""
    headers = error.response.headers if error.response is not None else {}
    retry_after_ms = headers.get("retry-after-ms")
    if retry_after_ms:
        try:
            return float(retry_after_ms) / 1000
        except ValueError:
            pass
    retry_after = headers.get("retry-after")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    return None


class OpenAIGateway(ModelGateway):
    """
    Model gateway over the OpenAI chat completions API.

    Retry policy:
    - connection errors and timeouts: retried with bounded exponential
      backoff, only before any response data has been received
    - HTTP 429: one delayed retry (retry-after header or configured delay)
    - any other non-2xx: ProviderError, no retry

    Example:
        gateway = OpenAIGateway(RuntimeSettings.from_env())
        response = await gateway.chat_completion(messages, tools, ChatOptions(model="gpt-4o"))
    """

    def __init__(self, settings: RuntimeSettings, client: AsyncOpenAI | None = None) -> None:
        self.settings = settings
        self._client = client
        self._sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create the OpenAI client."""
        if self._client is None:
            timeout = httpx.Timeout(self.settings.request_timeout_seconds, connect=30.0)
            # trust_env=False keeps proxy settings from the environment out of provider calls
            http_client = httpx.AsyncClient(trust_env=False, timeout=timeout)
            self._client = AsyncOpenAI(
                base_url=self.settings.base_url,
                api_key=self.settings.api_key,
                http_client=http_client,
                max_retries=0,
                timeout=timeout,
            )
        return self._client

    # ------------------------------------------------------------------
    # Message formatting
    # ------------------------------------------------------------------

    def _format_messages(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        images: dict[str, ImageArtifact] | None,
    ) -> list[dict[str, Any]]:
        """Convert session history to OpenAI messages, expanding image references."""
        formatted: list[dict[str, Any]] = []
        if system_prompt:
            formatted.append({"role": "system", "content": system_prompt})

        for msg in messages:
            if msg.role == "tool":
                formatted.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
            elif msg.role == "assistant":
                entry: dict[str, Any] = {"role": "assistant", "content": msg.content or None}
                if msg.tool_calls:
                    entry["tool_calls"] = [tc.to_openai() for tc in msg.tool_calls]
                formatted.append(entry)
            elif msg.role == "user" and msg.image_refs:
                parts: list[dict[str, Any]] = [{"type": "text", "text": msg.content}]
                for ref in msg.image_refs:
                    artifact = (images or {}).get(ref)
                    if artifact is None:
                        logger.warning("Image reference %s missing from session store", ref)
                        continue
                    parts.append({"type": "image_url", "image_url": {"url": artifact.url}})
                formatted.append({"role": "user", "content": parts})
            else:
                formatted.append({"role": msg.role, "content": msg.content})
        return formatted

    def _request_kwargs(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        images: dict[str, ImageArtifact] | None,
    ) -> dict[str, Any]:
        request_kwargs: dict[str, Any] = {
            "model": options.model or self.settings.default_model,
            "messages": self._format_messages(messages, options.system_prompt, images),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if tools:
            request_kwargs["tools"] = tools
            request_kwargs["tool_choice"] = "auto"
        return request_kwargs

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _create(self, **request_kwargs: Any) -> Any:
        """Call the provider, applying the retry policy."""
        attempt = 0
        rate_limit_retried = False
        while True:
            try:
                return await self.client.chat.completions.create(**request_kwargs)
            except openai.RateLimitError as e:
                if rate_limit_retried:
                    raise ProviderError(
                        "Rate limited by provider", provider_status=429, retryable=True
                    ) from e
                rate_limit_retried = True
                delay = _retry_after_seconds(e) or self.settings.rate_limit_retry_delay_seconds
                logger.warning("Rate limited (429); retrying once in %.1fs", delay)
                await self._sleep(delay)
            except openai.APIStatusError as e:
                raise ProviderError(
                    f"Provider returned HTTP {e.status_code}: {e.message}",
                    provider_status=e.status_code,
                ) from e
            except openai.APIConnectionError as e:
                if attempt >= self.settings.max_retries:
                    raise ProviderError(
                        f"Provider unreachable after {attempt + 1} attempt(s): {e}", retryable=True
                    ) from e
                delay = min(
                    self.settings.retry_backoff_seconds * (2 ** attempt),
                    self.settings.retry_backoff_max_seconds,
                )
                attempt += 1
                logger.warning("Provider connection error (%s); retry %d in %.1fs", e, attempt, delay)
                await self._sleep(delay)

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        images: dict[str, ImageArtifact] | None = None,
    ) -> ModelResponse:
        """Send a blocking chat request."""
        response = await self._create(**self._request_kwargs(messages, tools, options, images))
        if not response.choices:
            raise ProviderError("Provider returned no choices")

        choice = response.choices[0]
        tool_calls = [
            ToolCall.from_raw(tc.id, tc.function.name, tc.function.arguments or "{}")
            for tc in choice.message.tool_calls or []
        ]
        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )
        return ModelResponse(
            content=choice.message.content or "",
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
            usage=usage,
        )

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]],
        options: ChatOptions,
        images: dict[str, ImageArtifact] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream structured events.

        Tool-call argument fragments are buffered per call; ``tool_call_end``
        is emitted once a call's arguments form a complete JSON object, or on
        the provider's finish signal.
        """
        request_kwargs = self._request_kwargs(messages, tools, options, images)
        request_kwargs["stream"] = True
        request_kwargs["stream_options"] = {"include_usage": True}
        stream = await self._create(**request_kwargs)

        accumulator = ToolCallAccumulator()
        started: dict[int, str] = {}
        ended: set[str] = set()
        finish_reason: str | None = None

        def end_events(calls: list[ToolCall]) -> list[StreamEvent]:
            out = []
            for call in calls:
                if call.id in ended:
                    continue
                ended.add(call.id)
                out.append(
                    StreamEvent(
                        type="tool_call_end",
                        tool_call_id=call.id,
                        tool_name=call.name,
                        args=call.arguments,
                        content=call.raw_arguments,
                    )
                )
            return out

        try:
            async for chunk in stream:
                usage = getattr(chunk, "usage", None)
                if usage:
                    yield StreamEvent(
                        type="usage",
                        payload={
                            "input_tokens": usage.prompt_tokens or 0,
                            "output_tokens": usage.completion_tokens or 0,
                        },
                    )
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta

                if delta.content:
                    yield StreamEvent(type="text_delta", content=delta.content)

                for tc_delta in delta.tool_calls or []:
                    idx = tc_delta.index
                    fn = tc_delta.function
                    name = fn.name if fn and fn.name else None
                    fragment = fn.arguments if fn and fn.arguments else None
                    completed = accumulator.add(idx, call_id=tc_delta.id, name=name, fragment=fragment)
                    if idx not in started:
                        started[idx] = tc_delta.id or f"call_{idx}"
                        yield StreamEvent(type="tool_call_start", tool_call_id=started[idx], tool_name=name)
                    if fragment:
                        yield StreamEvent(
                            type="tool_call_delta",
                            tool_call_id=started[idx],
                            tool_name=name,
                            args_delta=fragment,
                            args=accumulator.preview(idx),
                        )
                    if completed is not None:
                        for event in end_events([completed]):
                            yield event

                if chunk.choices[0].finish_reason is not None:
                    finish_reason = chunk.choices[0].finish_reason
                    for event in end_events(accumulator.finish()):
                        yield event
        except openai.APIError as e:
            raise ProviderError(f"Stream interrupted: {e}") from e

        if accumulator.pending:
            # Stream ended without a finish signal; unbalanced text raises here
            for event in end_events(accumulator.finish()):
                yield event
        yield StreamEvent(type="done", finish_reason=finish_reason or "stop")
