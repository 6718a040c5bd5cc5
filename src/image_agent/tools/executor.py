"""
Tool executor.

Runs a single tool call against the registry: lookup, credit pre-check,
argument validation, image reference resolution, timeout, and conversion of
every failure into a ``ToolExecutionResult``. Nothing raised by a handler
escapes ``execute_tool``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from image_agent.config import RuntimeSettings
from image_agent.errors import (
    CANCELLED,
    INSUFFICIENT_CREDITS,
    TOOL_HANDLER_ERROR,
    VALIDATION_ERROR,
    AgentError,
    ToolNotFoundError,
    ToolTimeoutError,
    ValidationError,
)
from image_agent.logging import get_logger
from image_agent.models import ImageArtifact, ToolExecutionContext, ToolExecutionResult
from image_agent.tools.references import artifact_key, resolve_image_args
from image_agent.tools.registry import RegisteredTool, ToolRegistry

logger = get_logger("tools.executor")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _mime_from_url(url: str) -> str | None:
    if url.startswith("data:") and ";" in url:
        return url[5:url.index(";")]
    return None


class ToolExecutor:
    """Executes tool calls for agent sessions.

    Example:
        executor = ToolExecutor(registry)
        result = await executor.execute_tool("remove_background", {"image_url": "UPLOADED_IMAGE"}, ctx)
    """

    def __init__(self, registry: ToolRegistry, settings: RuntimeSettings | None = None) -> None:
        self.registry = registry
        self.settings = settings or RuntimeSettings()

    async def execute_tool(
        self,
        name: str,
        args: dict[str, Any],
        context: ToolExecutionContext,
        call_id: str | None = None,
    ) -> ToolExecutionResult:
        """Execute one tool call. Never raises for tool-level failures."""
        start = time.monotonic()
        try:
            tool = self._lookup(name)
        except ToolNotFoundError as e:
            logger.info("Unknown tool requested: %s", name)
            return ToolExecutionResult.failure(e.message, e.code, _elapsed_ms(start))

        if context.available_credits < tool.credits_required:
            logger.info(
                "Insufficient credits for %s: required %d, available %d",
                name, tool.credits_required, context.available_credits,
            )
            return ToolExecutionResult.failure(
                "Insufficient credits",
                INSUFFICIENT_CREDITS,
                _elapsed_ms(start),
                data={"required": tool.credits_required, "available": context.available_credits},
            )

        if tool.validate_args is not None:
            error = tool.validate_args(args)
            if error:
                return ToolExecutionResult.failure(error, VALIDATION_ERROR, _elapsed_ms(start))

        if context.is_cancelled:
            return ToolExecutionResult.failure("Cancelled before execution", CANCELLED, _elapsed_ms(start))

        try:
            resolved = self._resolve_args(tool, args, context)
        except ValidationError as e:
            return ToolExecutionResult.failure(e.message, VALIDATION_ERROR, _elapsed_ms(start))

        try:
            result = await self._invoke(tool, resolved, context)
        except AgentError as e:
            logger.warning("Tool %s failed: %s", name, e.message)
            return ToolExecutionResult.failure(e.message, e.code, _elapsed_ms(start))
        except Exception as e:
            logger.exception("Tool %s raised", name)
            return ToolExecutionResult.failure(str(e) or type(e).__name__, TOOL_HANDLER_ERROR, _elapsed_ms(start))

        result.execution_time_ms = result.execution_time_ms or _elapsed_ms(start)
        if not result.success:
            result.credits_used = 0
            result.error_code = result.error_code or TOOL_HANDLER_ERROR
            return result

        if tool.produces_image and call_id:
            self._store_artifact(tool, result, context, call_id)
        return result

    def _lookup(self, name: str) -> RegisteredTool:
        tool = self.registry.get(name)
        if tool is None:
            raise ToolNotFoundError(f'Tool "{name}" not found', tool=name)
        return tool

    async def _invoke(
        self,
        tool: RegisteredTool,
        args: dict[str, Any],
        context: ToolExecutionContext,
    ) -> ToolExecutionResult:
        """Run the handler under the tool's timeout."""
        timeout = self.settings.tool_timeout(tool.estimated_time_seconds)
        logger.debug("Executing %s (timeout %.1fs)", tool.name, timeout)
        try:
            return await asyncio.wait_for(tool.handler(args, context), timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolTimeoutError(
                f'Tool "{tool.name}" timed out after {timeout:g}s', tool=tool.name, timeout=timeout
            ) from None

    def _resolve_args(
        self,
        tool: RegisteredTool,
        args: dict[str, Any],
        context: ToolExecutionContext,
    ) -> dict[str, Any]:
        if not tool.image_params:
            return dict(args)
        properties = tool.parameters.get("properties", {})
        array_params = frozenset(
            p for p in tool.image_params if properties.get(p, {}).get("type") == "array"
        )
        return resolve_image_args(
            args,
            tool.image_params,
            context,
            fallback_param=tool.image_params[0] if tool.requires_image else None,
            array_params=array_params,
        )

    def _store_artifact(
        self,
        tool: RegisteredTool,
        result: ToolExecutionResult,
        context: ToolExecutionContext,
        call_id: str,
    ) -> None:
        """Move a produced image into the artifact store, leaving a key in the result."""
        if not isinstance(result.data, dict):
            return
        url = result.data.get("resultUrl")
        if not isinstance(url, str) or not url:
            return
        key = artifact_key(context.step_index, call_id)
        context.artifacts[key] = ImageArtifact(
            key=key,
            url=url,
            source="generated" if tool.category == "image_generation" else "processed",
            mime_type=_mime_from_url(url),
            metadata={"tool": tool.name, "call_id": call_id},
        )
        data = dict(result.data)
        data["image_ref"] = key
        if url.startswith("data:"):
            del data["resultUrl"]
        result.data = data
        logger.debug("Stored artifact %s from %s", key, tool.name)
