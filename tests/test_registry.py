"""Tests for the tool registry and the built-in catalog."""

from __future__ import annotations

import pytest

from image_agent.errors import DuplicateToolError, ValidationError
from image_agent.models import ToolExecutionContext, ToolExecutionResult
from image_agent.services import InMemoryBilling
from image_agent.tools.catalog import SOCIAL_PLATFORMS, remote_handler
from image_agent.tools.registry import RegisteredTool, ToolRegistry


async def _noop(args: dict, context: ToolExecutionContext) -> ToolExecutionResult:
    return ToolExecutionResult(success=True)


def _tool(name: str, **kwargs) -> RegisteredTool:
    return RegisteredTool(
        name=name,
        description=f"{name} tool",
        parameters={"type": "object", "properties": {}},
        handler=_noop,
        **kwargs,
    )


class TestToolRegistry:
    def test_register_and_get(self) -> None:
        registry = ToolRegistry()
        registry.register(_tool("alpha"))

        assert registry.get("alpha").name == "alpha"
        assert registry.get("beta") is None
        assert "alpha" in registry
        assert len(registry) == 1

    def test_duplicate_name_fails_fast(self) -> None:
        registry = ToolRegistry([_tool("alpha")])
        with pytest.raises(DuplicateToolError):
            registry.register(_tool("alpha"))
        assert issubclass(DuplicateToolError, ValidationError)

    def test_definitions_use_function_format(self) -> None:
        registry = ToolRegistry([_tool("alpha")])
        assert registry.get_definitions() == [
            {
                "type": "function",
                "function": {
                    "name": "alpha",
                    "description": "alpha tool",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
        ]

    def test_allowlist_keeps_registry_order(self) -> None:
        registry = ToolRegistry([_tool("alpha"), _tool("beta"), _tool("gamma")])

        names = [d["function"]["name"] for d in registry.get_definitions(["gamma", "alpha", "unknown"])]

        assert names == ["alpha", "gamma"]
        assert registry.get_definitions([]) == []

    def test_requires_image_defaults_image_param(self) -> None:
        assert _tool("alpha", requires_image=True).image_params == ("image_url",)
        assert _tool("beta").image_params == ()

    def test_tools_are_immutable(self) -> None:
        tool = _tool("alpha")
        with pytest.raises(AttributeError):
            tool.credits_required = 5  # type: ignore[misc]


class TestCatalog:
    def test_full_catalog(self, registry) -> None:
        assert len(registry) == 28
        assert {"remove_background", "generate_image", "translate_text", "create_zip", "get_credits"} <= set(registry.names())

    def test_costs_and_estimates(self, registry) -> None:
        remove = registry.get("remove_background")
        assert remove.credits_required == 1
        assert remove.requires_image and remove.produces_image
        assert registry.get("upscale_image").credits_required == 2
        assert registry.get("get_credits").credits_required == 0

    def test_categories(self, registry) -> None:
        generation = {t.name for t in registry.get_tools_by_category("image_generation")}
        assert "generate_image" in generation
        assert all(t.category == "utility" for t in registry.get_tools_by_category("utility"))

    def test_special_image_params(self, registry) -> None:
        assert registry.get("add_watermark").image_params == ("image_url", "watermark_image_url")
        assert registry.get("batch_process").image_params == ("images",)
        assert not registry.get("create_zip").requires_image

    def test_social_platform_validator(self, registry) -> None:
        validate = registry.get("resize_for_social").validate_args
        assert validate({"platforms": [SOCIAL_PLATFORMS[0]]}) is None
        assert "myspace" in validate({"platforms": ["myspace"]})

    def test_info_is_camel_case(self, registry) -> None:
        info = registry.get("remove_background").info()
        assert info["creditsRequired"] == 1
        assert info["category"] == "image_editing"
        assert info["requiresImage"] is True


class TestHandlers:
    @pytest.mark.asyncio
    async def test_remote_handler_debits_on_success(self, backend, make_context) -> None:
        billing = InMemoryBilling(default_credits=10)
        handler = remote_handler("upscale_image", backend, billing, credits=2)

        result = await handler({"image_url": "https://x/a.png", "scale": "4x"}, make_context())

        assert result.success is True
        assert result.credits_used == 2
        assert billing.balance("user-1") == 8
        assert backend.calls == [("upscale_image", "https://x/a.png", {"scale": "4x"})]

    @pytest.mark.asyncio
    async def test_remote_handler_failed_debit(self, backend, make_context) -> None:
        billing = InMemoryBilling(default_credits=1)
        handler = remote_handler("upscale_image", backend, billing, credits=2)

        result = await handler({"image_url": "https://x/a.png"}, make_context())

        assert result.success is False
        assert result.error_code == "INSUFFICIENT_CREDITS"
        assert result.credits_used == 0

    @pytest.mark.asyncio
    async def test_get_credits_reads_context(self, executor, make_context) -> None:
        result = await executor.execute_tool("get_credits", {}, make_context(available_credits=42))
        assert result.data["availableCredits"] == 42

    @pytest.mark.asyncio
    async def test_session_history_lists_previous_results(self, executor, make_context) -> None:
        ctx = make_context(
            previous_results={
                "call_1": ToolExecutionResult(success=True, data={"image_ref": "step:0:tool:call_1"}, credits_used=1),
                "call_2": ToolExecutionResult(success=False, error="boom", error_code="TOOL_HANDLER_ERROR"),
            }
        )

        result = await executor.execute_tool("get_session_history", {"limit": 5}, ctx)

        operations = result.data["operations"]
        assert [op["callId"] for op in operations] == ["call_1", "call_2"]
        assert operations[0]["imageRef"] == "step:0:tool:call_1"
        assert operations[1]["error"] == "boom"
        assert result.data["totalCreditsUsed"] == 1
