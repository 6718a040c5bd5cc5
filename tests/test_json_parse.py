"""Tests for streaming tool-call argument assembly."""

from __future__ import annotations

import pytest

from image_agent.errors import ProviderError
from image_agent.utils.json_parse import ToolCallAccumulator, is_balanced, parse_streaming_json


class TestParseStreamingJson:
    def test_empty_string_returns_empty_dict(self) -> None:
        assert parse_streaming_json("") == {}
        assert parse_streaming_json("   ") == {}

    def test_complete_json(self) -> None:
        assert parse_streaming_json('{"width": 512}') == {"width": 512}

    def test_partial_json(self) -> None:
        result = parse_streaming_json('{"image_url": "UPLOADED_IMAGE", "scale": "2')
        assert result.get("image_url") == "UPLOADED_IMAGE"

    def test_non_dict_returns_empty_dict(self) -> None:
        assert parse_streaming_json("[1, 2]") == {}


class TestIsBalanced:
    def test_balanced_object(self) -> None:
        assert is_balanced('{"a": {"b": [1, 2]}}')

    def test_open_object(self) -> None:
        assert not is_balanced('{"a": {"b": 1}')

    def test_braces_inside_strings_ignored(self) -> None:
        assert is_balanced('{"text": "a } b { c"}')
        assert not is_balanced('{"text": "a } b')

    def test_escaped_quote(self) -> None:
        assert is_balanced('{"text": "say \\"hi\\" }"}')

    def test_empty_text_is_not_balanced(self) -> None:
        assert not is_balanced("")
        assert not is_balanced("  ")


class TestToolCallAccumulator:
    def test_completes_when_balanced(self) -> None:
        acc = ToolCallAccumulator()
        assert acc.add(0, call_id="call_1", name="resize_image", fragment='{"width"') is None
        assert acc.pending

        call = acc.add(0, fragment=": 512}")

        assert call is not None
        assert call.id == "call_1"
        assert call.name == "resize_image"
        assert call.arguments == {"width": 512}
        assert call.raw_arguments == '{"width": 512}'
        assert not acc.pending

    def test_interleaved_calls_keep_stream_order(self) -> None:
        acc = ToolCallAccumulator()
        acc.add(0, call_id="a", name="remove_background", fragment='{"image_url": ')
        acc.add(1, call_id="b", name="get_credits", fragment="{}")
        acc.add(0, fragment='"UPLOADED_IMAGE"}')

        calls = acc.finish()

        assert [c.id for c in calls] == ["a", "b"]
        assert calls[0].arguments == {"image_url": "UPLOADED_IMAGE"}

    def test_finish_completes_empty_arguments(self) -> None:
        acc = ToolCallAccumulator()
        acc.add(0, call_id="call_1", name="get_credits")

        calls = acc.finish()

        assert calls[0].arguments == {}
        assert calls[0].raw_arguments == "{}"

    def test_unbalanced_end_of_stream_raises(self) -> None:
        acc = ToolCallAccumulator()
        acc.add(0, call_id="call_1", name="resize_image", fragment='{"width": 5')

        with pytest.raises(ProviderError, match="malformed arguments"):
            acc.finish()

    def test_text_after_completion_raises(self) -> None:
        acc = ToolCallAccumulator()
        acc.add(0, call_id="call_1", name="resize_image", fragment='{"width": 5}')

        with pytest.raises(ProviderError):
            acc.add(0, fragment=', "height": 3}')

    def test_missing_name_raises(self) -> None:
        acc = ToolCallAccumulator()
        with pytest.raises(ProviderError, match="no function name"):
            acc.add(0, call_id="call_1", fragment="{}")

    def test_default_call_id(self) -> None:
        acc = ToolCallAccumulator()
        call = acc.add(3, name="get_credits", fragment="{}")
        assert call is not None
        assert call.id == "call_3"
