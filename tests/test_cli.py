"""Tests for CLI commands."""

import argparse
import base64
from pathlib import Path
from unittest.mock import patch

import pytest

from image_agent.adapters.base import ModelResponse
from image_agent.cli import _image_arg, cmd_chat, cmd_tools
from image_agent.config import RuntimeSettings


def _args(**kwargs) -> argparse.Namespace:
    values = {
        "category": None,
        "json": False,
        "message": "hello",
        "images": None,
        "user": "cli",
        "model": None,
        "max_steps": None,
        "no_stream": False,
    }
    values.update(kwargs)
    return argparse.Namespace(**values)


class TestImageArg:
    """Tests for the --image argument conversion."""

    def test_urls_pass_through(self) -> None:
        assert _image_arg("https://x/a.png") == "https://x/a.png"
        assert _image_arg("data:image/png;base64,AAA") == "data:image/png;base64,AAA"

    def test_file_becomes_data_url(self, tmp_path: Path) -> None:
        path = tmp_path / "photo.jpg"
        path.write_bytes(b"\xff\xd8raw")

        value = _image_arg(str(path))

        assert value == "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8raw").decode()

    def test_missing_file_exits(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit):
            _image_arg(str(tmp_path / "nope.png"))


class TestCmdTools:
    """Tests for the tools command."""

    def test_table(self, capsys) -> None:
        cmd_tools(_args(), RuntimeSettings())

        assert "Total: 28 tools" in capsys.readouterr().out

    def test_json_by_category(self, capsys) -> None:
        cmd_tools(_args(category="translation", json=True), RuntimeSettings())

        out = capsys.readouterr().out
        assert '"name": "translate_text"' in out
        assert "generate_image" not in out


class TestCmdChat:
    """Tests for the chat command."""

    @pytest.mark.asyncio
    async def test_streamed_chat(self, service, gateway, make_tool_response, capsys) -> None:
        gateway.queue(
            make_tool_response(("call_1", "remove_background", {"image_url": "UPLOADED_IMAGE"})),
            ModelResponse(content="Background removed."),
        )

        with patch("image_agent.cli.AgentService.from_settings", return_value=service):
            code = await cmd_chat(_args(images=["data:image/png;base64,AAA"]), RuntimeSettings())

        out = capsys.readouterr().out
        assert code == 0
        assert "remove_background" in out
        assert "Background removed." in out

    @pytest.mark.asyncio
    async def test_blocking_chat_failure(self, service, gateway, capsys) -> None:
        from image_agent.errors import ProviderError

        gateway.queue(ProviderError("upstream down", provider_status=503))

        with patch("image_agent.cli.AgentService.from_settings", return_value=service):
            code = await cmd_chat(_args(no_stream=True), RuntimeSettings())

        assert code == 1
        assert "upstream down" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_invalid_config(self, service, capsys) -> None:
        with patch("image_agent.cli.AgentService.from_settings", return_value=service):
            code = await cmd_chat(_args(max_steps=-1), RuntimeSettings())

        assert code == 1
        assert "VALIDATION_ERROR" in capsys.readouterr().out
