"""Tests for session config and runtime settings."""

from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest

from image_agent.config import DEFAULT_MODEL, AgentConfig, RuntimeSettings
from image_agent.errors import ValidationError


class TestAgentConfig:
    def test_defaults(self) -> None:
        config = AgentConfig()
        assert config.model == DEFAULT_MODEL
        assert config.temperature == 0.7
        assert config.max_tokens == 4096
        assert config.max_steps == 10
        assert config.available_tools is None
        assert "UPLOADED_IMAGE" in config.system_prompt

    def test_from_dict_accepts_both_key_styles(self) -> None:
        camel = AgentConfig.from_dict({"maxSteps": 3, "maxTokens": 100, "availableTools": ["get_credits"]})
        snake = AgentConfig.from_dict({"max_steps": 3, "max_tokens": 100, "available_tools": ["get_credits"]})
        assert camel == snake
        assert camel.max_steps == 3

    def test_to_dict_is_camel_case(self) -> None:
        data = AgentConfig(max_steps=2).to_dict()
        assert data["maxSteps"] == 2
        assert set(data) == {"model", "systemPrompt", "temperature", "maxTokens", "maxSteps", "availableTools"}

    @pytest.mark.parametrize(
        "overrides",
        [
            {"model": ""},
            {"temperature": 2.5},
            {"temperature": "hot"},
            {"max_tokens": 0},
            {"max_steps": 0},
            {"max_steps": True},
        ],
    )
    def test_validate_rejects_bad_values(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            AgentConfig(**overrides).validate()

    def test_validate_rejects_unknown_tools(self, registry) -> None:
        config = AgentConfig(available_tools=["remove_background", "teleport"])
        with pytest.raises(ValidationError, match="teleport"):
            config.validate(registry)

    def test_validate_accepts_known_tools(self, registry) -> None:
        AgentConfig(available_tools=["remove_background", "get_credits"]).validate(registry)


class TestRuntimeSettings:
    def test_tool_timeout(self) -> None:
        settings = RuntimeSettings(default_tool_timeout_seconds=60, tool_timeout_multiplier=3)
        assert settings.tool_timeout(15) == 45
        assert settings.tool_timeout(0) == 60
        assert settings.tool_timeout(None) == 60

    def test_from_yaml_string(self) -> None:
        settings = RuntimeSettings.from_yaml_string(
            dedent(
                """
                base_url: https://openrouter.ai/api/v1
                max_retries: 4
                storage: sqlite
                sqlite_path: ./data/sessions.db
                log_level: debug
                """
            )
        )
        assert settings.base_url == "https://openrouter.ai/api/v1"
        assert settings.max_retries == 4
        assert settings.storage == "sqlite"
        assert settings.sqlite_path == Path("./data/sessions.db")
        assert settings.log_level == "DEBUG"

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("default_credits: 25\n")
        assert RuntimeSettings.from_yaml(path).default_credits == 25

    def test_unknown_storage_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RuntimeSettings.from_dict({"storage": "redis"})

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("IMAGE_AGENT_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("IMAGE_AGENT_MODEL", "openai/gpt-4o")
        monkeypatch.setenv("IMAGE_AGENT_DEFAULT_CREDITS", "7")

        settings = RuntimeSettings.from_env(dotenv=False, max_retries=0)

        assert settings.api_key == "sk-test"
        assert settings.default_model == "openai/gpt-4o"
        assert settings.default_credits == 7
        assert settings.max_retries == 0

    def test_to_dict_masks_api_key(self) -> None:
        data = RuntimeSettings(api_key="sk-secret", backend_api_key="bk-secret").to_dict()
        assert data["api_key"] == "***"
        assert data["backend_api_key"] == "***"
