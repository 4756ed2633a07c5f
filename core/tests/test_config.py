"""Tests for ~/.agentflow/configuration.json handling."""

import json
from pathlib import Path

import pytest

from agentflow import config


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "configuration.json"
    monkeypatch.setattr(config, "AGENTFLOW_CONFIG_FILE", path)
    monkeypatch.delenv("AGENTFLOW_USE_SIMULATORS", raising=False)
    return path


def write(path: Path, data: dict) -> None:
    path.write_text(json.dumps(data), encoding="utf-8")


class TestConfig:
    def test_defaults_without_file(self, config_file):
        assert config.get_agentflow_config() == {}
        assert config.get_preferred_model() == config.DEFAULT_MODEL
        assert config.get_max_tokens() == config.DEFAULT_MAX_TOKENS
        assert config.get_api_key() is None
        assert config.get_use_simulators() is False
        assert config.get_visual_delay_ms() == 0
        assert config.get_history_dir() == Path.home() / ".agentflow" / "runs"

    def test_unreadable_file_is_empty(self, config_file):
        config_file.write_text("{not json")
        assert config.get_agentflow_config() == {}

    def test_values_from_file(self, config_file, monkeypatch):
        monkeypatch.setenv("MY_KEY", "sk-test")
        write(
            config_file,
            {
                "llm": {"provider": "anthropic", "model": "claude-3-haiku", "max_tokens": 512, "api_key_env_var": "MY_KEY"},
                "use_simulators": True,
                "visual_delay_ms": 250,
                "history_dir": "~/runs",
            },
        )

        assert config.get_preferred_model() == "anthropic/claude-3-haiku"
        assert config.get_max_tokens() == 512
        assert config.get_api_key() == "sk-test"
        assert config.get_use_simulators() is True
        assert config.get_visual_delay_ms() == 250
        assert config.get_history_dir() == Path("~/runs").expanduser()

        runtime = config.RuntimeConfig()
        assert runtime.model == "anthropic/claude-3-haiku"
        assert runtime.visual_delay_ms == 250

    def test_model_without_provider(self, config_file):
        write(config_file, {"llm": {"model": "gpt-4o"}})
        assert config.get_preferred_model() == "gpt-4o"

    @pytest.mark.parametrize("value,expected", [("1", True), ("on", True), ("YES", True), ("0", False), ("off", False)])
    def test_simulator_env_overrides_file(self, config_file, monkeypatch, value, expected):
        write(config_file, {"use_simulators": not expected})
        monkeypatch.setenv("AGENTFLOW_USE_SIMULATORS", value)
        assert config.get_use_simulators() is expected
