"""Tests for mm_agent.config — env parsing and overrides."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from mm_agent.config import (
    DEFAULT_MAX_HISTORY,
    DEFAULT_MAX_MESSAGES,
    OrchestratorConfig,
    default_db_path,
)

_ENV_VARS = [
    "MM_AGENT_MODEL",
    "MM_AGENT_MAX_TOKENS",
    "MM_AGENT_TEMPERATURE",
    "MM_AGENT_MAX_MESSAGES",
    "MM_AGENT_MAX_HISTORY",
    "MM_AGENT_TOOL_RESULT_MAX_LENGTH",
    "MM_AGENT_TOOL_TIMEOUT",
    "MM_AGENT_REQUEST_TIMEOUT",
    "MM_AGENT_NUM_RETRIES",
    "MM_AGENT_ANALYTICS",
    "MM_AGENT_DB_PATH",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self):
        cfg = OrchestratorConfig()
        assert cfg.max_messages == DEFAULT_MAX_MESSAGES == 50
        assert cfg.max_history == DEFAULT_MAX_HISTORY == 20
        assert cfg.tool_timeout_s is None
        assert cfg.enable_analytics is True
        assert cfg.resolved_db_path == default_db_path()

    def test_from_env_empty_matches_defaults(self):
        assert OrchestratorConfig.from_env() == OrchestratorConfig()


class TestFromEnv:
    def test_reads_values(self, monkeypatch):
        monkeypatch.setenv("MM_AGENT_MODEL", "gpt-4o-mini")
        monkeypatch.setenv("MM_AGENT_MAX_MESSAGES", "12")
        monkeypatch.setenv("MM_AGENT_TOOL_TIMEOUT", "3.5")
        monkeypatch.setenv("MM_AGENT_ANALYTICS", "off")
        monkeypatch.setenv("MM_AGENT_DB_PATH", "/tmp/x/analytics.db")

        cfg = OrchestratorConfig.from_env()
        assert cfg.model == "gpt-4o-mini"
        assert cfg.max_messages == 12
        assert cfg.tool_timeout_s == 3.5
        assert cfg.enable_analytics is False
        assert cfg.resolved_db_path == Path("/tmp/x/analytics.db")

    def test_tool_timeout_off(self, monkeypatch):
        monkeypatch.setenv("MM_AGENT_TOOL_TIMEOUT", "off")
        assert OrchestratorConfig.from_env().tool_timeout_s is None

    def test_invalid_value_warns_and_defaults(self, monkeypatch, caplog):
        monkeypatch.setenv("MM_AGENT_MAX_HISTORY", "-3")
        with caplog.at_level(logging.WARNING, logger="mm_agent.config"):
            cfg = OrchestratorConfig.from_env()
        assert cfg.max_history == DEFAULT_MAX_HISTORY
        assert "MM_AGENT_MAX_HISTORY" in caplog.text

    def test_invalid_bool(self, monkeypatch):
        monkeypatch.setenv("MM_AGENT_ANALYTICS", "maybe")
        assert OrchestratorConfig.from_env().enable_analytics is True


class TestOverrides:
    def test_with_overrides_returns_copy(self):
        cfg = OrchestratorConfig()
        new = cfg.with_overrides(max_tokens=10, analytics_db_path="a/b.db")
        assert new.max_tokens == 10
        assert new.analytics_db_path == Path("a/b.db")
        assert cfg.max_tokens == 1000

    def test_with_overrides_rejects_unknown_field(self):
        with pytest.raises(TypeError):
            OrchestratorConfig().with_overrides(api_key="secret")

    def test_public_dict(self, tmp_path):
        cfg = OrchestratorConfig(analytics_db_path=tmp_path / "a.db")
        data = cfg.public_dict()
        assert data["analytics_db_path"] == str(tmp_path / "a.db")
        assert data["max_messages"] == 50
