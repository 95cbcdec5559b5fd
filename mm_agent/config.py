"""Typed runtime configuration for mm_agent."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MODEL_ENV = "MM_AGENT_MODEL"
MAX_TOKENS_ENV = "MM_AGENT_MAX_TOKENS"
TEMPERATURE_ENV = "MM_AGENT_TEMPERATURE"
MAX_MESSAGES_ENV = "MM_AGENT_MAX_MESSAGES"
MAX_HISTORY_ENV = "MM_AGENT_MAX_HISTORY"
TOOL_RESULT_MAX_LENGTH_ENV = "MM_AGENT_TOOL_RESULT_MAX_LENGTH"
TOOL_TIMEOUT_ENV = "MM_AGENT_TOOL_TIMEOUT"
REQUEST_TIMEOUT_ENV = "MM_AGENT_REQUEST_TIMEOUT"
NUM_RETRIES_ENV = "MM_AGENT_NUM_RETRIES"
ANALYTICS_ENV = "MM_AGENT_ANALYTICS"
DB_PATH_ENV = "MM_AGENT_DB_PATH"

DEFAULT_MODEL = "anthropic/claude-sonnet-4-20250514"
DEFAULT_MAX_MESSAGES: int = 50
"""Loop hard stop: once the scratch conversation holds more messages, the loop completes."""

DEFAULT_MAX_HISTORY: int = 20
"""Messages retained per session in the registry."""

DEFAULT_TOOL_RESULT_MAX_LENGTH: int = 50_000
"""Maximum characters of a single tool result fed back to the reasoning service."""


def default_db_path() -> Path:
    return Path.cwd() / "data" / "analytics.db"


def _parse_env(name: str, parse: Callable[[str], T], default: T, expected: str) -> T:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return parse(raw.strip())
    except ValueError:
        logger.warning(
            "Invalid %s=%r; expected %s. Defaulting to %r.",
            name,
            raw,
            expected,
            default,
        )
        return default


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise ValueError(raw)
    return value


def _non_negative_int(raw: str) -> int:
    value = int(raw)
    if value < 0:
        raise ValueError(raw)
    return value


def _optional_seconds(raw: str) -> float | None:
    if raw.lower() in {"none", "off", "0"}:
        return None
    value = float(raw)
    if value <= 0:
        raise ValueError(raw)
    return value


def _bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(raw)


@dataclass(frozen=True)
class OrchestratorConfig:
    """Runtime policy/config resolved once and passed explicitly to the orchestrator."""

    model: str = DEFAULT_MODEL
    max_tokens: int = 1000
    temperature: float = 0.7
    max_messages: int = DEFAULT_MAX_MESSAGES
    max_history: int = DEFAULT_MAX_HISTORY
    tool_result_max_length: int = DEFAULT_TOOL_RESULT_MAX_LENGTH
    tool_timeout_s: float | None = None
    request_timeout_s: float = 60.0
    num_retries: int = 2
    enable_analytics: bool = True
    analytics_db_path: Path | None = None

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Build typed config from environment variables, falling back per field."""
        defaults = cls()
        db_raw = os.environ.get(DB_PATH_ENV, "").strip()
        return cls(
            model=os.environ.get(MODEL_ENV, "").strip() or defaults.model,
            max_tokens=_parse_env(MAX_TOKENS_ENV, _positive_int, defaults.max_tokens, "positive integer"),
            temperature=_parse_env(TEMPERATURE_ENV, float, defaults.temperature, "float"),
            max_messages=_parse_env(MAX_MESSAGES_ENV, _positive_int, defaults.max_messages, "positive integer"),
            max_history=_parse_env(MAX_HISTORY_ENV, _positive_int, defaults.max_history, "positive integer"),
            tool_result_max_length=_parse_env(
                TOOL_RESULT_MAX_LENGTH_ENV,
                _positive_int,
                defaults.tool_result_max_length,
                "positive integer",
            ),
            tool_timeout_s=_parse_env(
                TOOL_TIMEOUT_ENV, _optional_seconds, defaults.tool_timeout_s, "seconds or 'off'",
            ),
            request_timeout_s=_parse_env(
                REQUEST_TIMEOUT_ENV, float, defaults.request_timeout_s, "seconds",
            ),
            num_retries=_parse_env(NUM_RETRIES_ENV, _non_negative_int, defaults.num_retries, "integer >= 0"),
            enable_analytics=_parse_env(ANALYTICS_ENV, _bool, defaults.enable_analytics, "on/off boolean"),
            analytics_db_path=Path(db_raw) if db_raw else None,
        )

    @property
    def resolved_db_path(self) -> Path:
        return self.analytics_db_path if self.analytics_db_path is not None else default_db_path()

    def with_overrides(self, **changes: Any) -> "OrchestratorConfig":
        """Return a copy with the given fields replaced."""
        if "analytics_db_path" in changes and changes["analytics_db_path"] is not None:
            changes["analytics_db_path"] = Path(changes["analytics_db_path"])
        return dataclasses.replace(self, **changes)

    def public_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["analytics_db_path"] = str(self.resolved_db_path)
        return data
