"""Summary: Tests for configuration loading and editing.

Importance: Ensures defaults, environment overrides, and policy parsing behave predictably.
Alternatives: Validate configuration only through the CLI.
"""

from __future__ import annotations

import json
import os
from datetime import time
from pathlib import Path

import pytest

from calpilot.config import (
    AIConfig,
    AppConfig,
    ProviderConfig,
    parse_clock,
    set_config_value,
    working_hours_from_dict,
)

ENV_VARS = (
    "CALPILOT_DB_PATH",
    "CALPILOT_TIMEZONE",
    "CALPILOT_GRANT_ID",
    "CALPILOT_CALENDAR_FIXTURE",
    "CALPILOT_CALENDAR_ICS",
    "CALPILOT_API_HOST",
    "CALPILOT_API_PORT",
    "CALPILOT_API_KEY",
    "CALPILOT_AI_PROVIDER",
    "CALPILOT_ALLOW_CLOUD_AI",
    "OLLAMA_URL",
    "OLLAMA_MODEL",
)


def _write_defaults(tmp_path: Path) -> Path:
    path = tmp_path / "defaults.json"
    path.write_text(
        json.dumps(
            {
                "db_path": str(tmp_path / "calpilot.db"),
                "timezone": "Europe/Berlin",
                "working_hours": {
                    "start": "08:30",
                    "end": "16:30",
                    "breaks": [
                        {"name": "Coffee", "start": "15:00", "end": "15:15"},
                        {"name": "Lunch", "start": "12:00", "end": "13:00", "type": "lunch"},
                    ],
                },
                "ai": {
                    "default_provider": "claude",
                    "fallback": {"enabled": True, "providers": ["openai"]},
                    "features": {"email_context_analysis": True},
                    "budget": {"monthly_limit": 20},
                },
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    monkeypatch.setattr(
        os, "environ", {key: value for key, value in os.environ.items() if key not in ENV_VARS}
    )
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_config_loads_defaults(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Summary: Verify AppConfig reads the defaults file.

    Importance: Ensures configuration is centralized and predictable.
    Alternatives: Require all settings to be passed via environment variables.
    """

    config = AppConfig.from_env(_write_defaults(tmp_path))
    assert config.timezone == "Europe/Berlin"
    assert config.api_port == 8000
    assert config.ai.default_provider == "claude"
    assert config.ai.fallback.enabled is True
    assert config.ai.fallback.providers == ("openai",)
    assert config.ai.features.email_context_analysis is True
    assert config.ai.features.focus_time_protection is True
    assert config.ai.budget.monthly_limit == 20.0
    assert config.working_hours.timezone == "Europe/Berlin"
    assert config.working_hours.start == time(8, 30)
    assert [item.name for item in config.working_hours.breaks] == ["Lunch", "Coffee"]


def test_environment_overrides_defaults(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Summary: Verify environment variables win over the defaults file.

    Importance: Deployments override provider and privacy settings without editing files.
    Alternatives: Use separate defaults files per environment.
    """

    clean_env.setenv("CALPILOT_AI_PROVIDER", "ollama")
    clean_env.setenv("CALPILOT_ALLOW_CLOUD_AI", "false")
    clean_env.setenv("OLLAMA_MODEL", "mistral")
    clean_env.setenv("CALPILOT_API_PORT", "9001")
    config = AppConfig.from_env(_write_defaults(tmp_path))
    assert config.api_port == 9001
    assert config.ai.default_provider == "ollama"
    assert config.ai.privacy.allow_cloud_ai is False
    assert config.ai.providers["ollama"].model == "mistral"
    assert config.ai.providers["ollama"].local is True


def test_dotenv_does_not_override_environment(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("CALPILOT_GRANT_ID=from-dotenv\nCALPILOT_API_KEY=secret\n", encoding="utf-8")
    clean_env.setenv("CALPILOT_GRANT_ID", "from-env")
    config = AppConfig.from_env(_write_defaults(tmp_path))
    assert config.grant_id == "from-env"
    assert config.api_key == "secret"


def test_missing_defaults_file_raises(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        AppConfig.from_env(tmp_path / "missing.json")


def test_provider_defaults_and_local_cost() -> None:
    claude = ProviderConfig.from_dict("claude", {"model": "claude-custom"})
    assert claude.model == "claude-custom"
    assert claude.api_key_env == "ANTHROPIC_API_KEY"
    assert claude.cost_per_1k_input > 0
    ollama = ProviderConfig.from_dict("ollama", {"cost_per_1k_input": 1.0})
    assert ollama.local is True
    assert ollama.cost_per_1k_input == 0.0


def test_ai_config_defaults() -> None:
    config = AIConfig.from_dict({})
    assert config.default_provider == "mock"
    assert set(config.providers) == {"mock"}
    assert config.privacy.allow_cloud_ai is True
    assert config.privacy.data_retention_days == 90
    assert config.features.email_context_analysis is False


def test_ai_config_is_deeply_immutable() -> None:
    source = {"claude": ProviderConfig.from_dict("claude", {})}
    config = AIConfig(providers=source)
    source["openai"] = ProviderConfig.from_dict("openai", {})
    assert set(config.providers) == {"claude"}
    with pytest.raises(TypeError):
        config.providers["ollama"] = ProviderConfig.from_dict("ollama", {})  # type: ignore[index]
    with pytest.raises(TypeError):
        AIConfig.from_dict({}).providers["mock"] = source["claude"]  # type: ignore[index]


def test_working_hours_validation() -> None:
    """Summary: Verify malformed working-hour settings are rejected at load time.

    Importance: Policy checks assume a well-formed working window.
    Alternatives: Clamp invalid values silently.
    """

    assert parse_clock("9:05") == time(9, 5)
    with pytest.raises(ValueError):
        parse_clock("25:00")
    with pytest.raises(ValueError):
        parse_clock("noon")
    with pytest.raises(ValueError):
        working_hours_from_dict({"start": "17:00", "end": "09:00"}, "UTC")
    with pytest.raises(ValueError):
        working_hours_from_dict({"breaks": [{"name": "Lunch", "start": "13:00", "end": "12:00"}]}, "UTC")


def test_set_config_value_updates_file(tmp_path: Path) -> None:
    """Summary: Verify dotted keys are written back to the defaults file.

    Importance: The CLI is the only write path for configuration.
    Alternatives: Ask users to edit JSON by hand.
    """

    path = _write_defaults(tmp_path)
    set_config_value(path, "features.focus_time_protection", "false")
    set_config_value(path, "fallback.providers", "openai, groq")
    set_config_value(path, "privacy.data_retention", "30")
    set_config_value(path, "working_hours.end", "18:00")
    set_config_value(path, "ollama.model", "mistral")

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["ai"]["features"]["focus_time_protection"] is False
    assert raw["ai"]["fallback"]["providers"] == ["openai", "groq"]
    assert raw["ai"]["privacy"]["data_retention"] == 30
    assert raw["working_hours"]["end"] == "18:00"
    assert raw["ai"]["providers"]["ollama"]["model"] == "mistral"


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("default_provider", "watsonx"),
        ("budget.alert_threshold", "1.5"),
        ("features.telepathy", "true"),
        ("privacy.data_retention", "-1"),
        ("working_hours.start", "9am"),
        ("unknown", "1"),
    ],
)
def test_set_config_value_rejects_invalid(tmp_path: Path, key: str, value: str) -> None:
    path = _write_defaults(tmp_path)
    before = path.read_text(encoding="utf-8")
    with pytest.raises(ValueError):
        set_config_value(path, key, value)
    assert path.read_text(encoding="utf-8") == before
