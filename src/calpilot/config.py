"""Summary: Application and AI configuration for CalPilot.

Importance: Centralizes defaults, .env, and environment overrides into read-only settings.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from calpilot.models import Break, WorkingHoursPolicy


LOCAL_PROVIDERS = ("mock", "ollama")
KNOWN_PROVIDERS = ("mock", "ollama", "claude", "openai", "groq", "openrouter")
FEATURE_NAMES = (
    "natural_language_scheduling",
    "predictive_scheduling",
    "focus_time_protection",
    "conflict_resolution",
    "email_context_analysis",
)

_PROVIDER_DEFAULTS: dict[str, dict[str, Any]] = {
    "mock": {"model": "mock"},
    "ollama": {"model": "llama3.1:8b", "host": "http://localhost:11434"},
    "claude": {
        "model": "claude-3-5-sonnet-20241022",
        "host": "https://api.anthropic.com",
        "api_key_env": "ANTHROPIC_API_KEY",
        "cost_per_1k_input": 0.003,
        "cost_per_1k_output": 0.015,
    },
    "openai": {
        "model": "gpt-4o-mini",
        "host": "https://api.openai.com",
        "api_key_env": "OPENAI_API_KEY",
        "cost_per_1k_input": 0.00015,
        "cost_per_1k_output": 0.0006,
    },
    "groq": {
        "model": "llama-3.1-70b-versatile",
        "host": "https://api.groq.com/openai",
        "api_key_env": "GROQ_API_KEY",
        "cost_per_1k_input": 0.00059,
        "cost_per_1k_output": 0.00079,
    },
    "openrouter": {
        "model": "anthropic/claude-3.5-sonnet",
        "host": "https://openrouter.ai/api",
        "api_key_env": "OPENROUTER_API_KEY",
        "cost_per_1k_input": 0.003,
        "cost_per_1k_output": 0.015,
    },
}


@dataclass(frozen=True)
class ProviderConfig:
    """Summary: Connection settings for one LLM backend.

    Importance: Holds a credential reference, never the raw secret.
    Alternatives: Store API keys inline in the configuration file.
    """

    name: str
    model: str
    host: str = ""
    api_key_env: str = ""
    local: bool = False
    timeout_seconds: float = 30.0
    cost_per_1k_input: float = 0.0
    cost_per_1k_output: float = 0.0

    @staticmethod
    def from_dict(name: str, raw: dict[str, Any]) -> "ProviderConfig":
        """Summary: Build a provider config, filling vendor defaults.

        Importance: Lets the config file list only the fields a user changes.
        Alternatives: Require every field for every provider.
        """

        merged = {**_PROVIDER_DEFAULTS.get(name, {}), **raw}
        local = bool(merged.get("local", name in LOCAL_PROVIDERS))
        return ProviderConfig(
            name=name,
            model=str(merged.get("model", "")),
            host=str(merged.get("host", "")),
            api_key_env=str(merged.get("api_key_env", "")),
            local=local,
            timeout_seconds=float(merged.get("timeout_seconds", 30.0)),
            cost_per_1k_input=0.0 if local else float(merged.get("cost_per_1k_input", 0.0)),
            cost_per_1k_output=0.0 if local else float(merged.get("cost_per_1k_output", 0.0)),
        )


@dataclass(frozen=True)
class FallbackConfig:
    """Summary: Ordered fallback chain settings."""

    enabled: bool = False
    providers: tuple[str, ...] = ()


@dataclass(frozen=True)
class PrivacyConfig:
    """Summary: Privacy policy governing cloud AI usage.

    Importance: Enforced by the router before any provider is called.
    Alternatives: Trust each caller to pick an allowed provider.
    """

    allow_cloud_ai: bool = True
    data_retention_days: int = 90
    local_storage_only: bool = False


@dataclass(frozen=True)
class FeaturesConfig:
    """Summary: Capability toggles resolved once at startup.

    Importance: Passed into the engine so it never re-reads configuration mid-request.
    Alternatives: Look flags up in a loosely typed dict on every call.
    """

    natural_language_scheduling: bool = True
    predictive_scheduling: bool = True
    focus_time_protection: bool = True
    conflict_resolution: bool = True
    email_context_analysis: bool = False


@dataclass(frozen=True)
class BudgetConfig:
    """Summary: Monthly cloud spend limit and alert threshold."""

    monthly_limit: float = 50.0
    alert_threshold: float = 0.8


@dataclass(frozen=True)
class AIConfig:
    """Summary: Process-wide AI configuration.

    Importance: Single read-only source for routing, privacy, budget, and feature decisions.
    Alternatives: Scatter provider settings across services.
    """

    default_provider: str = "mock"
    providers: Mapping[str, ProviderConfig] = field(default_factory=dict)
    fallback: FallbackConfig = FallbackConfig()
    privacy: PrivacyConfig = PrivacyConfig()
    features: FeaturesConfig = FeaturesConfig()
    budget: BudgetConfig = BudgetConfig()

    def __post_init__(self) -> None:
        object.__setattr__(self, "providers", MappingProxyType(dict(self.providers)))

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "AIConfig":
        """Summary: Parse the `ai` block of the configuration file.

        Importance: Converts loosely typed JSON into strongly typed settings once.
        Alternatives: Keep the raw dict and coerce values at use sites.
        """

        provider_block = raw.get("providers", {})
        default_provider = str(raw.get("default_provider", "mock"))
        fallback_raw = raw.get("fallback", {})
        fallback = FallbackConfig(
            enabled=_as_bool(fallback_raw.get("enabled", False)),
            providers=tuple(fallback_raw.get("providers", [])),
        )
        names = set(provider_block) | {default_provider} | set(fallback.providers)
        providers = {
            name: ProviderConfig.from_dict(name, provider_block.get(name, {}))
            for name in sorted(names)
        }
        privacy_raw = raw.get("privacy", {})
        features_raw = raw.get("features", {})
        budget_raw = raw.get("budget", {})
        return AIConfig(
            default_provider=default_provider,
            providers=providers,
            fallback=fallback,
            privacy=PrivacyConfig(
                allow_cloud_ai=_as_bool(privacy_raw.get("allow_cloud_ai", True)),
                data_retention_days=int(privacy_raw.get("data_retention", 90)),
                local_storage_only=_as_bool(privacy_raw.get("local_storage_only", False)),
            ),
            features=FeaturesConfig(
                **{
                    name: _as_bool(features_raw[name])
                    for name in FEATURE_NAMES
                    if name in features_raw
                }
            ),
            budget=BudgetConfig(
                monthly_limit=float(budget_raw.get("monthly_limit", 50.0)),
                alert_threshold=float(budget_raw.get("alert_threshold", 0.8)),
            ),
        )


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for storage, calendar, and AI.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    timezone: str
    grant_id: str
    calendar_fixture: str
    calendar_ics: str | None
    api_host: str
    api_port: int
    api_key: str
    buffer_minutes: int
    focus_min_minutes: int
    max_meetings_per_day: int
    ai: AIConfig
    working_hours: WorkingHoursPolicy

    @staticmethod
    def from_env(defaults_path: Path | None = None) -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(defaults_path or Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        ai_raw = dict(defaults.get("ai", {}))
        if os.getenv("CALPILOT_AI_PROVIDER"):
            ai_raw["default_provider"] = os.environ["CALPILOT_AI_PROVIDER"]
        if os.getenv("CALPILOT_ALLOW_CLOUD_AI"):
            ai_raw["privacy"] = {
                **ai_raw.get("privacy", {}),
                "allow_cloud_ai": os.environ["CALPILOT_ALLOW_CLOUD_AI"],
            }
        if os.getenv("OLLAMA_URL") or os.getenv("OLLAMA_MODEL"):
            providers = dict(ai_raw.get("providers", {}))
            ollama = dict(providers.get("ollama", {}))
            ollama["host"] = os.getenv("OLLAMA_URL", ollama.get("host", "http://localhost:11434"))
            ollama["model"] = os.getenv("OLLAMA_MODEL", ollama.get("model", "llama3.1:8b"))
            providers["ollama"] = ollama
            ai_raw["providers"] = providers
        timezone_name = os.getenv("CALPILOT_TIMEZONE", defaults.get("timezone", "UTC"))
        return AppConfig(
            db_path=os.getenv("CALPILOT_DB_PATH", defaults["db_path"]),
            timezone=timezone_name,
            grant_id=os.getenv("CALPILOT_GRANT_ID", defaults.get("grant_id", "local")),
            calendar_fixture=os.getenv(
                "CALPILOT_CALENDAR_FIXTURE",
                defaults.get("calendar_fixture", str(Path("data") / "mock_events.json")),
            ),
            calendar_ics=os.getenv("CALPILOT_CALENDAR_ICS") or defaults.get("calendar_ics") or None,
            api_host=os.getenv("CALPILOT_API_HOST", defaults.get("api_host", "127.0.0.1")),
            api_port=int(os.getenv("CALPILOT_API_PORT", defaults.get("api_port", "8000"))),
            api_key=os.getenv("CALPILOT_API_KEY", defaults.get("api_key", "")),
            buffer_minutes=int(defaults.get("buffer_minutes", 0)),
            focus_min_minutes=int(defaults.get("focus_min_minutes", 60)),
            max_meetings_per_day=int(defaults.get("max_meetings_per_day", 6)),
            ai=AIConfig.from_dict(ai_raw),
            working_hours=working_hours_from_dict(
                defaults.get("working_hours", {}), timezone_name
            ),
        )


def working_hours_from_dict(raw: dict[str, Any], timezone_name: str) -> WorkingHoursPolicy:
    """Summary: Parse the working-hours block into a policy.

    Importance: Validates clock strings once at load time.
    Alternatives: Keep "HH:MM" strings and parse them during every check.
    """

    breaks = tuple(
        Break(
            name=str(item.get("name", "Break")),
            start=parse_clock(item["start"]),
            end=parse_clock(item["end"]),
            type=str(item.get("type", "custom")),
        )
        for item in raw.get("breaks", [])
    )
    for item in breaks:
        if item.end <= item.start:
            raise ValueError(f"Break {item.name} must end after it starts")
    policy = WorkingHoursPolicy(
        enabled=_as_bool(raw.get("enabled", True)),
        start=parse_clock(raw.get("start", "09:00")),
        end=parse_clock(raw.get("end", "17:00")),
        timezone=str(raw.get("timezone", timezone_name)),
        breaks=tuple(sorted(breaks, key=lambda item: item.start)),
    )
    if policy.end <= policy.start:
        raise ValueError("Working hours must end after they start")
    return policy


def parse_clock(value: str) -> time:
    """Summary: Parse an "HH:MM" clock string.

    Importance: Rejects malformed working-hour and break settings early.
    Alternatives: Use time.fromisoformat and require zero-padded values.
    """

    parts = str(value).strip().split(":")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid clock time: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid clock time: {value!r}")
    return time(hour, minute)


def load_defaults(path: Path) -> dict[str, Any]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def set_config_value(path: Path, key: str, value: str) -> None:
    """Summary: Set one dotted configuration key in the defaults file.

    Importance: The explicit write path used by the CLI; the core never writes config itself.
    Alternatives: Ask users to hand-edit JSON.
    """

    defaults = load_defaults(path)
    ai = defaults.setdefault("ai", {})
    parts = key.split(".")
    head = parts[0]
    if head == "default_provider":
        if value not in KNOWN_PROVIDERS and value not in ai.get("providers", {}):
            raise ValueError(
                f"invalid provider: {value} (must be one of: {', '.join(KNOWN_PROVIDERS)})"
            )
        ai["default_provider"] = value
    elif head == "fallback" and len(parts) == 2 and parts[1] in ("enabled", "providers"):
        fallback = ai.setdefault("fallback", {})
        if parts[1] == "enabled":
            fallback["enabled"] = _as_bool(value)
        else:
            fallback["providers"] = [item.strip() for item in value.split(",") if item.strip()]
    elif head == "privacy" and len(parts) == 2:
        privacy = ai.setdefault("privacy", {})
        if parts[1] in ("allow_cloud_ai", "local_storage_only"):
            privacy[parts[1]] = _as_bool(value)
        elif parts[1] == "data_retention":
            retention = int(value)
            if retention < 0:
                raise ValueError("data_retention must be zero or positive")
            privacy["data_retention"] = retention
        else:
            raise ValueError(f"unknown privacy key: {parts[1]}")
    elif head == "features" and len(parts) == 2:
        if parts[1] not in FEATURE_NAMES:
            raise ValueError(f"unknown feature: {parts[1]}")
        ai.setdefault("features", {})[parts[1]] = _as_bool(value)
    elif head == "budget" and len(parts) == 2:
        budget = ai.setdefault("budget", {})
        if parts[1] == "monthly_limit":
            budget["monthly_limit"] = float(value)
        elif parts[1] == "alert_threshold":
            threshold = float(value)
            if not 0 < threshold <= 1:
                raise ValueError("alert_threshold must be in (0, 1]")
            budget["alert_threshold"] = threshold
        else:
            raise ValueError(f"unknown budget key: {parts[1]}")
    elif head == "working_hours" and len(parts) == 2:
        hours = defaults.setdefault("working_hours", {})
        if parts[1] in ("start", "end"):
            parse_clock(value)
            hours[parts[1]] = value
        elif parts[1] == "enabled":
            hours["enabled"] = _as_bool(value)
        elif parts[1] == "timezone":
            hours["timezone"] = value
        else:
            raise ValueError(f"unknown working_hours key: {parts[1]}")
    elif head in KNOWN_PROVIDERS and len(parts) == 2:
        if parts[1] not in ("model", "host", "api_key_env", "timeout_seconds"):
            raise ValueError(f"unknown {head} key: {parts[1]}")
        provider = ai.setdefault("providers", {}).setdefault(head, {})
        provider[parts[1]] = float(value) if parts[1] == "timeout_seconds" else value
    else:
        raise ValueError(f"unknown config key: {key}")
    path.write_text(json.dumps(defaults, indent=2) + "\n", encoding="utf-8")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in ("true", "yes", "1", "on"):
        return True
    if normalized in ("false", "no", "0", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")
