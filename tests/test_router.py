"""Summary: Tests for LLM routing under privacy, budget, and fallback policy.

Importance: The router is the only path to providers, so its guarantees must hold.
Alternatives: Test fallback only through end-to-end scheduling calls.
"""

from __future__ import annotations

import http.client
import json
import threading
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from calpilot.ai import AiProvider, AiResult, OllamaProvider
from calpilot.config import AIConfig, ProviderConfig
from calpilot.errors import (
    AllProvidersFailed,
    BudgetExceeded,
    PrivacyPolicyViolation,
    ProviderError,
    ProviderTimeout,
    RequestCancelled,
)
from calpilot.models import AiAttempt, Usage
from calpilot.router import LlmRouter
from calpilot.storage.sqlite_store import SqliteStore

NOW = datetime(2026, 3, 9, 8, 0, tzinfo=timezone.utc)


class FakeProvider(AiProvider):
    """Summary: Scripted provider that counts calls.

    Importance: Lets tests assert exactly which providers were contacted.
    Alternatives: Patch urllib for every adapter.
    """

    def __init__(
        self,
        name: str,
        local: bool = False,
        text: str = "ok",
        error: Exception | None = None,
        usage: Usage = Usage(100, 50, 0.01),
    ) -> None:
        self.name = name
        self.model = f"{name}-model"
        self.local = local
        self.calls = 0
        self._text = text
        self._error = error
        self._usage = usage

    def complete(self, prompt: str, capability: str) -> AiResult:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return AiResult(text=self._text, latency_ms=5, usage=self._usage)


def _router(tmp_path: Path, ai: dict[str, Any], *providers: FakeProvider) -> LlmRouter:
    store = SqliteStore(str(tmp_path / "router.db"))
    store.initialize()
    return LlmRouter(
        config=AIConfig.from_dict(ai),
        providers={provider.name: provider for provider in providers},
        store=store,
        now=lambda: NOW,
    )


def _spend(router: LlmRouter, provider: str, cost: float) -> None:
    router.store.record_attempt(
        AiAttempt(
            provider=provider,
            model=f"{provider}-model",
            capability="seed",
            status="success",
            latency_ms=1,
            tokens=0,
            cost=cost,
            timestamp=NOW,
        )
    )


def test_privacy_blocks_cloud_provider_without_calls(tmp_path: Path) -> None:
    """Summary: Verify a disallowed cloud provider is never contacted.

    Importance: Privacy is a hard boundary; repeated attempts must not leak data.
    Alternatives: Silently reroute to a local provider.
    """

    claude = FakeProvider("claude")
    router = _router(
        tmp_path, {"default_provider": "claude", "privacy": {"allow_cloud_ai": False}}, claude
    )
    for _ in range(3):
        with pytest.raises(PrivacyPolicyViolation):
            router.route("Find time with Dana", "scheduling-intent-extraction")
    assert claude.calls == 0
    assert router.store.list_usage() == []


def test_local_storage_only_blocks_cloud(tmp_path: Path) -> None:
    openai = FakeProvider("openai")
    router = _router(
        tmp_path, {"default_provider": "openai", "privacy": {"local_storage_only": True}}, openai
    )
    with pytest.raises(PrivacyPolicyViolation, match="local_storage_only"):
        router.route("Hello", "schedule-suggestion")
    assert openai.calls == 0


def test_fallback_skips_cloud_when_privacy_forbids(tmp_path: Path) -> None:
    """Summary: Verify privacy-blocked fallback providers are skipped, not called.

    Importance: Fallback must never route around the privacy policy.
    Alternatives: Fail the whole chain as soon as one provider is blocked.
    """

    ollama = FakeProvider("ollama", local=True, error=ProviderTimeout("ollama", "timed out"))
    claude = FakeProvider("claude")
    router = _router(
        tmp_path,
        {
            "default_provider": "ollama",
            "fallback": {"enabled": True, "providers": ["claude"]},
            "privacy": {"allow_cloud_ai": False},
        },
        ollama,
        claude,
    )
    with pytest.raises(AllProvidersFailed) as excinfo:
        router.route("Hello", "schedule-suggestion")
    assert claude.calls == 0
    assert [(item.provider, item.attempted) for item in excinfo.value.attempts] == [
        ("ollama", True),
        ("claude", False),
    ]


def test_fallback_tries_next_provider_once(tmp_path: Path) -> None:
    """Summary: Verify a failing provider hands off to the next in the chain.

    Importance: Each provider is attempted at most once per request.
    Alternatives: Retry the selected provider with backoff.
    """

    claude = FakeProvider("claude", error=ProviderError("claude", "HTTP 503"))
    openai = FakeProvider("openai", text="Tuesday works")
    router = _router(
        tmp_path,
        {"default_provider": "claude", "fallback": {"enabled": True, "providers": ["openai", "claude"]}},
        claude,
        openai,
    )
    result = router.route("Hello", "schedule-suggestion")
    assert result.provider_used == "openai"
    assert result.text == "Tuesday works"
    assert claude.calls == 1
    assert openai.calls == 1

    claude_usage = router.store.get_usage("claude", "2026-03")
    openai_usage = router.store.get_usage("openai", "2026-03")
    assert (claude_usage.request_count, claude_usage.failure_count, claude_usage.cost) == (1, 1, 0.0)
    assert (openai_usage.success_count, openai_usage.token_count) == (1, 150)
    assert abs(openai_usage.cost - 0.01) < 1e-9


def test_fallback_disabled_fails_after_one_attempt(tmp_path: Path) -> None:
    claude = FakeProvider("claude", error=ProviderError("claude", "HTTP 500"))
    openai = FakeProvider("openai")
    router = _router(
        tmp_path,
        {"default_provider": "claude", "fallback": {"enabled": False, "providers": ["openai"]}},
        claude,
        openai,
    )
    with pytest.raises(AllProvidersFailed) as excinfo:
        router.route("Hello", "schedule-suggestion")
    assert len(excinfo.value.attempts) == 1
    assert openai.calls == 0


def test_budget_exceeded_blocks_cloud_before_call(tmp_path: Path) -> None:
    """Summary: Verify spend above the monthly limit blocks the call.

    Importance: An over-budget request must cost nothing and leave the ledger unchanged.
    Alternatives: Allow the call and report overspend afterwards.
    """

    claude = FakeProvider("claude")
    ollama = FakeProvider("ollama", local=True, text="local answer")
    router = _router(
        tmp_path,
        {"default_provider": "claude", "budget": {"monthly_limit": 50.0, "alert_threshold": 0.8}},
        claude,
        ollama,
    )
    _spend(router, "claude", 50.01)

    with pytest.raises(BudgetExceeded) as excinfo:
        router.route("Hello", "schedule-suggestion")
    assert excinfo.value.limit == 50.0
    assert claude.calls == 0
    assert router.store.get_usage("claude", "2026-03").request_count == 1

    result = router.route("Hello", "schedule-suggestion", provider="ollama")
    assert result.provider_used == "ollama"
    assert result.warnings == ()


def test_budget_alert_adds_warning(tmp_path: Path) -> None:
    claude = FakeProvider("claude")
    router = _router(tmp_path, {"default_provider": "claude"}, claude)
    _spend(router, "claude", 45.0)

    result = router.route("Hello", "schedule-suggestion")
    assert result.provider_used == "claude"
    assert any("monthly budget" in warning for warning in result.warnings)


def test_local_timeout_falls_back_to_cloud_and_records_ledger(tmp_path: Path) -> None:
    """Summary: Verify the local-first chain falls back after a timeout.

    Importance: The ledger must show one failure for the local provider and one success
    for the cloud provider.
    Alternatives: Record only the successful attempt.
    """

    ollama = FakeProvider("ollama", local=True, error=ProviderTimeout("ollama", "timed out after 30s"))
    claude = FakeProvider("claude", text="Suggest Tuesday", usage=Usage(200, 100, 0.0021))
    router = _router(
        tmp_path,
        {"default_provider": "ollama", "fallback": {"enabled": True, "providers": ["claude"]}},
        ollama,
        claude,
    )
    result = router.route("Hello", "schedule-suggestion")
    assert result.provider_used == "claude"

    ollama_usage = router.store.get_usage("ollama", "2026-03")
    claude_usage = router.store.get_usage("claude", "2026-03")
    assert (ollama_usage.failure_count, ollama_usage.success_count) == (1, 0)
    assert (claude_usage.success_count, claude_usage.failure_count) == (1, 0)
    attempts = router.store.list_attempts(10)
    assert [(item.provider, item.status) for item in attempts] == [
        ("claude", "success"),
        ("ollama", "failure"),
    ]


def test_local_usage_is_free(tmp_path: Path) -> None:
    ollama = FakeProvider("ollama", local=True, usage=Usage(100, 100, 0.5))
    router = _router(tmp_path, {"default_provider": "ollama"}, ollama)
    result = router.route("Hello", "schedule-suggestion")
    assert result.usage.cost == 0.0
    assert router.store.get_usage("ollama", "2026-03").cost == 0.0


def test_malformed_reply_counts_as_failure(tmp_path: Path) -> None:
    """Summary: Verify a parse failure moves to the next provider.

    Importance: Structured capabilities must not return garbage to the engine.
    Alternatives: Return the raw text and let the caller validate it.
    """

    claude = FakeProvider("claude", text="Sure, here you go!")
    openai = FakeProvider("openai", text='{"title": "Sync"}')
    router = _router(
        tmp_path,
        {"default_provider": "claude", "fallback": {"enabled": True, "providers": ["openai"]}},
        claude,
        openai,
    )
    result = router.route("Hello", "scheduling-intent-extraction", parse=json.loads)
    assert result.value == {"title": "Sync"}
    assert router.store.get_usage("claude", "2026-03").failure_count == 1


def test_cancelled_request_makes_no_calls(tmp_path: Path) -> None:
    ollama = FakeProvider("ollama", local=True)
    router = _router(tmp_path, {"default_provider": "ollama"}, ollama)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RequestCancelled):
        router.route("Hello", "schedule-suggestion", cancel=cancel)
    assert ollama.calls == 0


def test_dropped_connection_falls_back_and_is_recorded(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Summary: Verify a remote disconnect is a failed attempt like any other.

    Importance: The ledger and the fallback chain must see every transport failure.
    Alternatives: Treat unexpected socket errors as fatal.
    """

    def _disconnect(*args: Any, **kwargs: Any) -> None:
        raise http.client.RemoteDisconnected("Remote end closed connection without response")

    monkeypatch.setattr(urllib.request, "urlopen", _disconnect)
    claude = FakeProvider("claude", text="Thursday works")
    router = _router(
        tmp_path,
        {"default_provider": "ollama", "fallback": {"enabled": True, "providers": ["claude"]}},
        OllamaProvider(ProviderConfig.from_dict("ollama", {})),  # type: ignore[arg-type]
        claude,
    )
    result = router.route("Hello", "schedule-suggestion")
    assert (result.provider_used, result.text) == ("claude", "Thursday works")
    assert claude.calls == 1
    ollama_usage = router.store.get_usage("ollama", "2026-03")
    assert (ollama_usage.request_count, ollama_usage.failure_count) == (1, 1)


def test_cancel_during_provider_call_stops_the_chain(tmp_path: Path) -> None:
    cancel = threading.Event()

    class CancellingProvider(FakeProvider):
        def complete(self, prompt: str, capability: str) -> AiResult:
            cancel.set()
            return super().complete(prompt, capability)

    ollama = CancellingProvider("ollama", local=True)
    claude = FakeProvider("claude")
    router = _router(
        tmp_path,
        {"default_provider": "ollama", "fallback": {"enabled": True, "providers": ["claude"]}},
        ollama,
        claude,
    )
    with pytest.raises(RequestCancelled):
        router.route("Hello", "schedule-suggestion", cancel=cancel)
    assert (ollama.calls, claude.calls) == (1, 0)
    assert router.store.get_usage("ollama", "2026-03").success_count == 1
