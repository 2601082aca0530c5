"""Summary: LLM router with privacy enforcement, budget checks, and fallback.

Importance: The single path every LLM call takes, so policy cannot be bypassed.
Alternatives: Let each service call providers directly and duplicate the checks.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from calpilot.ai import AiProvider, estimate_cost, estimate_tokens
from calpilot.config import AIConfig, ProviderConfig
from calpilot.errors import (
    AllProvidersFailed,
    BudgetExceeded,
    PrivacyPolicyViolation,
    ProviderAttempt,
    ProviderError,
    RequestCancelled,
)
from calpilot.models import AiAttempt, Usage
from calpilot.storage.sqlite_store import SqliteStore, month_key

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RouteResult:
    """Summary: Successful routed completion.

    Importance: Tells callers which provider answered and any budget alerts raised.
    Alternatives: Return the raw text and log the rest.
    """

    text: str
    provider_used: str
    usage: Usage
    warnings: tuple[str, ...] = ()
    value: Any = None


@dataclass
class LlmRouter:
    """Summary: Routes prompts to providers under privacy and budget policy.

    Importance: Central enforcement point for fallback, ledger updates, and audit.
    Alternatives: Embed fallback loops in every calling service.
    """

    config: AIConfig
    providers: dict[str, AiProvider]
    store: SqliteStore
    now: Callable[[], datetime] = field(default=utc_now)

    def route(
        self,
        prompt: str,
        capability: str,
        provider: str | None = None,
        parse: Callable[[str], Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> RouteResult:
        """Summary: Send a prompt through the selected provider and fallback chain.

        Importance: Privacy and budget failures on the selected provider are raised
        immediately; only transient provider failures move down the chain.
        Alternatives: Retry the same provider with backoff.
        """

        selected = provider or self.config.default_provider
        privacy_reason = self._privacy_block(selected)
        if privacy_reason:
            raise PrivacyPolicyViolation(selected, privacy_reason)
        warnings: list[str] = []
        self._check_budget(selected, prompt, warnings)

        attempts: list[ProviderAttempt] = []
        tried: set[str] = set()
        for name in self._chain(selected):
            if name in tried:
                continue
            tried.add(name)
            if name != selected:
                skip_reason = self._privacy_block(name)
                if skip_reason:
                    logger.warning("Skipping fallback provider %s: %s", name, skip_reason)
                    attempts.append(ProviderAttempt(name, skip_reason, attempted=False))
                    continue
                try:
                    self._check_budget(name, prompt, warnings)
                except BudgetExceeded as exc:
                    logger.warning("Skipping fallback provider %s: %s", name, exc)
                    attempts.append(ProviderAttempt(name, str(exc), attempted=False))
                    continue
            if cancel is not None and cancel.is_set():
                raise RequestCancelled(f"Request cancelled before calling {name}")
            adapter = self.providers.get(name)
            if adapter is None:
                attempts.append(ProviderAttempt(name, "provider is not configured", attempted=False))
                continue
            try:
                result = self._attempt(adapter, prompt, capability, parse)
            except (ProviderError, ValueError) as exc:
                logger.warning("Provider %s failed for %s: %s", name, capability, exc)
                attempts.append(ProviderAttempt(name, str(exc)))
                if not self.config.fallback.enabled:
                    break
                continue
            if cancel is not None and cancel.is_set():
                raise RequestCancelled(f"Request cancelled while {name} was answering")
            text, usage, value = result
            if name != selected:
                logger.info("Fallback provider %s answered %s.", name, capability)
            return RouteResult(
                text=text,
                provider_used=name,
                usage=usage,
                warnings=tuple(warnings),
                value=value,
            )
        raise AllProvidersFailed(attempts)

    def _chain(self, selected: str) -> list[str]:
        if not self.config.fallback.enabled:
            return [selected]
        return [selected, *self.config.fallback.providers]

    def _attempt(
        self,
        adapter: AiProvider,
        prompt: str,
        capability: str,
        parse: Callable[[str], Any] | None,
    ) -> tuple[str, Usage, Any]:
        """Summary: Call one provider and record the outcome in the ledger.

        Importance: Every attempt is accounted for before the router moves on.
        Alternatives: Record only successful calls.
        """

        started = time.time()
        try:
            result = adapter.complete(prompt, capability)
            value = parse(result.text) if parse else None
        except (ProviderError, ValueError) as exc:
            self._record(adapter, capability, "failure", int((time.time() - started) * 1000), Usage(), str(exc))
            raise
        usage = result.usage
        if adapter.local:
            usage = Usage(usage.prompt_tokens, usage.completion_tokens, 0.0)
        self._record(adapter, capability, "success", result.latency_ms, usage, None)
        return result.text, usage, value

    def _record(
        self,
        adapter: AiProvider,
        capability: str,
        status: str,
        latency_ms: int,
        usage: Usage,
        error: str | None,
    ) -> None:
        self.store.record_attempt(
            AiAttempt(
                provider=adapter.name,
                model=adapter.model,
                capability=capability,
                status=status,
                latency_ms=latency_ms,
                tokens=usage.total_tokens,
                cost=usage.cost,
                timestamp=self.now(),
                error=error,
            )
        )

    def _is_local(self, name: str) -> bool:
        provider_config = self.config.providers.get(name)
        if provider_config is not None:
            return provider_config.local
        adapter = self.providers.get(name)
        return bool(adapter and adapter.local)

    def _privacy_block(self, name: str) -> str | None:
        if self._is_local(name):
            return None
        if self.config.privacy.local_storage_only:
            return "local_storage_only is enabled"
        if not self.config.privacy.allow_cloud_ai:
            return "cloud AI is disabled by privacy policy"
        return None

    def _check_budget(self, name: str, prompt: str, warnings: list[str]) -> None:
        """Summary: Pre-flight budget check for a cloud provider.

        Importance: Raises before any network call so an over-budget request costs nothing.
        Alternatives: Compare spend after the call completes.
        """

        if self._is_local(name):
            return
        budget = self.config.budget
        spent = self.store.get_usage(name, month_key(self.now())).cost
        provider_config = self.config.providers.get(name) or ProviderConfig.from_dict(name, {})
        projected = spent + estimate_cost(provider_config, estimate_tokens(prompt), 0)
        if projected > budget.monthly_limit:
            raise BudgetExceeded(name, budget.monthly_limit, spent)
        if projected >= budget.alert_threshold * budget.monthly_limit:
            message = (
                f"{name} has used ${spent:.2f} of the ${budget.monthly_limit:.2f} monthly budget"
            )
            logger.warning("Budget alert: %s", message)
            warnings.append(message)
