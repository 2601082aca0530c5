"""Summary: Application services around the usage ledger and AI audit log.

Importance: Gives the CLI and API one place to report spend and budget state.
Alternatives: Query the SQLite store directly from each entrypoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from calpilot.config import AIConfig
from calpilot.models import AiAttempt, UsageRecord
from calpilot.router import utc_now
from calpilot.storage.sqlite_store import SqliteStore, month_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetStatus:
    """Summary: Current-month spend for one provider against the budget."""

    provider: str
    month: str
    spent: float
    limit: float
    remaining: float
    alert: bool
    local: bool


@dataclass(frozen=True)
class UsageService:
    """Summary: Reports and resets usage ledger aggregates.

    Importance: Makes monthly spend visible before the budget blocks a call.
    Alternatives: Rely on vendor billing dashboards.
    """

    store: SqliteStore
    config: AIConfig
    now: Callable[[], datetime] = field(default=utc_now)

    def usage_report(self, month: str | None = None) -> list[UsageRecord]:
        """Summary: List ledger rows for a month, defaulting to the current one.

        Importance: Shows requests, failures, tokens, and cost per provider.
        Alternatives: Print raw SQL results.
        """

        return self.store.list_usage(month or month_key(self.now()))

    def budget_status(self, provider: str) -> BudgetStatus:
        provider_config = self.config.providers.get(provider)
        local = bool(provider_config and provider_config.local)
        month = month_key(self.now())
        spent = self.store.get_usage(provider, month).cost
        limit = self.config.budget.monthly_limit
        return BudgetStatus(
            provider=provider,
            month=month,
            spent=spent,
            limit=limit,
            remaining=max(0.0, limit - spent),
            alert=not local and spent >= self.config.budget.alert_threshold * limit,
            local=local,
        )

    def clear_usage(self) -> int:
        """Summary: Reset every ledger aggregate.

        Importance: Explicit operator action; nothing else lowers the counters.
        Alternatives: Let aggregates roll over only by month.
        """

        removed = self.store.clear_usage()
        logger.info("Cleared %s usage ledger rows.", removed)
        return removed


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Provides access to the AI attempt audit log.

    Importance: Explains fallback hops and provider failures after the fact.
    Alternatives: Store audit logs in external observability tools.
    """

    store: SqliteStore
    config: AIConfig
    now: Callable[[], datetime] = field(default=utc_now)

    def list_attempts(self, limit: int = 50, provider: str | None = None) -> list[AiAttempt]:
        return self.store.list_attempts(limit, provider)

    def prune(self) -> int:
        """Summary: Drop audit rows older than the privacy retention window.

        Importance: Keeps stored prompt metadata within the configured retention.
        Alternatives: Keep audit rows forever.
        """

        removed = self.store.prune_attempts(self.config.privacy.data_retention_days, self.now())
        if removed:
            logger.info("Pruned %s audit rows past retention.", removed)
        return removed
