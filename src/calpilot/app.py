"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from calpilot.ai import AiProvider, AiProviderFactory
from calpilot.calendar import CalendarProvider, IcsCalendarProvider, MockCalendarProvider
from calpilot.config import AppConfig
from calpilot.models import PatternSummary
from calpilot.patterns import PatternLearner
from calpilot.router import LlmRouter, utc_now
from calpilot.scheduler import SchedulingEngine
from calpilot.services import AiAuditService, UsageService
from calpilot.storage.sqlite_store import SqliteStore


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for CalPilot.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    config: AppConfig
    store: SqliteStore
    calendar: CalendarProvider
    router: LlmRouter
    learner: PatternLearner
    engine: SchedulingEngine
    usage: UsageService
    ai_audit: AiAuditService


def build_calendar(config: AppConfig) -> CalendarProvider:
    """Summary: Pick the calendar provider from configuration.

    Importance: An .ics export takes precedence over the JSON fixture.
    Alternatives: Always use the mock provider.
    """

    if config.calendar_ics:
        return IcsCalendarProvider(Path(config.calendar_ics), owner=config.grant_id)
    return MockCalendarProvider(Path(config.calendar_fixture))


def build_services(
    config: AppConfig,
    patterns: PatternSummary | None = None,
    providers: dict[str, AiProvider] | None = None,
    calendar: CalendarProvider | None = None,
    now: Callable[[], datetime] = utc_now,
) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path; tests inject providers and calendars.
    Alternatives: Instantiate services directly within the CLI entrypoint.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    calendar = calendar or build_calendar(config)
    router = LlmRouter(
        config=config.ai,
        providers=providers if providers is not None else AiProviderFactory(config.ai).build_all(),
        store=store,
        now=now,
    )
    learner = PatternLearner(calendar=calendar, timezone=config.timezone, now=now)
    engine = SchedulingEngine(
        calendar=calendar,
        policy=config.working_hours,
        features=config.ai.features,
        router=router,
        grant_id=config.grant_id,
        learner=learner,
        patterns=patterns,
        buffer_minutes=config.buffer_minutes,
        focus_min_minutes=config.focus_min_minutes,
        max_meetings_per_day=config.max_meetings_per_day,
        now=now,
    )
    audit = AiAuditService(store=store, config=config.ai, now=now)
    audit.prune()
    return AppServices(
        config=config,
        store=store,
        calendar=calendar,
        router=router,
        learner=learner,
        engine=engine,
        usage=UsageService(store=store, config=config.ai, now=now),
        ai_audit=audit,
    )
