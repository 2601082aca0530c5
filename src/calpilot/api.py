"""Summary: FastAPI application for CalPilot.

Importance: Exposes scheduling intelligence over HTTP for integrations and UI clients.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, replace
from datetime import date, datetime
from typing import Any, Callable, TypeVar
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from calpilot.app import AppServices, build_services
from calpilot.config import AppConfig
from calpilot.errors import (
    AllProvidersFailed,
    BudgetExceeded,
    CollaboratorUnavailable,
    EventNotFound,
    FeatureDisabled,
    IntentParseError,
    NoEventsFound,
    PrivacyPolicyViolation,
    RequestCancelled,
    SchedulingError,
    SlotConflict,
)
from calpilot.models import LearnPatternsRequest, SchedulingRequest
from calpilot.patterns import LlmRecommender
from calpilot.scheduler import ADAPTIVE_TRIGGERS

T = TypeVar("T")

ERROR_STATUS = (
    (PrivacyPolicyViolation, 403),
    (BudgetExceeded, 402),
    (AllProvidersFailed, 502),
    (NoEventsFound, 404),
    (EventNotFound, 404),
    (FeatureDisabled, 409),
    (SlotConflict, 409),
    (CollaboratorUnavailable, 503),
    (IntentParseError, 422),
    (RequestCancelled, 409),
)


class LearnPatternsPayload(BaseModel):
    """Summary: Request payload for pattern learning.

    Importance: Keeps lookback and confidence inputs explicit for API clients.
    Alternatives: Use query parameters instead of JSON payloads.
    """

    lookback_days: int = Field(default=30, ge=1, le=365)
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    include_recurring: bool = False
    llm_recommendations: bool = False


class CandidatePayload(BaseModel):
    """Summary: Structured candidate meeting for conflict checks."""

    title: str = ""
    start: datetime
    duration_minutes: int = Field(default=30, ge=5, le=480)
    participants: list[str] = Field(default_factory=list)
    ignore_policy: bool = False


class SchedulePayload(BaseModel):
    """Summary: Natural-language or structured scheduling request.

    Importance: One payload for both entry styles, mirroring the engine request.
    Alternatives: Separate endpoints per input style.
    """

    query: str | None = None
    title: str = ""
    start: datetime | None = None
    duration_minutes: int = Field(default=30, ge=5, le=480)
    participants: list[str] = Field(default_factory=list)
    ignore_policy: bool = False
    email_context: str | None = None
    book: bool = False


class FindTimePayload(BaseModel):
    duration_minutes: int = Field(default=30, ge=5, le=480)
    participants: list[str] = Field(default_factory=list)
    near: datetime | None = None
    days: int | None = Field(default=None, ge=1, le=30)


class ReschedulePayload(BaseModel):
    event_id: str
    near: datetime | None = None
    apply: bool = False


class AdaptPayload(BaseModel):
    trigger: str
    deadline: datetime | None = None


def error_status(exc: SchedulingError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 400


def create_app(config: AppConfig, services: AppServices | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to CalPilot services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="CalPilot API", version="0.1.0")
    services = services or build_services(config)
    zone = ZoneInfo(config.timezone)

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def _localize(value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=zone)
        return value

    def _call(operation: Callable[[], T]) -> T:
        """Summary: Run an engine call and map domain errors to HTTP errors.

        Importance: Every error reaches the client with a specific status and structure.
        Alternatives: Register one global exception handler.
        """

        try:
            return operation()
        except SchedulingError as exc:
            detail: dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
            if isinstance(exc, AllProvidersFailed):
                detail["attempts"] = [asdict(attempt) for attempt in exc.attempts]
            if isinstance(exc, FeatureDisabled):
                detail["feature"] = exc.feature
            raise HTTPException(status_code=error_status(exc), detail=detail) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail={"error": "ValueError", "message": str(exc)}) from exc

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.post("/patterns/learn", dependencies=[Depends(require_api_key)])
    def learn_patterns(payload: LearnPatternsPayload) -> dict[str, Any]:
        """Summary: Learn scheduling patterns from calendar history.

        Importance: Returns the full structured summary for presentation layers.
        Alternatives: Return only recommendation strings.
        """

        learner = services.learner
        if payload.llm_recommendations:
            learner = replace(learner, recommender=LlmRecommender(services.router))
        request = LearnPatternsRequest(
            grant_id=config.grant_id,
            lookback_days=payload.lookback_days,
            min_confidence=payload.min_confidence,
            include_recurring=payload.include_recurring,
        )
        return asdict(_call(lambda: learner.learn_patterns(request)))

    @app.post("/schedule/check", dependencies=[Depends(require_api_key)])
    def check_conflicts(payload: CandidatePayload) -> dict[str, Any]:
        request = SchedulingRequest(
            title=payload.title,
            start=_localize(payload.start),
            duration_minutes=payload.duration_minutes,
            participants=tuple(payload.participants),
            ignore_policy=payload.ignore_policy,
        )
        return asdict(_call(lambda: services.engine.check_conflicts(request)))

    @app.post("/schedule", dependencies=[Depends(require_api_key)])
    def schedule(payload: SchedulePayload) -> dict[str, Any]:
        """Summary: Run the scheduling state machine and optionally book the slot.

        Importance: Conflict facts are returned even when the LLM analysis degrades.
        Alternatives: Book automatically whenever the slot is clear.
        """

        request = SchedulingRequest(
            query=payload.query,
            title=payload.title,
            start=_localize(payload.start),
            duration_minutes=payload.duration_minutes,
            participants=tuple(payload.participants),
            ignore_policy=payload.ignore_policy,
            email_context=payload.email_context,
        )
        response = _call(lambda: services.engine.schedule(request))
        body = asdict(response)
        if payload.book and not response.report.has_conflict:
            event = _call(lambda: services.engine.book(response.candidate))
            body["booked_event_id"] = event.event_id
        return body

    @app.post("/schedule/find-time", dependencies=[Depends(require_api_key)])
    def find_time(payload: FindTimePayload) -> dict[str, Any]:
        request = SchedulingRequest(
            start=_localize(payload.near),
            duration_minutes=payload.duration_minutes,
            participants=tuple(payload.participants),
        )
        suggestions = _call(lambda: services.engine.find_best_times(request, days=payload.days))
        return {"suggestions": [asdict(item) for item in suggestions]}

    @app.post("/schedule/reschedule", dependencies=[Depends(require_api_key)])
    def reschedule(payload: ReschedulePayload) -> dict[str, Any]:
        response = _call(
            lambda: services.engine.reschedule(
                payload.event_id, requested=_localize(payload.near), apply=payload.apply
            )
        )
        return asdict(response)

    @app.get("/focus-time", dependencies=[Depends(require_api_key)])
    def focus_time(day: date | None = None, min_minutes: int | None = None) -> dict[str, Any]:
        blocks = _call(lambda: services.engine.find_focus_blocks(day, min_minutes=min_minutes))
        return {"blocks": [asdict(block) for block in blocks]}

    @app.post("/adapt", dependencies=[Depends(require_api_key)])
    def adapt(payload: AdaptPayload) -> dict[str, Any]:
        if payload.trigger not in ADAPTIVE_TRIGGERS:
            raise HTTPException(status_code=400, detail=f"Unknown trigger: {payload.trigger}")
        plan = _call(lambda: services.engine.adapt(payload.trigger, deadline=_localize(payload.deadline)))
        return asdict(plan)

    @app.get("/usage", dependencies=[Depends(require_api_key)])
    def usage(month: str | None = None) -> dict[str, Any]:
        """Summary: Report ledger usage and budget status.

        Importance: Lets clients warn before the monthly budget blocks calls.
        Alternatives: Expose raw ledger rows only.
        """

        records = services.usage.usage_report(month)
        budgets = [
            asdict(services.usage.budget_status(name))
            for name, provider in sorted(config.ai.providers.items())
            if not provider.local
        ]
        return {"usage": [asdict(record) for record in records], "budgets": budgets}

    return app


def get_app() -> FastAPI:
    """Summary: Build the app from environment configuration.

    Importance: Used as a uvicorn factory so importing this module has no side effects.
    Alternatives: Create a module-level app at import time.
    """

    return create_app(AppConfig.from_env())
