"""Summary: Domain model dataclasses for CalPilot.

Importance: Defines the records shared by the router, pattern learner, and scheduling engine.
Alternatives: Use Pydantic models or raw provider payload dicts directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time


ACCEPTED = "accepted"
DECLINED = "declined"
TENTATIVE = "tentative"
NEEDS_ACTION = "needs_action"
RESPONSE_STATUSES = (ACCEPTED, DECLINED, TENTATIVE)

DOUBLE_BOOKED = "double-booked"
BACK_TO_BACK = "back-to-back"
BREAK_VIOLATION = "break-violation"
OUTSIDE_WORKING_HOURS = "outside-working-hours"


@dataclass(frozen=True)
class HistoricalEvent:
    """Summary: Read-only projection of a calendar event.

    Importance: Single input shape for pattern learning and conflict checks.
    Alternatives: Pass provider-specific event payloads through the core.
    """

    event_id: str
    title: str
    start: datetime
    end: datetime
    timezone: str = "UTC"
    status: str = ACCEPTED
    attendee_count: int = 1
    participants: tuple[str, ...] = ()
    category: str | None = None
    series_id: str | None = None
    busy: bool = True

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class TimeInterval:
    """Summary: Half-open busy or free interval [start, end).

    Importance: Shared by free/busy lookups and focus-time detection.
    Alternatives: Use bare (start, end) tuples.
    """

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class Break:
    """Summary: A named break inside the working day.

    Importance: Breaks are excluded from meeting placement and focus time.
    Alternatives: Model breaks as recurring calendar events.
    """

    name: str
    start: time
    end: time
    type: str = "custom"


@dataclass(frozen=True)
class WorkingHoursPolicy:
    """Summary: Working-hours and break policy for a user.

    Importance: Source of truth for outside-hours and break violations.
    Alternatives: Hardcode a 9-5 day in the scheduler.
    """

    enabled: bool = True
    start: time = time(9, 0)
    end: time = time(17, 0)
    timezone: str = "UTC"
    breaks: tuple[Break, ...] = ()


@dataclass(frozen=True)
class LearnPatternsRequest:
    """Summary: Parameters for a pattern-learning run."""

    grant_id: str
    lookback_days: int = 30
    min_confidence: float = 0.0
    include_recurring: bool = False


@dataclass(frozen=True)
class AnalysisPeriod:
    """Summary: Time span actually covered by the analyzed events."""

    start_date: datetime
    end_date: datetime
    days: int


@dataclass(frozen=True)
class AcceptancePattern:
    """Summary: Acceptance statistics for one time-of-day bucket.

    Importance: Drives slot scoring and recommendation heuristics.
    Alternatives: Keep only a single overall acceptance rate.
    """

    time_slot: str
    accept_rate: float
    event_count: int
    confidence: float
    description: str = ""


@dataclass(frozen=True)
class DurationPattern:
    """Summary: Typical scheduled duration for one inferred meeting type."""

    meeting_type: str
    scheduled_duration: int
    event_count: int
    description: str = ""


@dataclass(frozen=True)
class TimezonePattern:
    """Summary: Share of events held in one timezone."""

    timezone: str
    percentage: float
    event_count: int
    is_primary: bool = False


@dataclass(frozen=True)
class ProductivityInsight:
    """Summary: Derived productivity heuristic with a 0-100 score."""

    insight_type: str
    description: str
    score: int
    time_slot: str = ""


@dataclass(frozen=True)
class PatternSummary:
    """Summary: Output of the pattern learner.

    Importance: Historical context consumed by the scheduling engine and exported on request.
    Alternatives: Persist raw aggregates and recompute views on demand.
    """

    user_id: str
    analysis_period: AnalysisPeriod
    total_events_analyzed: int
    acceptance_patterns: tuple[AcceptancePattern, ...]
    duration_patterns: tuple[DurationPattern, ...]
    timezone_patterns: tuple[TimezonePattern, ...]
    productivity_insights: tuple[ProductivityInsight, ...]
    recommendations: tuple[str, ...]
    generated_at: datetime

    def acceptance_for(self, time_slot: str) -> AcceptancePattern | None:
        for pattern in self.acceptance_patterns:
            if pattern.time_slot == time_slot:
                return pattern
        return None


@dataclass(frozen=True)
class SchedulingRequest:
    """Summary: A natural-language query or a structured candidate event.

    Importance: Single request shape for every engine entry point.
    Alternatives: Separate request classes per engine operation.
    """

    query: str | None = None
    title: str = ""
    start: datetime | None = None
    duration_minutes: int = 30
    participants: tuple[str, ...] = ()
    ignore_policy: bool = False
    email_context: str | None = None

    @property
    def is_natural_language(self) -> bool:
        return self.start is None and bool(self.query)


@dataclass(frozen=True)
class ConflictDetail:
    """Summary: One policy or calendar violation for a candidate."""

    kind: str
    description: str
    suggested_alternative: datetime | None = None
    blocking: bool = True


@dataclass(frozen=True)
class ConflictReport:
    """Summary: Result of a policy check for a candidate interval.

    Importance: Policy-only facts that stay available when every LLM is down.
    Alternatives: Return a list of warning strings.
    """

    has_conflict: bool
    details: tuple[ConflictDetail, ...] = ()

    def kinds(self) -> list[str]:
        return [detail.kind for detail in self.details]


@dataclass(frozen=True)
class SlotSuggestion:
    """Summary: A scored candidate slot with a human-readable reason."""

    start: datetime
    end: datetime
    score: float
    rank: int
    reason: str
    factors: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class FocusBlock:
    """Summary: Contiguous free interval long enough for deep work."""

    start: datetime
    end: datetime
    duration_minutes: int


@dataclass(frozen=True)
class SchedulingResponse:
    """Summary: Engine response for schedule and reschedule requests.

    Importance: Carries facts, ranked suggestions, and optional LLM analysis together.
    Alternatives: Return tuples and let callers assemble them.
    """

    candidate: SchedulingRequest
    report: ConflictReport
    suggestions: tuple[SlotSuggestion, ...] = ()
    analysis: str | None = None
    provider_used: str | None = None
    degraded: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProposedChange:
    """Summary: A meeting the adaptive planner proposes to move."""

    event_id: str
    title: str
    original_start: datetime
    suggestions: tuple[SlotSuggestion, ...]


@dataclass(frozen=True)
class AdaptivePlan:
    """Summary: Advisory plan produced for an adaptive trigger."""

    trigger: str
    changes: tuple[ProposedChange, ...]
    reason: str
    focus_minutes_gained: int = 0


@dataclass(frozen=True)
class Usage:
    """Summary: Token and cost usage reported by one provider call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class UsageRecord:
    """Summary: Ledger aggregate for one provider and calendar month."""

    provider: str
    month: str
    request_count: int
    success_count: int
    failure_count: int
    token_count: int
    cost: float


@dataclass(frozen=True)
class AiAttempt:
    """Summary: Records one provider attempt for audit and traceability.

    Importance: Provides visibility into provider usage and fallback hops.
    Alternatives: Log attempts only in observability logs.
    """

    provider: str
    model: str
    capability: str
    status: str
    latency_ms: int
    tokens: int
    cost: float
    timestamp: datetime
    error: str | None = None
