"""Summary: Conflict detection, slot scoring, focus time, and adaptive planning.

Importance: Core scheduling engine; policy facts never depend on an LLM.
Alternatives: Delegate every scheduling decision to an LLM prompt.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Any, Callable
from zoneinfo import ZoneInfo

from calpilot.calendar import CalendarError, CalendarProvider
from calpilot.config import FeaturesConfig
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
    SlotConflict,
)
from calpilot.models import (
    AdaptivePlan,
    ConflictReport,
    FocusBlock,
    HistoricalEvent,
    LearnPatternsRequest,
    PatternSummary,
    ProposedChange,
    SchedulingRequest,
    SchedulingResponse,
    SlotSuggestion,
    TimeInterval,
    WorkingHoursPolicy,
)
from calpilot.patterns import PatternLearner
from calpilot.policy import (
    at_local,
    blocking_events,
    check_policy,
    focus_blocks,
    grid_slots,
    hour_bucket,
    local_date,
    longest_focus_minutes,
    next_clean_slot,
    policy_zone,
)
from calpilot.router import utc_now

logger = logging.getLogger(__name__)

INTENT_CAPABILITY = "scheduling-intent-extraction"
SUGGESTION_CAPABILITY = "schedule-suggestion"
TOP_SUGGESTIONS = 3
NEUTRAL_ACCEPTANCE = 0.5
ALTERNATIVE_HORIZON_DAYS = 14
CANCEL_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class ScoringWeights:
    """Summary: Tunable weights for the slot scoring step.

    Importance: Adaptive triggers reuse the same scoring with a different emphasis.
    Alternatives: Hardcode one scoring formula.
    """

    acceptance: float = 0.4
    availability: float = 0.4
    proximity: float = 0.2
    consolidation: float = 0.0
    focus_preservation: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "acceptance": self.acceptance,
            "availability": self.availability,
            "proximity": self.proximity,
            "consolidation": self.consolidation,
            "focus_preservation": self.focus_preservation,
        }


TRIGGER_WEIGHTS = {
    "overload": ScoringWeights(acceptance=0.2, availability=0.3, proximity=0.1, consolidation=0.4),
    "focus-risk": ScoringWeights(acceptance=0.2, availability=0.3, proximity=0.1, focus_preservation=0.4),
    "deadline": ScoringWeights(acceptance=0.2, availability=0.3, proximity=0.5),
}
ADAPTIVE_TRIGGERS = tuple(TRIGGER_WEIGHTS)


@dataclass
class SchedulingEngine:
    """Summary: Orchestrates policy checks, free/busy lookups, patterns, and LLM calls.

    Importance: One engine instance per process; each call is one unit of work.
    Alternatives: Separate services for conflicts, suggestions, and focus time.
    """

    calendar: CalendarProvider
    policy: WorkingHoursPolicy
    features: FeaturesConfig = field(default_factory=FeaturesConfig)
    router: Any = None
    grant_id: str = "local"
    learner: PatternLearner | None = None
    patterns: PatternSummary | None = None
    pattern_lookback_days: int = 30
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    buffer_minutes: int = 0
    focus_min_minutes: int = 60
    max_meetings_per_day: int = 6
    search_days: int = 5
    max_workers: int = 5
    now: Callable[[], datetime] = field(default=utc_now)
    _learned: dict[tuple[int, date], PatternSummary | None] = field(default_factory=dict, init=False, repr=False)

    def check_conflicts(
        self, request: SchedulingRequest, cancel: threading.Event | None = None
    ) -> ConflictReport:
        """Summary: Evaluate a structured candidate against policy and the calendar.

        Importance: Blocking details carry the next clean slot when conflict
        resolution is enabled.
        Alternatives: Report violations without alternatives.
        """

        if request.start is None:
            raise IntentParseError("A candidate start time is required for conflict checks")
        _require_positive(request.duration_minutes)
        start = request.start
        end = start + timedelta(minutes=request.duration_minutes)
        logger.debug("Received candidate %s-%s.", start.isoformat(), end.isoformat())
        events = self._list_events(
            start - timedelta(days=1),
            end + timedelta(days=ALTERNATIVE_HORIZON_DAYS + 1),
            cancel,
        )
        details = check_policy(
            self.policy,
            start,
            end,
            events,
            buffer_minutes=self.buffer_minutes,
            ignore_policy=request.ignore_policy,
        )
        has_conflict = any(detail.blocking for detail in details)
        logger.debug("PolicyCheck -> %s.", "Conflict" if has_conflict else "Clear")
        if has_conflict and self.features.conflict_resolution:
            alternative = next_clean_slot(
                self.policy, start, request.duration_minutes, events, ALTERNATIVE_HORIZON_DAYS
            )
            details = [
                replace(detail, suggested_alternative=alternative) if detail.blocking else detail
                for detail in details
            ]
        return ConflictReport(has_conflict=has_conflict, details=tuple(details))

    def schedule(
        self, request: SchedulingRequest, cancel: threading.Event | None = None
    ) -> SchedulingResponse:
        """Summary: Run the full request state machine for one candidate.

        Importance: Returns policy facts even when every LLM provider is down.
        Alternatives: Fail the whole request on any LLM error.
        """

        logger.debug("Received scheduling request.")
        if request.email_context and not self.features.email_context_analysis:
            raise FeatureDisabled("email_context_analysis")
        candidate = request
        if request.is_natural_language:
            candidate = self.interpret(request, cancel)
        elif request.start is None:
            raise IntentParseError("Provide either a query or a structured start time")
        report = self.check_conflicts(candidate, cancel)
        suggestions: tuple[SlotSuggestion, ...] = ()
        if report.has_conflict:
            suggestions = tuple(self.find_best_times(candidate, cancel=cancel))
        logger.debug("Scored %s alternatives.", len(suggestions))
        response = SchedulingResponse(candidate=candidate, report=report, suggestions=suggestions)
        response = self._with_analysis(response, cancel)
        logger.debug("Responded.")
        return response

    def book(self, request: SchedulingRequest, cancel: threading.Event | None = None) -> HistoricalEvent:
        """Summary: Create the candidate event when it has no blocking conflict.

        Importance: Writes only happen on explicit request and never over a conflict.
        Alternatives: Create events as a side effect of schedule().
        """

        report = self.check_conflicts(request, cancel)
        if report.has_conflict:
            raise SlotConflict([detail.kind for detail in report.details if detail.blocking])
        start = request.start
        end = start + timedelta(minutes=request.duration_minutes)
        try:
            return self.calendar.create_event(
                self.grant_id, request.title or "Meeting", start, end, request.participants
            )
        except CalendarError as exc:
            raise CollaboratorUnavailable("create_event", str(exc)) from exc

    def interpret(
        self, request: SchedulingRequest, cancel: threading.Event | None = None
    ) -> SchedulingRequest:
        """Summary: Turn a natural-language request into a structured candidate.

        Importance: A reply that is not the expected JSON counts as a failed attempt.
        Alternatives: Parse dates with a hand-written grammar.
        """

        if not self.features.natural_language_scheduling:
            raise FeatureDisabled("natural_language_scheduling")
        if self.router is None:
            raise IntentParseError("No LLM router is configured for natural-language requests")
        logger.debug("Interpret via LLM.")
        result = self.router.route(
            self._intent_prompt(request),
            INTENT_CAPABILITY,
            parse=self._parse_intent,
            cancel=cancel,
        )
        intent: SchedulingRequest = result.value
        return replace(
            intent,
            query=request.query,
            ignore_policy=request.ignore_policy,
            email_context=request.email_context,
        )

    def find_best_times(
        self,
        request: SchedulingRequest,
        days: int | None = None,
        cancel: threading.Event | None = None,
    ) -> list[SlotSuggestion]:
        """Summary: Rank free slots for a meeting near the requested time.

        Importance: Participant free/busy is fetched concurrently and joined before scoring.
        Alternatives: Return the first free slot.
        """

        _require_positive(request.duration_minutes)
        requested = request.start or self.now()
        return self._rank(
            duration_minutes=request.duration_minutes,
            participants=request.participants,
            requested=requested,
            first_day=local_date(self.policy, requested),
            days=days or self.search_days,
            weights=self.weights,
            not_before=self.now(),
            cancel=cancel,
        )

    def reschedule(
        self,
        event_id: str,
        requested: datetime | None = None,
        apply: bool = False,
        cancel: threading.Event | None = None,
    ) -> SchedulingResponse:
        """Summary: Propose new times for an existing event.

        Importance: Optionally moves the event to the top suggestion.
        Alternatives: Ask the user to delete and recreate the event.
        """

        event = self._find_event(event_id, cancel)
        candidate = SchedulingRequest(
            title=event.title,
            start=event.start,
            duration_minutes=event.duration_minutes,
            participants=event.participants,
        )
        target = requested or event.start
        suggestions = self._rank(
            duration_minutes=event.duration_minutes,
            participants=event.participants,
            requested=target,
            first_day=local_date(self.policy, max(target, self.now())),
            days=self.search_days,
            weights=self.weights,
            not_before=self.now(),
            exclude=event,
            cancel=cancel,
        )
        report = self._report_for_existing(event, cancel)
        response = SchedulingResponse(candidate=candidate, report=report, suggestions=tuple(suggestions))
        if apply and suggestions:
            best = suggestions[0]
            try:
                self.calendar.update_event(self.grant_id, event.event_id, best.start, best.end)
            except CalendarError as exc:
                raise CollaboratorUnavailable("update_event", str(exc)) from exc
            logger.info("Moved event %s to %s.", event.event_id, best.start.isoformat())
        return self._with_analysis(response, cancel)

    def find_focus_blocks(
        self,
        day: date | None = None,
        min_minutes: int | None = None,
        cancel: threading.Event | None = None,
    ) -> list[FocusBlock]:
        """Summary: Free working-day blocks suitable for deep work."""

        if not self.features.focus_time_protection:
            raise FeatureDisabled("focus_time_protection")
        target = day or local_date(self.policy, self.now())
        window_start = at_local(self.policy, target, time.min)
        events = self._list_events(window_start, window_start + timedelta(days=1), cancel)
        return focus_blocks(
            self.policy,
            target,
            events,
            min_minutes=self.focus_min_minutes if min_minutes is None else min_minutes,
        )

    def adapt(
        self,
        trigger: str,
        deadline: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> AdaptivePlan:
        """Summary: Build an advisory plan for an adaptive trigger.

        Importance: Each trigger picks a weight profile for the shared scoring step.
        Alternatives: A separate planner per trigger.
        """

        if trigger not in TRIGGER_WEIGHTS:
            raise ValueError(f"Unknown adaptive trigger: {trigger}")
        if trigger == "deadline" and deadline is None:
            raise ValueError("The deadline trigger requires a deadline")
        now = self.now()
        first_day = local_date(self.policy, now)
        window_start = at_local(self.policy, first_day, time.min)
        horizon = self.search_days * 2 + ALTERNATIVE_HORIZON_DAYS
        events = blocking_events(self._list_events(window_start, window_start + timedelta(days=horizon), cancel))
        weights = TRIGGER_WEIGHTS[trigger]
        if trigger == "overload":
            return self._adapt_overload(events, first_day, weights, cancel)
        if trigger == "focus-risk":
            return self._adapt_focus_risk(events, first_day, weights, cancel)
        return self._adapt_deadline(events, deadline, weights, cancel)

    def _adapt_overload(
        self,
        events: list[HistoricalEvent],
        first_day: date,
        weights: ScoringWeights,
        cancel: threading.Event | None,
    ) -> AdaptivePlan:
        by_day = self._events_by_day(events, first_day)
        overloaded = {day for day, items in by_day.items() if len(items) > self.max_meetings_per_day}
        changes = []
        for day in sorted(overloaded):
            items = sorted(by_day[day], key=lambda event: event.start)
            for event in items[self.max_meetings_per_day:]:
                suggestions = self._rank(
                    duration_minutes=event.duration_minutes,
                    participants=event.participants,
                    requested=event.start,
                    first_day=first_day,
                    days=self.search_days,
                    weights=weights,
                    not_before=self.now(),
                    exclude=event,
                    skip_days=overloaded,
                    cancel=cancel,
                )
                changes.append(_change(event, suggestions))
        if not changes:
            reason = f"No day exceeds {self.max_meetings_per_day} meetings."
        else:
            reason = (
                f"{len(overloaded)} day(s) exceed {self.max_meetings_per_day} meetings; "
                f"moving {len(changes)} meeting(s) next to existing meetings on lighter days."
            )
        logger.info("Adaptive overload plan proposes %s change(s).", len(changes))
        return AdaptivePlan(trigger="overload", changes=tuple(changes), reason=reason)

    def _adapt_focus_risk(
        self,
        events: list[HistoricalEvent],
        first_day: date,
        weights: ScoringWeights,
        cancel: threading.Event | None,
    ) -> AdaptivePlan:
        best: tuple[int, HistoricalEvent] | None = None
        for day, items in sorted(self._events_by_day(events, first_day).items()):
            baseline = longest_focus_minutes(self.policy, day, items)
            for event in sorted(items, key=lambda item: item.start):
                remaining = [item for item in items if item.event_id != event.event_id]
                gain = longest_focus_minutes(self.policy, day, remaining) - baseline
                if gain > 0 and (best is None or gain > best[0]):
                    best = (gain, event)
        if best is None:
            return AdaptivePlan(
                trigger="focus-risk",
                changes=(),
                reason="No single meeting move enlarges a focus block.",
            )
        gain, event = best
        suggestions = self._rank(
            duration_minutes=event.duration_minutes,
            participants=event.participants,
            requested=event.start,
            first_day=first_day,
            days=self.search_days,
            weights=weights,
            not_before=self.now(),
            exclude=event,
            cancel=cancel,
        )
        logger.info("Adaptive focus-risk plan moves %s for %s focus minutes.", event.event_id, gain)
        return AdaptivePlan(
            trigger="focus-risk",
            changes=(_change(event, suggestions),),
            reason=f"Moving '{event.title}' enlarges the longest focus block by {gain} minutes.",
            focus_minutes_gained=gain,
        )

    def _adapt_deadline(
        self,
        events: list[HistoricalEvent],
        deadline: datetime,
        weights: ScoringWeights,
        cancel: threading.Event | None,
    ) -> AdaptivePlan:
        now = self.now()
        before = sorted(
            (event for event in events if now <= event.start < deadline),
            key=lambda event: event.start,
        )
        changes = []
        for event in before:
            suggestions = self._rank(
                duration_minutes=event.duration_minutes,
                participants=event.participants,
                requested=deadline,
                first_day=local_date(self.policy, deadline),
                days=self.search_days,
                weights=weights,
                not_before=deadline,
                exclude=event,
                cancel=cancel,
            )
            changes.append(_change(event, suggestions))
        reason = (
            f"Clearing {len(changes)} meeting(s) before the {deadline.isoformat()} deadline."
            if changes
            else "No meetings are scheduled before the deadline."
        )
        logger.info("Adaptive deadline plan proposes %s change(s).", len(changes))
        return AdaptivePlan(trigger="deadline", changes=tuple(changes), reason=reason)

    def _rank(
        self,
        duration_minutes: int,
        participants: tuple[str, ...],
        requested: datetime,
        first_day: date,
        days: int,
        weights: ScoringWeights,
        not_before: datetime | None = None,
        exclude: HistoricalEvent | None = None,
        skip_days: set[date] | None = None,
        cancel: threading.Event | None = None,
    ) -> list[SlotSuggestion]:
        """Summary: Shared Scored step for suggestions, reschedules, and adaptive plans.

        Importance: Ties break on higher acceptance, then earlier start.
        Alternatives: Sort on the weighted score alone.
        """

        search_days = _working_days(first_day, days, skip_days or set())
        if not search_days:
            return []
        window_start = at_local(self.policy, search_days[0], time.min)
        window_end = at_local(self.policy, search_days[-1] + timedelta(days=1), time.min)
        events = [
            event
            for event in self._list_events(window_start, window_end, cancel)
            if exclude is None or event.event_id != exclude.event_id
        ]
        busy_by_participant = self._participant_busy(participants, window_start, window_end, cancel)
        patterns = self._patterns(cancel)
        horizon_hours = max(1.0, days * 24.0)
        zone = policy_zone(self.policy)
        scored: list[tuple[float, float, datetime, SlotSuggestion]] = []
        for day in search_days:
            day_events = [event for event in events if local_date(self.policy, event.start) == day]
            baseline_focus = longest_focus_minutes(self.policy, day, day_events)
            for slot in grid_slots(self.policy, day, duration_minutes, not_before=not_before):
                details = check_policy(self.policy, slot.start, slot.end, events)
                if any(detail.blocking for detail in details):
                    continue
                factors = {
                    "acceptance": _acceptance(patterns, slot.start, zone),
                    "availability": _availability(slot, busy_by_participant),
                    "proximity": max(
                        0.0,
                        1.0 - abs((slot.start - requested).total_seconds()) / 3600.0 / horizon_hours,
                    ),
                    "consolidation": _consolidation(slot, day_events),
                    "focus_preservation": _focus_preservation(
                        self.policy, day, day_events, slot, baseline_focus
                    ),
                }
                score = _weighted(factors, weights)
                suggestion = SlotSuggestion(
                    start=slot.start,
                    end=slot.end,
                    score=score,
                    rank=0,
                    reason=_reason(slot, factors, len(participants), requested, zone),
                    factors=factors,
                )
                scored.append((score, factors["acceptance"], slot.start, suggestion))
        scored.sort(key=lambda item: (-item[0], -item[1], item[2]))
        return [
            replace(item[3], rank=index + 1) for index, item in enumerate(scored[:TOP_SUGGESTIONS])
        ]

    def _patterns(self, cancel: threading.Event | None) -> PatternSummary | None:
        """Summary: Acceptance history used by the Scored step.

        Importance: A loaded snapshot wins; otherwise the learner runs once per
        lookback window and day, and an empty history scores as neutral.
        Alternatives: Require callers to learn patterns before every request.
        """

        if not self.features.predictive_scheduling:
            return None
        if self.patterns is not None or self.learner is None:
            return self.patterns
        key = (self.pattern_lookback_days, self.now().date())
        if key not in self._learned:
            try:
                summary: PatternSummary | None = self.learner.learn_patterns(
                    LearnPatternsRequest(grant_id=self.grant_id, lookback_days=self.pattern_lookback_days),
                    cancel,
                )
            except NoEventsFound:
                logger.info(
                    "No history in the last %s days; scoring acceptance as neutral.",
                    self.pattern_lookback_days,
                )
                summary = None
            self._learned[key] = summary
        return self._learned[key]

    def _participant_busy(
        self,
        participants: tuple[str, ...],
        start: datetime,
        end: datetime,
        cancel: threading.Event | None,
    ) -> dict[str, list[TimeInterval]]:
        """Summary: Fetch free/busy for every participant concurrently.

        Importance: All lookups are joined before scoring; any failure fails the request.
        Cancellation is polled while lookups are in flight and abandons the rest.
        Alternatives: Fetch participants one at a time.
        """

        if not participants:
            return {}
        results: dict[str, list[TimeInterval]] = {}
        executor = ThreadPoolExecutor(max_workers=min(len(participants), self.max_workers))
        try:
            future_to_participant = {
                executor.submit(self.calendar.get_free_busy, self.grant_id, participant, start, end): participant
                for participant in participants
            }
            pending = set(future_to_participant)
            while pending:
                if cancel is not None and cancel.is_set():
                    raise RequestCancelled("Request cancelled during free/busy lookup")
                done, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    try:
                        results[future_to_participant[future]] = future.result()
                    except CalendarError as exc:
                        raise CollaboratorUnavailable("get_free_busy", str(exc)) from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        if cancel is not None and cancel.is_set():
            raise RequestCancelled("Request cancelled after free/busy lookup")
        return results

    def _list_events(
        self, start: datetime, end: datetime, cancel: threading.Event | None
    ) -> list[HistoricalEvent]:
        if cancel is not None and cancel.is_set():
            raise RequestCancelled("Request cancelled before calendar fetch")
        try:
            events = self.calendar.list_events(self.grant_id, start, end)
        except CalendarError as exc:
            raise CollaboratorUnavailable("list_events", str(exc)) from exc
        if cancel is not None and cancel.is_set():
            raise RequestCancelled("Request cancelled after calendar fetch")
        return events

    def _find_event(self, event_id: str, cancel: threading.Event | None) -> HistoricalEvent:
        now = self.now()
        events = self._list_events(
            now - timedelta(days=ALTERNATIVE_HORIZON_DAYS),
            now + timedelta(days=ALTERNATIVE_HORIZON_DAYS * 2),
            cancel,
        )
        for event in events:
            if event.event_id == event_id:
                return event
        raise EventNotFound(event_id)

    def _report_for_existing(
        self, event: HistoricalEvent, cancel: threading.Event | None
    ) -> ConflictReport:
        events = self._list_events(event.start - timedelta(days=1), event.end + timedelta(days=1), cancel)
        details = check_policy(
            self.policy,
            event.start,
            event.end,
            events,
            buffer_minutes=self.buffer_minutes,
            exclude_event_id=event.event_id,
        )
        return ConflictReport(
            has_conflict=any(detail.blocking for detail in details), details=tuple(details)
        )

    def _events_by_day(
        self, events: list[HistoricalEvent], first_day: date
    ) -> dict[date, list[HistoricalEvent]]:
        last_day = first_day + timedelta(days=self.search_days * 2)
        grouped: dict[date, list[HistoricalEvent]] = {}
        for event in events:
            day = local_date(self.policy, event.start)
            if first_day <= day < last_day:
                grouped.setdefault(day, []).append(event)
        return grouped

    def _with_analysis(
        self, response: SchedulingResponse, cancel: threading.Event | None
    ) -> SchedulingResponse:
        """Summary: Attach optional LLM analysis, degrading on provider failures.

        Importance: Privacy, budget, and exhaustion errors never hide the policy facts.
        Alternatives: Propagate the LLM error to the caller.
        """

        if not self.features.predictive_scheduling or self.router is None:
            return response
        try:
            result = self.router.route(
                self._analysis_prompt(response), SUGGESTION_CAPABILITY, cancel=cancel
            )
        except (AllProvidersFailed, BudgetExceeded, PrivacyPolicyViolation) as exc:
            logger.warning("Returning policy-only response: %s", exc)
            return replace(response, degraded=True, warnings=response.warnings + (str(exc),))
        return replace(
            response,
            analysis=result.text,
            provider_used=result.provider_used,
            warnings=response.warnings + tuple(result.warnings),
        )

    def _intent_prompt(self, request: SchedulingRequest) -> str:
        lines = [
            f"Current time: {self.now().astimezone(policy_zone(self.policy)).isoformat()}",
            f"User timezone: {self.policy.timezone}",
            f"Request: {request.query}",
        ]
        if request.email_context:
            lines.append(f"Email context: {request.email_context}")
        lines.append(
            "Reply with only a JSON object with keys title, start (ISO 8601), "
            "duration_minutes, participants (list of emails)."
        )
        return "\n".join(lines)

    def _parse_intent(self, text: str) -> SchedulingRequest:
        """Summary: Validate the intent JSON returned by the LLM.

        Importance: Raising ValueError makes the router treat the reply as malformed.
        Alternatives: Accept partial intents and fill gaps with defaults.
        """

        cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip())
        raw = json.loads(cleaned)
        if not isinstance(raw, dict):
            raise ValueError("Intent must be a JSON object")
        title = raw.get("title")
        start_raw = raw.get("start")
        if not isinstance(title, str) or not isinstance(start_raw, str):
            raise ValueError("Intent requires string title and start")
        start = datetime.fromisoformat(start_raw.replace("Z", "+00:00"))
        if start.tzinfo is None:
            start = start.replace(tzinfo=policy_zone(self.policy))
        duration = int(raw.get("duration_minutes", 30))
        if duration <= 0:
            raise ValueError("Intent duration must be positive")
        participants = raw.get("participants", [])
        if not isinstance(participants, list) or not all(isinstance(item, str) for item in participants):
            raise ValueError("Intent participants must be a list of strings")
        return SchedulingRequest(
            title=title,
            start=start,
            duration_minutes=duration,
            participants=tuple(participants),
        )

    def _analysis_prompt(self, response: SchedulingResponse) -> str:
        candidate = response.candidate
        lines = [
            f"Meeting: {candidate.title or 'Untitled'} at {candidate.start.isoformat() if candidate.start else 'unknown'} "
            f"for {candidate.duration_minutes} minutes",
            f"Conflicts: {', '.join(response.report.kinds()) or 'none'}",
        ]
        for suggestion in response.suggestions:
            lines.append(f"Option {suggestion.rank}: {suggestion.start.isoformat()} ({suggestion.reason})")
        lines.append("Give a short scheduling recommendation.")
        return "\n".join(lines)


def _require_positive(duration_minutes: int) -> None:
    if duration_minutes <= 0:
        raise ValueError(f"Meeting duration must be positive, got {duration_minutes} minutes")


def _working_days(first_day: date, count: int, skip_days: set[date]) -> list[date]:
    days = []
    day = first_day
    while len(days) < count and day < first_day + timedelta(days=count * 3 + 7):
        if day.weekday() < 5 and day not in skip_days:
            days.append(day)
        day += timedelta(days=1)
    return days


def _acceptance(patterns: PatternSummary | None, moment: datetime, zone: ZoneInfo) -> float:
    if patterns is None:
        return NEUTRAL_ACCEPTANCE
    pattern = patterns.acceptance_for(hour_bucket(moment, zone))
    return pattern.accept_rate if pattern else NEUTRAL_ACCEPTANCE


def _availability(slot: TimeInterval, busy_by_participant: dict[str, list[TimeInterval]]) -> float:
    if not busy_by_participant:
        return 1.0
    free = sum(
        1
        for intervals in busy_by_participant.values()
        if not any(interval.overlaps(slot.start, slot.end) for interval in intervals)
    )
    return free / len(busy_by_participant)


def _consolidation(slot: TimeInterval, day_events: list[HistoricalEvent]) -> float:
    if any(event.end == slot.start or event.start == slot.end for event in day_events):
        return 1.0
    return 0.0


def _focus_preservation(
    policy: WorkingHoursPolicy,
    day: date,
    day_events: list[HistoricalEvent],
    slot: TimeInterval,
    baseline: int,
) -> float:
    if baseline <= 0:
        return 1.0
    placeholder = HistoricalEvent(event_id="__candidate__", title="", start=slot.start, end=slot.end)
    return longest_focus_minutes(policy, day, [*day_events, placeholder]) / baseline


def _weighted(factors: dict[str, float], weights: ScoringWeights) -> float:
    weight_map = weights.as_dict()
    total = sum(weight_map.values())
    if total <= 0:
        return 0.0
    score = sum(factors[name] * weight for name, weight in weight_map.items()) / total
    return round(score, 6)


def _reason(
    slot: TimeInterval,
    factors: dict[str, float],
    participant_count: int,
    requested: datetime,
    zone: ZoneInfo,
) -> str:
    local = slot.start.astimezone(zone)
    parts = [f"{local:%a %H:%M}"]
    if factors["acceptance"] != NEUTRAL_ACCEPTANCE:
        parts.append(f"you accept {factors['acceptance']:.0%} of meetings at this hour")
    if participant_count:
        free = round(factors["availability"] * participant_count)
        parts.append(f"{free} of {participant_count} participants free")
    else:
        parts.append("you are free")
    hours = abs((slot.start - requested).total_seconds()) / 3600
    parts.append("at the requested time" if hours == 0 else f"{hours:.1f}h from the requested time")
    if factors["consolidation"] == 1.0:
        parts.append("next to an existing meeting")
    return ", ".join(parts)


def _change(event: HistoricalEvent, suggestions: list[SlotSuggestion]) -> ProposedChange:
    return ProposedChange(
        event_id=event.event_id,
        title=event.title,
        original_start=event.start,
        suggestions=tuple(suggestions),
    )
