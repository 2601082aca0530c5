"""Summary: Pattern learning over historical calendar events.

Importance: Provides the acceptance, duration, and timezone context the scheduler scores with.
Alternatives: Ask an LLM to summarize the raw calendar each time.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from zoneinfo import ZoneInfo

from calpilot.calendar import CalendarError, CalendarProvider
from calpilot.errors import CollaboratorUnavailable, NoEventsFound, RequestCancelled, SchedulingError
from calpilot.models import (
    ACCEPTED,
    DECLINED,
    RESPONSE_STATUSES,
    AcceptancePattern,
    AnalysisPeriod,
    DurationPattern,
    HistoricalEvent,
    LearnPatternsRequest,
    PatternSummary,
    ProductivityInsight,
    TimezonePattern,
)
from calpilot.policy import hour_bucket

logger = logging.getLogger(__name__)

CONFIDENCE_SAMPLE_SIZE = 20
MAX_RECOMMENDATIONS = 5
BACK_TO_BACK_GAP_MINUTES = 5
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

MEETING_TYPE_KEYWORDS = (
    ("1-on-1", ("1:1", "1-on-1", "one-on-one")),
    ("Standup", ("standup", "daily", "scrum")),
    ("Review", ("review", "retrospective", "retro")),
    ("Planning", ("planning", "plan")),
    ("Interview", ("interview", "candidate")),
    ("External", ("client", "customer", "partner", "vendor", "external")),
)


def infer_meeting_type(title: str, attendee_count: int = 1, category: str | None = None) -> str:
    """Summary: Infer a meeting type from title keywords, category, and size.

    Importance: Groups durations so typical lengths can be reported per type.
    Alternatives: Ask the user to tag every meeting.
    """

    lowered = title.lower()
    for meeting_type, keywords in MEETING_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return meeting_type
    if category:
        hint = category.lower()
        for meeting_type, keywords in MEETING_TYPE_KEYWORDS:
            if hint == meeting_type.lower() or any(keyword in hint for keyword in keywords):
                return meeting_type
    if attendee_count == 2:
        return "1-on-1"
    if attendee_count >= 5:
        return "Team meeting"
    return "General meeting"


class Recommender(ABC):
    """Summary: Turns deterministic statistics into advisory recommendation strings.

    Importance: Keeps the formatting step replaceable without touching the statistics.
    Alternatives: Hardcode recommendation text inside the learner.
    """

    @abstractmethod
    def recommend(self, summary: PatternSummary) -> list[str]:
        """Summary: Produce ranked recommendations for a summary."""


class RuleBasedRecommender(Recommender):
    """Summary: Deterministic recommendations derived from the statistics.

    Importance: Default recommender that works offline and in tests.
    Alternatives: Always consult an LLM.
    """

    def recommend(self, summary: PatternSummary) -> list[str]:
        recommendations: list[str] = []
        if summary.acceptance_patterns:
            best = summary.acceptance_patterns[0]
            if best.accept_rate >= 0.7:
                recommendations.append(
                    f"Bias new invites toward {best.time_slot}; you accept "
                    f"{best.accept_rate:.0%} of meetings there."
                )
            for pattern in summary.acceptance_patterns:
                if pattern.accept_rate < 0.4 and pattern.event_count >= 3:
                    recommendations.append(
                        f"Avoid proposing {pattern.time_slot}; you accept only "
                        f"{pattern.accept_rate:.0%} of meetings there."
                    )
                    break
        insights = {insight.insight_type: insight for insight in summary.productivity_insights}
        lightest = insights.get("lightest_day")
        if lightest is not None:
            recommendations.append(
                f"Block {lightest.time_slot} for deep work; it has the fewest meetings."
            )
        back_to_back = insights.get("back_to_back_density")
        if back_to_back is not None and back_to_back.score < 70:
            recommendations.append("Add buffers between meetings; many of them run back to back.")
        cross_timezone = insights.get("cross_timezone_share")
        if cross_timezone is not None and cross_timezone.score < 70:
            recommendations.append(
                "Many meetings involve other timezones; prefer slots that overlap both working days."
            )
        for pattern in summary.duration_patterns:
            if pattern.meeting_type == "Standup" and pattern.scheduled_duration > 15:
                recommendations.append(
                    f"Standups average {pattern.scheduled_duration} minutes; consider 15-minute standups."
                )
            elif pattern.meeting_type == "1-on-1" and pattern.scheduled_duration >= 60:
                recommendations.append(
                    f"1-on-1s average {pattern.scheduled_duration} minutes; consider 30 or 45 minutes."
                )
        return recommendations[:MAX_RECOMMENDATIONS]


@dataclass
class LlmRecommender(Recommender):
    """Summary: LLM-assisted recommendations with a rule-based fallback.

    Importance: Richer advice when a provider is available, same statistics either way.
    Alternatives: Fail pattern learning when the LLM is unavailable.
    """

    router: Any
    fallback: Recommender = field(default_factory=RuleBasedRecommender)

    def recommend(self, summary: PatternSummary) -> list[str]:
        try:
            result = self.router.route(_recommendation_prompt(summary), "pattern-recommendations")
        except SchedulingError as exc:
            logger.warning("LLM recommendations unavailable, using rules: %s", exc)
            return self.fallback.recommend(summary)
        lines = []
        for line in result.text.splitlines():
            cleaned = re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip()
            if len(cleaned) > 10:
                lines.append(cleaned)
        if not lines:
            return self.fallback.recommend(summary)
        return lines[:MAX_RECOMMENDATIONS]


@dataclass
class PatternLearner:
    """Summary: Learns scheduling habits from a window of historical events.

    Importance: Statistics are deterministic for a given calendar and clock.
    Alternatives: Keep running aggregates updated on every calendar change.
    """

    calendar: CalendarProvider
    timezone: str = "UTC"
    recommender: Recommender = field(default_factory=RuleBasedRecommender)
    now: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def learn_patterns(
        self, request: LearnPatternsRequest, cancel: threading.Event | None = None
    ) -> PatternSummary:
        """Summary: Build a PatternSummary for the requested lookback window.

        Importance: Zero events raises NoEventsFound instead of a partial summary.
        Alternatives: Return an empty summary with zeroed statistics.
        """

        end = self.now()
        start = end - timedelta(days=request.lookback_days)
        try:
            fetched = self.calendar.list_events(request.grant_id, start, end)
        except CalendarError as exc:
            raise CollaboratorUnavailable("list_events", str(exc)) from exc
        if cancel is not None and cancel.is_set():
            raise RequestCancelled("Pattern learning cancelled after calendar fetch")
        events = fetched if request.include_recurring else first_occurrences(fetched)
        if not events:
            raise NoEventsFound(request.lookback_days)
        zone = ZoneInfo(self.timezone)
        acceptance = analyze_acceptance(events, zone, request.min_confidence)
        summary = PatternSummary(
            user_id=request.grant_id,
            analysis_period=AnalysisPeriod(start_date=start, end_date=end, days=request.lookback_days),
            total_events_analyzed=len(events),
            acceptance_patterns=tuple(acceptance),
            duration_patterns=tuple(analyze_durations(events)),
            timezone_patterns=tuple(analyze_timezones(events, self.timezone)),
            productivity_insights=(),
            recommendations=(),
            generated_at=end,
        )
        summary = replace(summary, productivity_insights=tuple(analyze_productivity(events, summary, zone)))
        recommendations = self.recommender.recommend(summary)[:MAX_RECOMMENDATIONS]
        logger.info("Learned patterns from %s events.", len(events))
        return replace(summary, recommendations=tuple(recommendations))


def first_occurrences(events: list[HistoricalEvent]) -> list[HistoricalEvent]:
    """Summary: Keep only the earliest occurrence of each recurring series."""

    seen: set[str] = set()
    kept = []
    for event in sorted(events, key=lambda item: item.start):
        if event.series_id:
            if event.series_id in seen:
                continue
            seen.add(event.series_id)
        kept.append(event)
    return kept


def analyze_acceptance(
    events: list[HistoricalEvent], zone: ZoneInfo, min_confidence: float = 0.0
) -> list[AcceptancePattern]:
    """Summary: Acceptance rate and confidence per hourly bucket.

    Importance: Only responded events count; unanswered invites say nothing about preference.
    Alternatives: Treat needs-action invites as declines.
    """

    responded: Counter[str] = Counter()
    accepted: Counter[str] = Counter()
    for event in events:
        if event.status not in RESPONSE_STATUSES:
            continue
        bucket = hour_bucket(event.start, zone)
        responded[bucket] += 1
        if event.status == ACCEPTED:
            accepted[bucket] += 1
    patterns = []
    for bucket, count in responded.items():
        rate = accepted[bucket] / count
        confidence = min(1.0, count / CONFIDENCE_SAMPLE_SIZE)
        if confidence < min_confidence:
            continue
        if rate > 0.8:
            description = "You prefer meetings during this time"
        elif rate < 0.4:
            description = "You tend to avoid meetings during this time"
        else:
            description = "Moderate acceptance rate"
        patterns.append(
            AcceptancePattern(
                time_slot=bucket,
                accept_rate=rate,
                event_count=count,
                confidence=confidence,
                description=description,
            )
        )
    return sorted(patterns, key=lambda item: (-item.accept_rate, -item.event_count, item.time_slot))


def analyze_durations(events: list[HistoricalEvent]) -> list[DurationPattern]:
    durations: dict[str, list[int]] = defaultdict(list)
    for event in events:
        meeting_type = infer_meeting_type(event.title, event.attendee_count, event.category)
        durations[meeting_type].append(event.duration_minutes)
    patterns = []
    for meeting_type, values in durations.items():
        mean = int(sum(values) / len(values) + 0.5)
        patterns.append(
            DurationPattern(
                meeting_type=meeting_type,
                scheduled_duration=mean,
                event_count=len(values),
                description=f"Average {mean}-minute {meeting_type} meetings",
            )
        )
    return sorted(patterns, key=lambda item: (-item.event_count, item.meeting_type))


def analyze_timezones(events: list[HistoricalEvent], primary: str) -> list[TimezonePattern]:
    counts = Counter(event.timezone or "UTC" for event in events)
    total = len(events)
    patterns = [
        TimezonePattern(
            timezone=name,
            percentage=count / total,
            event_count=count,
            is_primary=name == primary,
        )
        for name, count in counts.items()
    ]
    return sorted(patterns, key=lambda item: (-item.event_count, item.timezone))


def analyze_productivity(
    events: list[HistoricalEvent], summary: PatternSummary, zone: ZoneInfo
) -> list[ProductivityInsight]:
    """Summary: Derive heuristic productivity insights scored 0-100.

    Importance: Higher scores are better for focus in every insight.
    Alternatives: Report raw counts and leave interpretation to the reader.
    """

    attended = sorted(
        (event for event in events if event.status != DECLINED and event.busy),
        key=lambda item: item.start,
    )
    insights: list[ProductivityInsight] = []
    if attended:
        per_day = Counter(WEEKDAYS[event.start.astimezone(zone).weekday()] for event in attended)
        ordered = sorted(per_day.items(), key=lambda item: (-item[1], WEEKDAYS.index(item[0])))
        total = len(attended)
        busiest, busiest_count = ordered[0]
        lightest, lightest_count = ordered[-1]
        insights.append(
            ProductivityInsight(
                insight_type="busiest_day",
                time_slot=busiest,
                score=_score(1 - busiest_count / total),
                description=f"{busiest} has the most meetings ({busiest_count}) and may impact focus time",
            )
        )
        insights.append(
            ProductivityInsight(
                insight_type="lightest_day",
                time_slot=lightest,
                score=_score(1 - lightest_count / total),
                description=f"{lightest} has the fewest meetings ({lightest_count}) and suits deep work",
            )
        )
    if summary.acceptance_patterns:
        peak = summary.acceptance_patterns[0]
        insights.append(
            ProductivityInsight(
                insight_type="peak_acceptance",
                time_slot=peak.time_slot,
                score=_score(peak.accept_rate),
                description=f"Most accepted slot is {peak.time_slot} ({peak.accept_rate:.0%})",
            )
        )
    primary = next((item for item in summary.timezone_patterns if item.is_primary), None)
    cross_share = 1 - (primary.percentage if primary else 0.0)
    insights.append(
        ProductivityInsight(
            insight_type="cross_timezone_share",
            score=_score(1 - cross_share),
            description=f"{cross_share:.0%} of meetings are scheduled outside your primary timezone",
        )
    )
    if len(attended) > 1:
        gap = timedelta(minutes=BACK_TO_BACK_GAP_MINUTES)
        adjacent = sum(
            1
            for previous, current in zip(attended, attended[1:])
            if previous.start.astimezone(zone).date() == current.start.astimezone(zone).date()
            and timedelta(0) <= current.start - previous.end <= gap
        )
        density = adjacent / (len(attended) - 1)
        insights.append(
            ProductivityInsight(
                insight_type="back_to_back_density",
                score=_score(1 - density),
                description=f"{density:.0%} of consecutive meetings run back to back",
            )
        )
    return insights


def _score(fraction: float) -> int:
    return max(0, min(100, int(round(fraction * 100))))


def _recommendation_prompt(summary: PatternSummary) -> str:
    lines = [f"Analyzed {summary.total_events_analyzed} events over {summary.analysis_period.days} days."]
    for pattern in summary.acceptance_patterns[:5]:
        lines.append(f"Slot {pattern.time_slot}: accept rate {pattern.accept_rate:.0%} ({pattern.event_count} events)")
    for pattern in summary.duration_patterns:
        lines.append(f"{pattern.meeting_type}: {pattern.scheduled_duration} minutes ({pattern.event_count} events)")
    for insight in summary.productivity_insights:
        lines.append(f"{insight.insight_type}: {insight.description} (score {insight.score})")
    lines.append("Provide up to 5 actionable scheduling recommendations, one per line.")
    return "\n".join(lines)


def export_patterns(summary: PatternSummary) -> str:
    """Summary: Serialize a summary to a JSON document.

    Importance: Lossless export so parse_patterns reproduces every field.
    Alternatives: Pickle the dataclass.
    """

    return json.dumps(asdict(summary), default=_encode_datetime, indent=2)


def parse_patterns(text: str) -> PatternSummary:
    """Summary: Rebuild a summary from export_patterns output.

    Importance: Lets snapshots feed the scheduler without re-reading the calendar.
    Alternatives: Re-run pattern learning on every request.
    """

    try:
        raw = json.loads(text)
        period = raw["analysis_period"]
        return PatternSummary(
            user_id=raw["user_id"],
            analysis_period=AnalysisPeriod(
                start_date=datetime.fromisoformat(period["start_date"]),
                end_date=datetime.fromisoformat(period["end_date"]),
                days=int(period["days"]),
            ),
            total_events_analyzed=int(raw["total_events_analyzed"]),
            acceptance_patterns=tuple(AcceptancePattern(**item) for item in raw["acceptance_patterns"]),
            duration_patterns=tuple(DurationPattern(**item) for item in raw["duration_patterns"]),
            timezone_patterns=tuple(TimezonePattern(**item) for item in raw["timezone_patterns"]),
            productivity_insights=tuple(
                ProductivityInsight(**item) for item in raw["productivity_insights"]
            ),
            recommendations=tuple(raw["recommendations"]),
            generated_at=datetime.fromisoformat(raw["generated_at"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError("Malformed pattern export") from exc


def save_snapshot(summary: PatternSummary, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_patterns(summary), encoding="utf-8")
    logger.info("Saved pattern snapshot to %s.", path)
    return path


def load_snapshot(path: Path) -> PatternSummary:
    return parse_patterns(path.read_text(encoding="utf-8"))


def _encode_datetime(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Unsupported type: {type(value).__name__}")
