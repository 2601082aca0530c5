"""Summary: Pure working-hours, break, and interval helpers.

Importance: Policy facts must stay computable without any LLM or network call.
Alternatives: Compute conflicts inline inside the scheduling engine.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from calpilot.models import (
    BACK_TO_BACK,
    BREAK_VIOLATION,
    DECLINED,
    DOUBLE_BOOKED,
    OUTSIDE_WORKING_HOURS,
    ConflictDetail,
    FocusBlock,
    HistoricalEvent,
    TimeInterval,
    WorkingHoursPolicy,
)

SLOT_MINUTES = 30


def policy_zone(policy: WorkingHoursPolicy) -> ZoneInfo:
    return ZoneInfo(policy.timezone)


def at_local(policy: WorkingHoursPolicy, day: date, clock: time) -> datetime:
    return datetime.combine(day, clock, tzinfo=policy_zone(policy))


def local_date(policy: WorkingHoursPolicy, moment: datetime) -> date:
    return moment.astimezone(policy_zone(policy)).date()


def working_window(policy: WorkingHoursPolicy, day: date) -> TimeInterval:
    """Summary: The [start, end) working interval of a local day.

    Importance: A disabled policy treats the whole day as working time.
    Alternatives: Return None for disabled policies and branch everywhere.
    """

    if not policy.enabled:
        return TimeInterval(at_local(policy, day, time(0, 0)), at_local(policy, day + timedelta(days=1), time(0, 0)))
    return TimeInterval(at_local(policy, day, policy.start), at_local(policy, day, policy.end))


def break_intervals(policy: WorkingHoursPolicy, day: date) -> list[TimeInterval]:
    return [
        TimeInterval(at_local(policy, day, item.start), at_local(policy, day, item.end))
        for item in policy.breaks
    ]


def hour_bucket(moment: datetime, zone: ZoneInfo) -> str:
    """Summary: Hourly acceptance bucket label such as "10:00-11:00"."""

    hour = moment.astimezone(zone).hour
    return f"{hour:02d}:00-{hour + 1:02d}:00"


def is_within_working_hours(policy: WorkingHoursPolicy, start: datetime, end: datetime) -> bool:
    if not policy.enabled:
        return True
    window = working_window(policy, local_date(policy, start))
    return window.start <= start and end <= window.end


def overlapping_break(policy: WorkingHoursPolicy, start: datetime, end: datetime) -> str | None:
    """Summary: Name of the first break the interval overlaps, if any.

    Importance: Checks every local day the interval touches.
    Alternatives: Only check the start day.
    """

    day = local_date(policy, start)
    last_day = local_date(policy, end)
    while day <= last_day:
        for item, interval in zip(policy.breaks, break_intervals(policy, day)):
            if interval.overlaps(start, end):
                return item.name
        day += timedelta(days=1)
    return None


def blocking_events(events: Iterable[HistoricalEvent]) -> list[HistoricalEvent]:
    return [event for event in events if event.busy and event.status != DECLINED]


def check_policy(
    policy: WorkingHoursPolicy,
    start: datetime,
    end: datetime,
    events: Iterable[HistoricalEvent],
    buffer_minutes: int = 0,
    ignore_policy: bool = False,
    exclude_event_id: str | None = None,
) -> list[ConflictDetail]:
    """Summary: Evaluate a candidate interval against policy and calendar.

    Importance: Pure function; the ignore flag bypasses the break check only.
    Alternatives: Raise an exception on the first violation.
    """

    details: list[ConflictDetail] = []
    zone = policy_zone(policy)
    if not is_within_working_hours(policy, start, end):
        details.append(
            ConflictDetail(
                kind=OUTSIDE_WORKING_HOURS,
                description=(
                    f"{_clock(start, zone)}-{_clock(end, zone)} is outside working hours "
                    f"{policy.start:%H:%M}-{policy.end:%H:%M} ({policy.timezone})"
                ),
            )
        )
    if not ignore_policy:
        break_name = overlapping_break(policy, start, end)
        if break_name:
            details.append(
                ConflictDetail(
                    kind=BREAK_VIOLATION,
                    description=f"{_clock(start, zone)}-{_clock(end, zone)} overlaps {break_name}",
                )
            )
    busy = [event for event in blocking_events(events) if event.event_id != exclude_event_id]
    for event in busy:
        if event.start < end and start < event.end:
            details.append(
                ConflictDetail(
                    kind=DOUBLE_BOOKED,
                    description=(
                        f"Overlaps '{event.title}' ({_clock(event.start, zone)}-{_clock(event.end, zone)})"
                    ),
                )
            )
    if buffer_minutes > 0:
        buffer = timedelta(minutes=buffer_minutes)
        for event in busy:
            before = timedelta(0) <= start - event.end < buffer
            after = timedelta(0) <= event.start - end < buffer
            if before or after:
                details.append(
                    ConflictDetail(
                        kind=BACK_TO_BACK,
                        description=f"Less than {buffer_minutes} minutes from '{event.title}'",
                        blocking=False,
                    )
                )
    return details


def merge_intervals(intervals: Iterable[TimeInterval]) -> list[TimeInterval]:
    merged: list[TimeInterval] = []
    for interval in sorted(intervals, key=lambda item: item.start):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeInterval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def free_intervals(window: TimeInterval, busy: Iterable[TimeInterval]) -> list[TimeInterval]:
    """Summary: Subtract busy intervals from a window.

    Importance: Shared by focus detection and slot generation.
    Alternatives: Walk a minute-resolution bitmap.
    """

    free: list[TimeInterval] = []
    cursor = window.start
    for interval in merge_intervals(busy):
        if interval.end <= cursor or interval.start >= window.end:
            continue
        if interval.start > cursor:
            free.append(TimeInterval(cursor, min(interval.start, window.end)))
        cursor = max(cursor, interval.end)
    if cursor < window.end:
        free.append(TimeInterval(cursor, window.end))
    return free


def day_busy(
    policy: WorkingHoursPolicy, day: date, events: Iterable[HistoricalEvent]
) -> list[TimeInterval]:
    intervals = [TimeInterval(event.start, event.end) for event in blocking_events(events)]
    return intervals + break_intervals(policy, day)


def focus_blocks(
    policy: WorkingHoursPolicy,
    day: date,
    events: Iterable[HistoricalEvent],
    min_minutes: int = 60,
) -> list[FocusBlock]:
    """Summary: Free working-day intervals long enough for deep work.

    Importance: Ranked by length descending, then by start.
    Alternatives: Report every gap regardless of length.
    """

    window = working_window(policy, day)
    blocks = [
        FocusBlock(start=interval.start, end=interval.end, duration_minutes=interval.minutes)
        for interval in free_intervals(window, day_busy(policy, day, events))
        if interval.minutes >= min_minutes
    ]
    return sorted(blocks, key=lambda block: (-block.duration_minutes, block.start))


def longest_focus_minutes(
    policy: WorkingHoursPolicy, day: date, events: Iterable[HistoricalEvent]
) -> int:
    blocks = focus_blocks(policy, day, events, min_minutes=0)
    return blocks[0].duration_minutes if blocks else 0


def grid_slots(
    policy: WorkingHoursPolicy,
    day: date,
    duration_minutes: int,
    not_before: datetime | None = None,
) -> list[TimeInterval]:
    """Summary: Candidate slots on the half-hour grid inside working hours.

    Importance: Every scored candidate starts on this grid.
    Alternatives: Start candidates at arbitrary free-interval boundaries.
    """

    window = working_window(policy, day)
    step = timedelta(minutes=SLOT_MINUTES)
    length = timedelta(minutes=duration_minutes)
    slots = []
    cursor = window.start
    while cursor + length <= window.end:
        if not_before is None or cursor >= not_before:
            slots.append(TimeInterval(cursor, cursor + length))
        cursor += step
    return slots


def next_clean_slot(
    policy: WorkingHoursPolicy,
    start: datetime,
    duration_minutes: int,
    events: list[HistoricalEvent],
    horizon_days: int = 14,
    exclude_event_id: str | None = None,
) -> datetime | None:
    """Summary: First grid slot at or after start with no blocking violation.

    Importance: Powers the suggested alternative on blocking conflicts.
    Alternatives: Leave resolution entirely to the caller.
    """

    first_day = local_date(policy, start)
    for offset in range(horizon_days + 1):
        day = first_day + timedelta(days=offset)
        for slot in grid_slots(policy, day, duration_minutes, not_before=start):
            details = check_policy(
                policy, slot.start, slot.end, events, exclude_event_id=exclude_event_id
            )
            if not any(detail.blocking for detail in details):
                return slot.start
    return None


def _clock(moment: datetime, zone: ZoneInfo) -> str:
    return moment.astimezone(zone).strftime("%H:%M")
