"""Summary: Calendar provider interfaces and implementations.

Importance: Encapsulates event listing, free/busy, and event writes behind one contract.
Alternatives: Use provider SDKs directly without a shared abstraction.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calpilot.models import ACCEPTED, DECLINED, HistoricalEvent, TimeInterval

logger = logging.getLogger(__name__)

ICS_WEEKDAYS = {"MO": 0, "TU": 1, "WE": 2, "TH": 3, "FR": 4, "SA": 5, "SU": 6}


class CalendarError(RuntimeError):
    """Summary: Raised by calendar providers when a call cannot be served.

    Importance: Lets the engine surface every provider failure the same way.
    Alternatives: Let file and network errors leak to callers.
    """


class CalendarProvider(ABC):
    """Summary: Abstract interface for calendar access.

    Importance: Standardizes retrieval across mocked and real providers.
    Alternatives: Couple scheduling to a single calendar API.
    """

    @abstractmethod
    def list_events(self, grant_id: str, start: datetime, end: datetime) -> list[HistoricalEvent]:
        """Summary: List events overlapping [start, end) for a grant.

        Importance: Feeds pattern learning and conflict detection.
        Alternatives: Fetch upcoming events by count instead of a range.
        """

    @abstractmethod
    def get_free_busy(
        self, grant_id: str, participant: str, start: datetime, end: datetime
    ) -> list[TimeInterval]:
        """Summary: Return busy intervals for one participant.

        Importance: Drives the availability factor when scoring slots.
        Alternatives: Require every participant's full event list.
        """

    @abstractmethod
    def create_event(
        self,
        grant_id: str,
        title: str,
        start: datetime,
        end: datetime,
        participants: tuple[str, ...] = (),
        description: str = "",
    ) -> HistoricalEvent:
        """Summary: Create a single event."""

    @abstractmethod
    def update_event(
        self,
        grant_id: str,
        event_id: str,
        start: datetime,
        end: datetime,
        title: str | None = None,
    ) -> HistoricalEvent:
        """Summary: Move or rename a single event."""

    @abstractmethod
    def delete_event(self, grant_id: str, event_id: str) -> None:
        """Summary: Delete a single event."""


class MockCalendarProvider(CalendarProvider):
    """Summary: Serves events from a local JSON fixture with in-memory writes.

    Importance: Supports offline demos and tests.
    Alternatives: Generate synthetic events in code.
    """

    def __init__(
        self,
        fixture_path: Path | None = None,
        events: list[HistoricalEvent] | None = None,
        free_busy: dict[str, list[TimeInterval]] | None = None,
    ) -> None:
        """Summary: Initialize from a fixture file or in-memory events.

        Importance: Tests pass events directly while the CLI reads the fixture.
        Alternatives: Always require a fixture file.
        """

        self._fixture_path = fixture_path
        self._events: list[HistoricalEvent] | None = list(events) if events is not None else None
        self._free_busy: dict[str, list[TimeInterval]] = dict(free_busy or {})
        self._lock = threading.Lock()

    def list_events(self, grant_id: str, start: datetime, end: datetime) -> list[HistoricalEvent]:
        events = self._load()
        return sorted(
            (event for event in events if event.start < end and event.end > start),
            key=lambda event: event.start,
        )

    def get_free_busy(
        self, grant_id: str, participant: str, start: datetime, end: datetime
    ) -> list[TimeInterval]:
        """Summary: Busy intervals from explicit fixture data or shared events.

        Importance: Participants without explicit data are busy in events they attend.
        Alternatives: Treat unknown participants as fully free.
        """

        events = self._load()
        if participant in self._free_busy:
            busy = self._free_busy[participant]
        else:
            busy = [
                TimeInterval(event.start, event.end)
                for event in events
                if participant in event.participants and event.busy and event.status != DECLINED
            ]
        return sorted(
            (interval for interval in busy if interval.overlaps(start, end)),
            key=lambda interval: interval.start,
        )

    def create_event(
        self,
        grant_id: str,
        title: str,
        start: datetime,
        end: datetime,
        participants: tuple[str, ...] = (),
        description: str = "",
    ) -> HistoricalEvent:
        event = HistoricalEvent(
            event_id=f"mock-{uuid.uuid4().hex[:12]}",
            title=title,
            start=start,
            end=end,
            timezone=_zone_name(start),
            status=ACCEPTED,
            attendee_count=max(1, len(participants) + 1),
            participants=tuple(participants),
        )
        with self._lock:
            self._load().append(event)
        logger.info("Created mock event %s.", event.event_id)
        return event

    def update_event(
        self,
        grant_id: str,
        event_id: str,
        start: datetime,
        end: datetime,
        title: str | None = None,
    ) -> HistoricalEvent:
        with self._lock:
            events = self._load()
            for index, event in enumerate(events):
                if event.event_id == event_id:
                    updated = replace(event, start=start, end=end, title=title or event.title)
                    events[index] = updated
                    return updated
        raise CalendarError(f"Event not found: {event_id}")

    def delete_event(self, grant_id: str, event_id: str) -> None:
        with self._lock:
            events = self._load()
            remaining = [event for event in events if event.event_id != event_id]
            if len(remaining) == len(events):
                raise CalendarError(f"Event not found: {event_id}")
            events[:] = remaining

    def _load(self) -> list[HistoricalEvent]:
        """Summary: Load the fixture once, keeping later writes in memory.

        Importance: Fixture edits never happen implicitly.
        Alternatives: Persist writes back to the fixture file.
        """

        if self._events is not None:
            return self._events
        if self._fixture_path is None:
            self._events = []
            return self._events
        try:
            data = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CalendarError(f"Unable to read calendar fixture {self._fixture_path}") from exc
        items = data.get("events", []) if isinstance(data, dict) else data
        try:
            self._events = [event_from_dict(item) for item in items]
            if isinstance(data, dict):
                for participant, intervals in data.get("free_busy", {}).items():
                    self._free_busy.setdefault(
                        participant,
                        [
                            TimeInterval(
                                _parse_iso(item["start"], "UTC"), _parse_iso(item["end"], "UTC")
                            )
                            for item in intervals
                        ],
                    )
        except (KeyError, TypeError, ValueError) as exc:
            raise CalendarError(f"Malformed calendar fixture {self._fixture_path}") from exc
        return self._events


class IcsCalendarProvider(CalendarProvider):
    """Summary: Read-only provider backed by an iCalendar (.ics) file.

    Importance: Enables pattern learning from exported calendars without provider APIs.
    Alternatives: Use Google or Microsoft APIs with OAuth.
    """

    def __init__(self, ics_path: Path, owner: str | None = None) -> None:
        """Summary: Initialize the iCalendar provider.

        Importance: The owner address is used to read the user's own PARTSTAT.
        Alternatives: Fetch calendar events via network APIs.
        """

        self._ics_path = ics_path
        self._owner = owner.lower() if owner else None

    def list_events(self, grant_id: str, start: datetime, end: datetime) -> list[HistoricalEvent]:
        """Summary: Parse events from the .ics file within a range.

        Importance: Supports local-first calendar imports.
        Alternatives: Use a dedicated iCalendar parsing library.
        """

        try:
            raw = self._ics_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CalendarError(f"Unable to read calendar file {self._ics_path}") from exc
        parsed = _parse_ics_events(raw)
        uid_counts: dict[str, int] = {}
        for item in parsed:
            uid = item.get("UID", "")
            uid_counts[uid] = uid_counts.get(uid, 0) + 1
        events = []
        for index, item in enumerate(parsed):
            try:
                event = self._to_event(item, index, uid_counts)
                if "RRULE" in item:
                    events.extend(_expand_recurrence(event, item, _overridden(parsed, item), end))
                else:
                    events.append(event)
            except ValueError as exc:
                raise CalendarError(f"Malformed event in {self._ics_path}") from exc
        return sorted(
            (event for event in events if event.start < end and event.end > start),
            key=lambda event: event.start,
        )

    def get_free_busy(
        self, grant_id: str, participant: str, start: datetime, end: datetime
    ) -> list[TimeInterval]:
        participant = participant.lower()
        return [
            TimeInterval(event.start, event.end)
            for event in self.list_events(grant_id, start, end)
            if event.busy
            and event.status != DECLINED
            and (participant == self._owner or participant in event.participants)
        ]

    def create_event(
        self,
        grant_id: str,
        title: str,
        start: datetime,
        end: datetime,
        participants: tuple[str, ...] = (),
        description: str = "",
    ) -> HistoricalEvent:
        raise CalendarError("The iCalendar provider is read-only")

    def update_event(
        self,
        grant_id: str,
        event_id: str,
        start: datetime,
        end: datetime,
        title: str | None = None,
    ) -> HistoricalEvent:
        raise CalendarError("The iCalendar provider is read-only")

    def delete_event(self, grant_id: str, event_id: str) -> None:
        raise CalendarError("The iCalendar provider is read-only")

    def _to_event(
        self, item: dict[str, Any], index: int, uid_counts: dict[str, int]
    ) -> HistoricalEvent:
        uid = item.get("UID", f"ics-{index}")
        tz_name = item.get("DTSTART;TZID", "UTC")
        start = _parse_ics_datetime(item.get("DTSTART", ""), tz_name)
        end_raw = item.get("DTEND")
        end = _parse_ics_datetime(end_raw, item.get("DTEND;TZID", tz_name)) if end_raw else start
        attendees = item.get("ATTENDEE", [])
        participants = tuple(address for address, _ in attendees)
        status = ACCEPTED
        if item.get("STATUS", "").upper() == "CANCELLED":
            status = DECLINED
        elif self._owner:
            for address, partstat in attendees:
                if address == self._owner and partstat:
                    status = partstat.lower().replace("-", "_")
        recurring = "RRULE" in item or "RECURRENCE-ID" in item or uid_counts.get(uid, 0) > 1
        return HistoricalEvent(
            event_id=f"{uid}-{index}" if uid_counts.get(uid, 0) > 1 else uid,
            title=item.get("SUMMARY", "Untitled"),
            start=start,
            end=end,
            timezone=tz_name,
            status=status,
            attendee_count=max(1, len(participants)),
            participants=participants,
            category=item.get("CATEGORIES"),
            series_id=uid if recurring else None,
            busy=item.get("TRANSP", "OPAQUE").upper() != "TRANSPARENT",
        )


def event_from_dict(item: dict[str, Any]) -> HistoricalEvent:
    """Summary: Build an event from a fixture or API payload.

    Importance: Naive timestamps are interpreted in the event's own timezone.
    Alternatives: Require offset-aware timestamps everywhere.
    """

    tz_name = item.get("timezone", "UTC")
    participants = tuple(item.get("participants", []))
    return HistoricalEvent(
        event_id=str(item["id"]),
        title=item.get("title", "Untitled"),
        start=_parse_iso(item["start"], tz_name),
        end=_parse_iso(item["end"], tz_name),
        timezone=tz_name,
        status=item.get("status", ACCEPTED),
        attendee_count=int(item.get("attendee_count", max(1, len(participants) + 1))),
        participants=participants,
        category=item.get("category"),
        series_id=item.get("series_id"),
        busy=bool(item.get("busy", True)),
    )


def _parse_iso(value: str, tz_name: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(tz_name))
    return parsed


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def _zone_name(moment: datetime) -> str:
    zone = moment.tzinfo
    if isinstance(zone, ZoneInfo):
        return zone.key
    return "UTC"


def _parse_ics_events(raw: str) -> list[dict[str, Any]]:
    """Summary: Parse raw iCalendar data into event dictionaries.

    Importance: Extracts the fields needed for pattern learning and free/busy.
    Alternatives: Use an iCalendar library for robust parsing.
    """

    unfolded_lines: list[str] = []
    for line in raw.splitlines():
        if line.startswith(" ") and unfolded_lines:
            unfolded_lines[-1] += line[1:]
        else:
            unfolded_lines.append(line.strip())
    events: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    for line in unfolded_lines:
        if line == "BEGIN:VEVENT":
            current = {}
            continue
        if line == "END:VEVENT" and current is not None:
            events.append(current)
            current = None
            continue
        if current is None or ":" not in line:
            continue
        head, value = line.split(":", 1)
        key, *params = head.split(";")
        options = dict(param.split("=", 1) for param in params if "=" in param)
        if key == "ATTENDEE":
            address = value.replace("MAILTO:", "").replace("mailto:", "").lower()
            current.setdefault("ATTENDEE", []).append((address, options.get("PARTSTAT")))
        elif key == "EXDATE":
            current.setdefault("EXDATE", []).append((value, options.get("TZID")))
        else:
            current[key] = value
            if "TZID" in options:
                current[f"{key};TZID"] = options["TZID"]
    return events


def _parse_ics_datetime(value: str, tz_name: str = "UTC") -> datetime:
    """Summary: Parse a minimal iCalendar datetime string.

    Importance: Normalizes calendar event times to aware datetimes.
    Alternatives: Treat timestamps as raw strings.
    """

    cleaned = value.replace("Z", "")
    if len(cleaned) == 8:
        parsed = datetime.strptime(cleaned, "%Y%m%d")
    else:
        parsed = datetime.strptime(cleaned, "%Y%m%dT%H%M%S")
    if value.endswith("Z"):
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.replace(tzinfo=_zone(tz_name))


def _overridden(parsed: list[dict[str, Any]], master: dict[str, Any]) -> set[datetime]:
    """Summary: Occurrence starts replaced by a RECURRENCE-ID instance of the same UID."""

    uid = master.get("UID")
    tz_name = master.get("DTSTART;TZID", "UTC")
    return {
        _parse_ics_datetime(item["RECURRENCE-ID"], item.get("RECURRENCE-ID;TZID", tz_name))
        for item in parsed
        if item is not master and item.get("UID") == uid and "RECURRENCE-ID" in item
    }


def _expand_recurrence(
    event: HistoricalEvent, item: dict[str, Any], overridden: set[datetime], horizon: datetime
) -> list[HistoricalEvent]:
    """Summary: Materialize the occurrences of a recurring event that start before the horizon.

    Importance: Later occurrences must block time in conflict checks and free/busy.
    Alternatives: Only report the first occurrence of each series.
    """

    excluded = set(overridden)
    for value, tz_name in item.get("EXDATE", []):
        excluded.update(_parse_ics_datetime(part, tz_name or event.timezone) for part in value.split(","))
    duration = event.end - event.start
    occurrences = []
    for start in _rrule_starts(event.start, item["RRULE"], event.timezone):
        if start >= horizon:
            break
        if start in excluded:
            continue
        event_id = event.event_id if start == event.start else f"{event.event_id}-{start:%Y%m%dT%H%M%S}"
        occurrences.append(replace(event, event_id=event_id, start=start, end=start + duration))
    return occurrences


def _rrule_starts(first: datetime, rule: str, tz_name: str) -> Iterator[datetime]:
    """Summary: Yield occurrence starts for DAILY and WEEKLY rules.

    Importance: Covers INTERVAL, COUNT, UNTIL, and BYDAY; other frequencies yield
    only the first occurrence.
    Alternatives: Depend on a full RFC 5545 recurrence engine.
    """

    parts = dict(part.split("=", 1) for part in rule.upper().split(";") if "=" in part)
    frequency = parts.get("FREQ")
    if frequency not in ("DAILY", "WEEKLY"):
        yield first
        return
    interval = max(1, int(parts.get("INTERVAL", "1")))
    remaining = int(parts["COUNT"]) if "COUNT" in parts else None
    until = _parse_ics_datetime(parts["UNTIL"], tz_name) if "UNTIL" in parts else None
    if frequency == "DAILY":
        anchor, step, offsets = first, timedelta(days=interval), [timedelta(0)]
    else:
        weekdays = [first.weekday()]
        if "BYDAY" in parts:
            codes = [code[-2:] for code in parts["BYDAY"].split(",")]
            if any(code not in ICS_WEEKDAYS for code in codes):
                raise ValueError(f"Unsupported BYDAY value in {rule}")
            weekdays = sorted({ICS_WEEKDAYS[code] for code in codes})
        anchor = first - timedelta(days=first.weekday())
        step, offsets = timedelta(weeks=interval), [timedelta(days=day) for day in weekdays]
    period = 0
    while True:
        for offset in offsets:
            start = anchor + step * period + offset
            if start < first:
                continue
            if until is not None and start > until:
                return
            if remaining is not None:
                if remaining <= 0:
                    return
                remaining -= 1
            yield start
        period += 1
