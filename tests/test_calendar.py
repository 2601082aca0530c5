"""Summary: Tests for calendar providers.

Importance: Validates fixture and iCalendar parsing, free/busy, and in-memory writes.
Alternatives: Test calendar integrations manually.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from calpilot.calendar import CalendarError, IcsCalendarProvider, MockCalendarProvider, event_from_dict
from calpilot.models import DECLINED, NEEDS_ACTION

WEEK_START = datetime(2026, 3, 9, tzinfo=timezone.utc)
WEEK_END = datetime(2026, 3, 16, tzinfo=timezone.utc)


def _write_fixture(tmp_path: Path) -> Path:
    path = tmp_path / "mock_events.json"
    path.write_text(
        json.dumps(
            {
                "events": [
                    {
                        "id": "evt-1",
                        "title": "Planning",
                        "start": "2026-03-10T09:00:00",
                        "end": "2026-03-10T10:00:00",
                        "timezone": "America/New_York",
                        "participants": ["dana@example.com"],
                    },
                    {
                        "id": "evt-2",
                        "title": "Vendor sync",
                        "start": "2026-03-11T15:00:00+00:00",
                        "end": "2026-03-11T15:30:00+00:00",
                        "status": "declined",
                        "participants": ["dana@example.com"],
                    },
                    {
                        "id": "evt-3",
                        "title": "Old review",
                        "start": "2026-02-02T10:00:00Z",
                        "end": "2026-02-02T11:00:00Z",
                    },
                ],
                "free_busy": {
                    "lee@example.com": [
                        {"start": "2026-03-12T10:00:00+00:00", "end": "2026-03-12T12:00:00+00:00"}
                    ]
                },
            }
        ),
        encoding="utf-8",
    )
    return path


def test_mock_calendar_lists_events_in_range(tmp_path: Path) -> None:
    """Summary: Verify the fixture provider filters events by range.

    Importance: Pattern learning and conflict checks rely on range queries.
    Alternatives: Return every fixture event and filter in the caller.
    """

    provider = MockCalendarProvider(_write_fixture(tmp_path))
    events = provider.list_events("local", WEEK_START, WEEK_END)
    assert [event.event_id for event in events] == ["evt-1", "evt-2"]
    planning = events[0]
    assert planning.start == datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)
    assert planning.timezone == "America/New_York"
    assert planning.attendee_count == 2
    assert events[1].status == DECLINED


def test_mock_free_busy_uses_fixture_then_events(tmp_path: Path) -> None:
    """Summary: Verify free/busy prefers explicit data and falls back to shared events.

    Importance: Availability scoring depends on accurate busy intervals.
    Alternatives: Treat participants without data as always free.
    """

    provider = MockCalendarProvider(_write_fixture(tmp_path))
    lee = provider.get_free_busy("local", "lee@example.com", WEEK_START, WEEK_END)
    assert [(item.start.hour, item.end.hour) for item in lee] == [(10, 12)]
    dana = provider.get_free_busy("local", "dana@example.com", WEEK_START, WEEK_END)
    assert len(dana) == 1
    assert dana[0].start == datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)
    assert provider.get_free_busy("local", "nobody@example.com", WEEK_START, WEEK_END) == []


def test_mock_calendar_writes_stay_in_memory(tmp_path: Path) -> None:
    fixture = _write_fixture(tmp_path)
    before = fixture.read_text(encoding="utf-8")
    provider = MockCalendarProvider(fixture)
    created = provider.create_event(
        "local",
        "Design review",
        datetime(2026, 3, 13, 14, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 13, 15, 0, tzinfo=timezone.utc),
        ("lee@example.com",),
    )
    moved = provider.update_event(
        "local",
        created.event_id,
        datetime(2026, 3, 13, 15, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 13, 16, 0, tzinfo=timezone.utc),
    )
    assert moved.title == "Design review"
    assert moved.start.hour == 15
    provider.delete_event("local", "evt-2")
    ids = [event.event_id for event in provider.list_events("local", WEEK_START, WEEK_END)]
    assert ids == ["evt-1", created.event_id]
    assert fixture.read_text(encoding="utf-8") == before
    with pytest.raises(CalendarError):
        provider.delete_event("local", "evt-2")


def test_mock_calendar_missing_fixture_raises(tmp_path: Path) -> None:
    provider = MockCalendarProvider(tmp_path / "missing.json")
    with pytest.raises(CalendarError):
        provider.list_events("local", WEEK_START, WEEK_END)


def test_mock_calendar_malformed_fixture_raises(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"events": [{"title": "no id"}]}), encoding="utf-8")
    with pytest.raises(CalendarError):
        MockCalendarProvider(path).list_events("local", WEEK_START, WEEK_END)


def test_event_from_dict_defaults() -> None:
    event = event_from_dict({"id": 7, "start": "2026-03-10T10:00:00", "end": "2026-03-10T10:30:00"})
    assert event.event_id == "7"
    assert event.title == "Untitled"
    assert event.duration_minutes == 30
    assert event.busy is True
    assert event.start.tzinfo is not None


def test_ics_provider_parses_events(tmp_path: Path) -> None:
    """Summary: Verify the iCalendar provider reads status, timezone, and recurrence.

    Importance: Exported calendars are a local-first source of history.
    Alternatives: Require a live calendar API for pattern learning.
    """

    ics_path = tmp_path / "calendar.ics"
    ics_path.write_text(
        "\n".join(
            [
                "BEGIN:VCALENDAR",
                "BEGIN:VEVENT",
                "UID:standup",
                "SUMMARY:Daily Standup",
                "DTSTART;TZID=Europe/Berlin:20260310T093000",
                "DTEND;TZID=Europe/Berlin:20260310T094500",
                "RRULE:FREQ=WEEKLY;BYDAY=TU",
                "ATTENDEE;PARTSTAT=ACCEPTED:mailto:me@example.com",
                "ATTENDEE;PARTSTAT=ACCEPTED:mailto:dana@example.com",
                "END:VEVENT",
                "BEGIN:VEVENT",
                "UID:vendor",
                "SUMMARY:Vendor pitch",
                "DTSTART:20260311T150000Z",
                "DTEND:20260311T160000Z",
                "ATTENDEE;PARTSTAT=NEEDS-ACTION:mailto:ME@example.com",
                "TRANSP:TRANSPARENT",
                "END:VEVENT",
                "BEGIN:VEVENT",
                "UID:cancelled",
                "SUMMARY:Cancelled sync",
                "DTSTART:20260312T100000Z",
                "DTEND:20260312T103000Z",
                "STATUS:CANCELLED",
                "END:VEVENT",
                "END:VCALENDAR",
            ]
        ),
        encoding="utf-8",
    )
    provider = IcsCalendarProvider(ics_path, owner="me@example.com")
    events = provider.list_events("local", WEEK_START, WEEK_END)
    assert [event.event_id for event in events] == ["standup", "vendor", "cancelled"]
    standup, vendor, cancelled = events
    assert standup.timezone == "Europe/Berlin"
    assert standup.start == datetime(2026, 3, 10, 8, 30, tzinfo=timezone.utc)
    assert standup.series_id == "standup"
    assert standup.participants == ("me@example.com", "dana@example.com")
    assert vendor.status == NEEDS_ACTION
    assert vendor.busy is False
    assert cancelled.status == DECLINED

    busy = provider.get_free_busy("local", "me@example.com", WEEK_START, WEEK_END)
    assert [interval.start for interval in busy] == [standup.start]
    with pytest.raises(CalendarError):
        provider.create_event("local", "New", standup.start, standup.end)


def test_ics_recurrence_is_expanded(tmp_path: Path) -> None:
    """Summary: Verify DAILY and WEEKLY rules produce every occurrence in range.

    Importance: Later occurrences of a series must block time like any other event.
    Alternatives: Report only the first occurrence of each series.
    """

    ics_path = tmp_path / "recurring.ics"
    ics_path.write_text(
        "\n".join(
            [
                "BEGIN:VCALENDAR",
                "BEGIN:VEVENT",
                "UID:standup",
                "SUMMARY:Standup",
                "DTSTART;TZID=Europe/Berlin:20260323T093000",
                "DTEND;TZID=Europe/Berlin:20260323T094500",
                "RRULE:FREQ=WEEKLY;BYDAY=MO,WE;COUNT=5",
                "EXDATE;TZID=Europe/Berlin:20260325T093000",
                "END:VEVENT",
                "BEGIN:VEVENT",
                "UID:standup",
                "SUMMARY:Standup (moved)",
                "RECURRENCE-ID;TZID=Europe/Berlin:20260401T093000",
                "DTSTART;TZID=Europe/Berlin:20260401T110000",
                "DTEND;TZID=Europe/Berlin:20260401T111500",
                "END:VEVENT",
                "BEGIN:VEVENT",
                "UID:checkin",
                "SUMMARY:Check-in",
                "DTSTART:20260316T160000Z",
                "DTEND:20260316T161500Z",
                "RRULE:FREQ=DAILY;INTERVAL=3;UNTIL=20260325T000000Z",
                "END:VEVENT",
                "END:VCALENDAR",
            ]
        ),
        encoding="utf-8",
    )
    provider = IcsCalendarProvider(ics_path)
    events = provider.list_events(
        "local", datetime(2026, 3, 16, tzinfo=timezone.utc), datetime(2026, 4, 13, tzinfo=timezone.utc)
    )
    standups = [event for event in events if event.title.startswith("Standup")]
    assert [event.start for event in standups] == [
        datetime(2026, 3, 23, 8, 30, tzinfo=timezone.utc),
        datetime(2026, 3, 30, 7, 30, tzinfo=timezone.utc),
        datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc),
        datetime(2026, 4, 6, 7, 30, tzinfo=timezone.utc),
    ]
    assert {event.series_id for event in standups} == {"standup"}
    assert len({event.event_id for event in events}) == len(events)
    assert all(event.duration_minutes == 15 for event in standups)
    checkins = [event.start.day for event in events if event.title == "Check-in"]
    assert checkins == [16, 19, 22]
