"""Summary: Command-line interface for CalPilot.

Importance: Provides a local-first entry point for scheduling workflows.
Alternatives: Build a web UI or desktop client first.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from calpilot.app import AppServices, build_services
from calpilot.config import AppConfig, set_config_value
from calpilot.errors import SchedulingError
from calpilot.models import ConflictDetail, LearnPatternsRequest, SchedulingRequest, SchedulingResponse
from calpilot.patterns import LlmRecommender, export_patterns, load_snapshot, save_snapshot
from calpilot.scheduler import ADAPTIVE_TRIGGERS


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="CalPilot CLI")
    parser.add_argument("--patterns", type=str, default=None, help="Pattern snapshot to score with")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("learn-patterns", "Learn scheduling patterns from history"),
        ("export-patterns", "Export learned patterns as JSON"),
    ):
        learn = subparsers.add_parser(name, help=help_text)
        learn.add_argument("--lookback-days", type=int, default=30)
        learn.add_argument("--min-confidence", type=float, default=0.0)
        learn.add_argument("--include-recurring", action="store_true")
        learn.add_argument("--llm-recommendations", action="store_true")
        learn.add_argument("--output", type=str, default=None)

    check = subparsers.add_parser("check-conflicts", help="Check a candidate time for conflicts")
    check.add_argument("start", type=str)
    check.add_argument("--duration", type=_positive_minutes, default=30)
    check.add_argument("--title", type=str, default="")
    check.add_argument("--ignore-policy", action="store_true")

    schedule = subparsers.add_parser("schedule", help="Schedule from a query or a structured time")
    schedule.add_argument("query", type=str, nargs="?", default=None)
    schedule.add_argument("--start", type=str, default=None)
    schedule.add_argument("--duration", type=_positive_minutes, default=30)
    schedule.add_argument("--title", type=str, default="")
    schedule.add_argument("--participant", action="append", default=[])
    schedule.add_argument("--ignore-policy", action="store_true")
    schedule.add_argument("--email-context", type=str, default=None)
    schedule.add_argument("--book", action="store_true")

    find_time = subparsers.add_parser("find-time", help="Rank the best meeting times")
    find_time.add_argument("--duration", type=_positive_minutes, default=30)
    find_time.add_argument("--participant", action="append", default=[])
    find_time.add_argument("--near", type=str, default=None)
    find_time.add_argument("--days", type=int, default=None)

    reschedule = subparsers.add_parser("reschedule", help="Propose new times for an event")
    reschedule.add_argument("event_id", type=str)
    reschedule.add_argument("--near", type=str, default=None)
    reschedule.add_argument("--apply", action="store_true")

    focus = subparsers.add_parser("focus-time", help="List focus-time blocks for a day")
    focus.add_argument("--date", type=str, default=None)
    focus.add_argument("--min-minutes", type=int, default=None)

    adapt = subparsers.add_parser("adapt", help="Build an adaptive scheduling plan")
    adapt.add_argument("trigger", choices=ADAPTIVE_TRIGGERS)
    adapt.add_argument("--deadline", type=str, default=None)

    usage = subparsers.add_parser("usage", help="Show AI usage and budget")
    usage.add_argument("--month", type=str, default=None)
    usage.add_argument("--attempts", type=int, default=0)

    subparsers.add_parser("clear-usage", help="Reset the usage ledger")

    config_set = subparsers.add_parser("config-set", help="Set a configuration value")
    config_set.add_argument("key", type=str)
    config_set.add_argument("value", type=str)
    config_set.add_argument("--path", type=str, default=str(Path("config") / "defaults.json"))

    return parser


def _positive_minutes(value: str) -> int:
    minutes = int(value)
    if minutes <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive, got {value}")
    return minutes


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Domain errors print a one-line message before exiting non-zero.
    Alternatives: Invoke services via the HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "config-set":
        set_config_value(Path(args.path), args.key, args.value)
        print(f"Set {args.key} = {args.value} in {args.path}.")
        return

    config = AppConfig.from_env()
    patterns = load_snapshot(Path(args.patterns)) if args.patterns else None
    services = build_services(config, patterns=patterns)
    try:
        _dispatch(args, services)
    except SchedulingError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


def _dispatch(args: argparse.Namespace, services: AppServices) -> None:
    config = services.config
    zone = ZoneInfo(config.timezone)

    if args.command in ("learn-patterns", "export-patterns"):
        learner = services.learner
        if args.llm_recommendations:
            learner = replace(learner, recommender=LlmRecommender(services.router))
        summary = learner.learn_patterns(
            LearnPatternsRequest(
                grant_id=config.grant_id,
                lookback_days=args.lookback_days,
                min_confidence=args.min_confidence,
                include_recurring=args.include_recurring,
            )
        )
        if args.command == "export-patterns":
            if args.output:
                save_snapshot(summary, Path(args.output))
                print(f"Exported patterns to {args.output}.")
            else:
                print(export_patterns(summary))
            return
        print(f"Analyzed {summary.total_events_analyzed} events over {summary.analysis_period.days} days.")
        for pattern in summary.acceptance_patterns:
            print(
                f"{pattern.time_slot}: {pattern.accept_rate:.0%} accepted "
                f"({pattern.event_count} events, confidence {pattern.confidence:.2f})"
            )
        for pattern in summary.duration_patterns:
            print(f"{pattern.meeting_type}: {pattern.scheduled_duration} min ({pattern.event_count} events)")
        for pattern in summary.timezone_patterns:
            marker = " (primary)" if pattern.is_primary else ""
            print(f"{pattern.timezone}{marker}: {pattern.percentage:.0%}")
        for insight in summary.productivity_insights:
            print(f"[{insight.score}] {insight.description}")
        for index, recommendation in enumerate(summary.recommendations, start=1):
            print(f"{index}. {recommendation}")
        if args.output:
            save_snapshot(summary, Path(args.output))
        return

    if args.command == "check-conflicts":
        request = SchedulingRequest(
            title=args.title,
            start=_parse_when(args.start, zone),
            duration_minutes=args.duration,
            ignore_policy=args.ignore_policy,
        )
        report = services.engine.check_conflicts(request)
        print("Conflict" if report.has_conflict else "Clear")
        for detail in report.details:
            _print_detail(detail, zone)
        return

    if args.command == "schedule":
        request = SchedulingRequest(
            query=args.query,
            title=args.title,
            start=_parse_when(args.start, zone) if args.start else None,
            duration_minutes=args.duration,
            participants=tuple(args.participant),
            ignore_policy=args.ignore_policy,
            email_context=args.email_context,
        )
        response = services.engine.schedule(request)
        _print_response(response, zone)
        if args.book and not response.report.has_conflict:
            event = services.engine.book(response.candidate)
            print(f"Booked event {event.event_id}.")
        return

    if args.command == "find-time":
        request = SchedulingRequest(
            start=_parse_when(args.near, zone) if args.near else None,
            duration_minutes=args.duration,
            participants=tuple(args.participant),
        )
        for suggestion in services.engine.find_best_times(request, days=args.days):
            print(f"{suggestion.rank}. {suggestion.start.astimezone(zone):%Y-%m-%d %H:%M} "
                  f"score {suggestion.score:.2f}: {suggestion.reason}")
        return

    if args.command == "reschedule":
        response = services.engine.reschedule(
            args.event_id,
            requested=_parse_when(args.near, zone) if args.near else None,
            apply=args.apply,
        )
        _print_response(response, zone)
        if args.apply and response.suggestions:
            print(f"Moved {args.event_id} to {response.suggestions[0].start.astimezone(zone):%Y-%m-%d %H:%M}.")
        return

    if args.command == "focus-time":
        day = date.fromisoformat(args.date) if args.date else None
        blocks = services.engine.find_focus_blocks(day, min_minutes=args.min_minutes)
        if not blocks:
            print("No focus blocks available.")
        for block in blocks:
            print(f"{block.start.astimezone(zone):%H:%M}-{block.end.astimezone(zone):%H:%M} "
                  f"({block.duration_minutes} min)")
        return

    if args.command == "adapt":
        deadline = _parse_when(args.deadline, zone) if args.deadline else None
        plan = services.engine.adapt(args.trigger, deadline=deadline)
        print(plan.reason)
        for change in plan.changes:
            print(f"- {change.title} ({change.event_id}) at {change.original_start.astimezone(zone):%Y-%m-%d %H:%M}")
            for suggestion in change.suggestions:
                print(f"    {suggestion.rank}. {suggestion.start.astimezone(zone):%Y-%m-%d %H:%M}: {suggestion.reason}")
        return

    if args.command == "usage":
        records = services.usage.usage_report(args.month)
        if not records:
            print("No usage recorded.")
        for record in records:
            print(
                f"{record.month} {record.provider}: {record.request_count} requests "
                f"({record.success_count} ok, {record.failure_count} failed), "
                f"{record.token_count} tokens, ${record.cost:.4f}"
            )
        status = services.usage.budget_status(config.ai.default_provider)
        if not status.local:
            print(f"Budget: ${status.spent:.2f} of ${status.limit:.2f} used by {status.provider}.")
        for attempt in services.ai_audit.list_attempts(args.attempts) if args.attempts else []:
            print(f"{attempt.timestamp.isoformat()} {attempt.provider} {attempt.capability} "
                  f"{attempt.status} {attempt.error or ''}".rstrip())
        return

    if args.command == "clear-usage":
        removed = services.usage.clear_usage()
        print(f"Cleared {removed} usage rows.")
        return


def _parse_when(value: str, zone: ZoneInfo) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


def _print_detail(detail: ConflictDetail, zone: ZoneInfo) -> None:
    marker = "" if detail.blocking else " (advisory)"
    line = f"- {detail.kind}{marker}: {detail.description}"
    if detail.suggested_alternative is not None:
        line += f"; next free slot {detail.suggested_alternative.astimezone(zone):%Y-%m-%d %H:%M}"
    print(line)


def _print_response(response: SchedulingResponse, zone: ZoneInfo) -> None:
    candidate = response.candidate
    if candidate.start is not None:
        print(f"{candidate.title or 'Meeting'} at {candidate.start.astimezone(zone):%Y-%m-%d %H:%M} "
              f"for {candidate.duration_minutes} min")
    print("Conflict" if response.report.has_conflict else "Clear")
    for detail in response.report.details:
        _print_detail(detail, zone)
    for suggestion in response.suggestions:
        print(f"{suggestion.rank}. {suggestion.start.astimezone(zone):%Y-%m-%d %H:%M}: {suggestion.reason}")
    if response.analysis:
        print(f"Analysis ({response.provider_used}): {response.analysis}")
    for warning in response.warnings:
        print(f"Warning: {warning}")


if __name__ == "__main__":
    run_cli()
