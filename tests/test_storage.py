"""Summary: Tests for SQLite usage ledger and audit storage.

Importance: Budget enforcement depends on the ledger staying accurate across processes.
Alternatives: Only test the router and trust storage indirectly.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from calpilot.models import AiAttempt
from calpilot.storage.sqlite_store import SqliteStore, month_key

NOW = datetime(2026, 3, 9, 8, 0, tzinfo=timezone.utc)


def _attempt(provider: str, status: str = "success", cost: float = 0.0, tokens: int = 10, when: datetime = NOW) -> AiAttempt:
    return AiAttempt(
        provider=provider,
        model=f"{provider}-model",
        capability="schedule-suggestion",
        status=status,
        latency_ms=12,
        tokens=tokens,
        cost=cost,
        timestamp=when,
        error=None if status == "success" else "timed out",
    )


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "nested" / "calpilot.db"))
    store.initialize()
    return store


def test_record_attempt_accumulates_ledger(tmp_path: Path) -> None:
    """Summary: Verify attempts add up per provider and month.

    Importance: Requests, failures, tokens, and cost feed the budget pre-flight check.
    Alternatives: Recompute totals from the audit log on every read.
    """

    store = _store(tmp_path)
    store.record_attempt(_attempt("claude", cost=0.25, tokens=100))
    store.record_attempt(_attempt("claude", status="failure", cost=0.0, tokens=0))
    store.record_attempt(_attempt("claude", cost=0.5, tokens=200))

    usage = store.get_usage("claude", "2026-03")
    assert usage.request_count == 3
    assert usage.success_count == 2
    assert usage.failure_count == 1
    assert usage.token_count == 300
    assert abs(usage.cost - 0.75) < 1e-9


def test_get_usage_missing_row_is_zero(tmp_path: Path) -> None:
    store = _store(tmp_path)
    usage = store.get_usage("openai", "2026-03")
    assert usage.request_count == 0
    assert usage.cost == 0.0


def test_ledger_is_bucketed_by_month(tmp_path: Path) -> None:
    """Summary: Verify attempts in different months land in separate rows.

    Importance: The monthly budget resets when the calendar month changes.
    Alternatives: Keep a single rolling total.
    """

    store = _store(tmp_path)
    store.record_attempt(_attempt("claude", cost=1.0, when=datetime(2026, 2, 27, tzinfo=timezone.utc)))
    store.record_attempt(_attempt("claude", cost=2.0))
    store.record_attempt(_attempt("openai", cost=3.0))

    march = store.list_usage("2026-03")
    assert [record.provider for record in march] == ["claude", "openai"]
    assert store.get_usage("claude", "2026-02").cost == 1.0
    assert len(store.list_usage()) == 3


def test_clear_usage_removes_all_rows(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record_attempt(_attempt("claude", cost=1.0))
    store.record_attempt(_attempt("ollama"))

    assert store.clear_usage() == 2
    assert store.list_usage() == []


def test_list_attempts_newest_first_with_filter(tmp_path: Path) -> None:
    """Summary: Verify the audit log lists recent attempts first.

    Importance: Operators read the latest fallback hops when debugging.
    Alternatives: Sort audit rows client-side.
    """

    store = _store(tmp_path)
    store.record_attempt(_attempt("ollama", status="failure"))
    store.record_attempt(_attempt("claude", cost=0.1))

    attempts = store.list_attempts(10)
    assert [attempt.provider for attempt in attempts] == ["claude", "ollama"]
    assert attempts[1].error == "timed out"
    assert attempts[0].timestamp == NOW
    only_ollama = store.list_attempts(10, provider="ollama")
    assert [attempt.status for attempt in only_ollama] == ["failure"]


def test_prune_attempts_respects_retention(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record_attempt(_attempt("claude", when=NOW - timedelta(days=120)))
    store.record_attempt(_attempt("claude", when=NOW - timedelta(days=5)))

    assert store.prune_attempts(90, NOW) == 1
    assert len(store.list_attempts(10)) == 1
    assert store.get_usage("claude", month_key(NOW - timedelta(days=5))).request_count >= 1


def test_month_key_format() -> None:
    assert month_key(NOW) == "2026-03"


def test_concurrent_writers_do_not_lose_increments(tmp_path: Path) -> None:
    """Summary: Verify parallel writers on one database file keep every increment.

    Importance: Several CLI and API processes share the ledger that enforces the budget.
    Alternatives: Serialize writers with an in-process lock.
    """

    db_path = str(tmp_path / "shared.db")
    SqliteStore(db_path).initialize()
    writers, per_writer = 8, 25
    barrier = threading.Barrier(writers)
    errors: list[Exception] = []

    def _write() -> None:
        store = SqliteStore(db_path)
        barrier.wait()
        try:
            for _ in range(per_writer):
                store.record_attempt(_attempt("claude", cost=0.125, tokens=3))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_write) for _ in range(writers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    usage = SqliteStore(db_path).get_usage("claude", "2026-03")
    assert usage.request_count == writers * per_writer
    assert usage.token_count == writers * per_writer * 3
    assert usage.cost == writers * per_writer * 0.125
    assert len(SqliteStore(db_path).list_attempts(limit=500)) == writers * per_writer
