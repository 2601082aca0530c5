"""Summary: SQLite storage for the usage ledger and AI attempt audit.

Importance: Persists budget state across short-lived CLI and API invocations.
Alternatives: Keep usage in a JSON file guarded by a file lock.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator

from calpilot.models import AiAttempt, UsageRecord


class SqliteStore:
    """Summary: SQLite-backed storage for CalPilot.

    Importance: Gives the router an atomic read-modify-write ledger with no extra services.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the ledger is ready before the first routed call.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_ledger (
                    provider TEXT NOT NULL,
                    month TEXT NOT NULL,
                    request_count INTEGER NOT NULL DEFAULT 0,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    failure_count INTEGER NOT NULL DEFAULT 0,
                    token_count INTEGER NOT NULL DEFAULT 0,
                    cost REAL NOT NULL DEFAULT 0,
                    PRIMARY KEY (provider, month)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_attempts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    capability TEXT NOT NULL,
                    status TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    tokens INTEGER NOT NULL,
                    cost REAL NOT NULL,
                    error TEXT,
                    timestamp TEXT NOT NULL
                )
                """
            )
            connection.commit()

    def record_attempt(self, attempt: AiAttempt) -> None:
        """Summary: Add one provider attempt to the ledger and the audit log.

        Importance: The increment is a single UPSERT inside BEGIN IMMEDIATE, so
        concurrent processes never lose updates.
        Alternatives: Read the row, add in Python, and write it back.
        """

        success = 1 if attempt.status == "success" else 0
        with self._connection() as connection:
            connection.execute("BEGIN IMMEDIATE")
            try:
                connection.execute(
                    """
                    INSERT INTO usage_ledger (
                        provider, month, request_count, success_count, failure_count, token_count, cost
                    )
                    VALUES (?, ?, 1, ?, ?, ?, ?)
                    ON CONFLICT(provider, month) DO UPDATE SET
                        request_count = request_count + 1,
                        success_count = success_count + excluded.success_count,
                        failure_count = failure_count + excluded.failure_count,
                        token_count = token_count + excluded.token_count,
                        cost = cost + excluded.cost
                    """,
                    (
                        attempt.provider,
                        month_key(attempt.timestamp),
                        success,
                        1 - success,
                        attempt.tokens,
                        attempt.cost,
                    ),
                )
                connection.execute(
                    """
                    INSERT INTO ai_attempts (
                        provider, model, capability, status, latency_ms, tokens, cost, error, timestamp
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        attempt.provider,
                        attempt.model,
                        attempt.capability,
                        attempt.status,
                        attempt.latency_ms,
                        attempt.tokens,
                        attempt.cost,
                        attempt.error,
                        attempt.timestamp.isoformat(),
                    ),
                )
                connection.commit()
            except sqlite3.Error:
                connection.rollback()
                raise

    def get_usage(self, provider: str, month: str) -> UsageRecord:
        """Summary: Fetch the ledger row for a provider and month.

        Importance: Budget pre-flight checks read this before every cloud call.
        Alternatives: Cache usage in memory for the process lifetime.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT provider, month, request_count, success_count, failure_count, token_count, cost
                FROM usage_ledger
                WHERE provider = ? AND month = ?
                """,
                (provider, month),
            )
            row = cursor.fetchone()
        if row:
            return UsageRecord(*row)
        return UsageRecord(provider, month, 0, 0, 0, 0, 0.0)

    def list_usage(self, month: str | None = None) -> list[UsageRecord]:
        with self._connection() as connection:
            cursor = connection.cursor()
            if month:
                cursor.execute(
                    """
                    SELECT provider, month, request_count, success_count, failure_count, token_count, cost
                    FROM usage_ledger
                    WHERE month = ?
                    ORDER BY provider
                    """,
                    (month,),
                )
            else:
                cursor.execute(
                    """
                    SELECT provider, month, request_count, success_count, failure_count, token_count, cost
                    FROM usage_ledger
                    ORDER BY month DESC, provider
                    """
                )
            rows = cursor.fetchall()
        return [UsageRecord(*row) for row in rows]

    def clear_usage(self) -> int:
        """Summary: Reset every ledger aggregate.

        Importance: The only operation allowed to lower ledger counters.
        Alternatives: Delete the database file.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("DELETE FROM usage_ledger")
            removed = cursor.rowcount
            connection.commit()
        return int(removed)

    def list_attempts(self, limit: int, provider: str | None = None) -> list[AiAttempt]:
        """Summary: List recent provider attempts, newest first.

        Importance: Explains fallback hops and failures after the fact.
        Alternatives: Grep application logs.
        """

        query = """
            SELECT provider, model, capability, status, latency_ms, tokens, cost, timestamp, error
            FROM ai_attempts
        """
        params: list[object] = []
        if provider:
            query += " WHERE provider = ?"
            params.append(provider)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [
            AiAttempt(
                provider=row[0],
                model=row[1],
                capability=row[2],
                status=row[3],
                latency_ms=row[4],
                tokens=row[5],
                cost=row[6],
                timestamp=datetime.fromisoformat(row[7]),
                error=row[8],
            )
            for row in rows
        ]

    def prune_attempts(self, retention_days: int, now: datetime) -> int:
        """Summary: Delete audit rows older than the retention window.

        Importance: Honors the configured data retention for prompt metadata.
        Alternatives: Rotate the whole database periodically.
        """

        cutoff = (now - timedelta(days=retention_days)).isoformat()
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("DELETE FROM ai_attempts WHERE timestamp < ?", (cutoff,))
            removed = cursor.rowcount
            connection.commit()
        return int(removed)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        try:
            yield connection
        finally:
            connection.close()


def month_key(moment: datetime) -> str:
    """Summary: Ledger month bucket for a timestamp."""

    return moment.strftime("%Y-%m")


def default_store_path() -> str:
    return "calpilot.db"
