"""Persistence for processed provider events and the revenue ledger."""
from __future__ import annotations

from typing import Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection

from ...app_context import dict_cursor
from .models import ReconciliationOutcome, ReconciliationResult, RevenueLedgerEntry


def _row_to_result(row: dict) -> ReconciliationResult:
    return ReconciliationResult(
        event_id=row["event_id"],
        event_type=row["event_type"],
        outcome=ReconciliationOutcome(row["outcome"]),
        account_id=str(row["account_id"]) if row.get("account_id") else None,
        ledger_entry_recorded=bool(row.get("ledger_entry_recorded")),
        processed_at=row["processed_at"],
    )


def _row_to_entry(row: dict) -> RevenueLedgerEntry:
    return RevenueLedgerEntry(
        entry_id=str(row["entry_id"]),
        account_id=str(row["account_id"]),
        event_id=row["event_id"],
        amount_cents=int(row["amount_cents"]),
        currency=row["currency"],
        description=row["description"],
        created_at=row["created_at"],
    )


class PostgresEventStore:
    """Idempotency store keyed on the provider event id."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def get_outcome(self, event_id: str) -> Optional[ReconciliationResult]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                "SELECT * FROM processed_provider_events WHERE event_id = %s LIMIT 1",
                (event_id,),
            )
            row = cursor.fetchone()
            return _row_to_result(row) if row else None

    def record_outcome(self, result: ReconciliationResult, *, payload: dict) -> ReconciliationResult:
        # First writer wins; a concurrent duplicate reads back the stored outcome.
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                INSERT INTO processed_provider_events (
                    event_id,
                    event_type,
                    outcome,
                    account_id,
                    ledger_entry_recorded,
                    payload,
                    processed_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (event_id) DO NOTHING
                RETURNING *
                """,
                (
                    result.event_id,
                    result.event_type,
                    result.outcome.value,
                    result.account_id,
                    result.ledger_entry_recorded,
                    psycopg2.extras.Json(payload),
                    result.processed_at,
                ),
            )
            row = cursor.fetchone()
            if row:
                return _row_to_result(row)
            cursor.execute(
                "SELECT * FROM processed_provider_events WHERE event_id = %s LIMIT 1",
                (result.event_id,),
            )
            existing = cursor.fetchone()
            if not existing:
                raise RuntimeError("Failed to persist reconciliation outcome")
            return _row_to_result(existing)


class PostgresRevenueLedger:
    """Append-only revenue ledger; the event id column is unique."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def append(self, entry: RevenueLedgerEntry) -> bool:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                INSERT INTO revenue_ledger (
                    entry_id,
                    account_id,
                    event_id,
                    amount_cents,
                    currency,
                    description
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (event_id) DO NOTHING
                """,
                (
                    entry.entry_id,
                    entry.account_id,
                    entry.event_id,
                    entry.amount_cents,
                    entry.currency,
                    entry.description,
                ),
            )
            return cursor.rowcount > 0

    def list_entries(self, account_id: str, *, limit: int = 50) -> list[RevenueLedgerEntry]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM revenue_ledger
                WHERE account_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (account_id, limit),
            )
            return [_row_to_entry(row) for row in cursor.fetchall() or []]


__all__ = ["PostgresEventStore", "PostgresRevenueLedger"]
