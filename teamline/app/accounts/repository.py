"""Persistence for accounts, users, and manager alerts."""
from __future__ import annotations

from typing import Optional, Protocol, Sequence

from psycopg2.extensions import connection as PgConnection

from ...app_context import dict_cursor
from .models import (
    Account,
    AlertType,
    CommunicationStatus,
    ManagerAlert,
    PlanKey,
    PlanState,
    SubscriptionStatus,
    User,
)


class AccountRepository(Protocol):
    """Subscription ledger operations guarded by a per-account version."""

    def get_account(self, account_id: str) -> Optional[Account]:
        ...

    def get_account_by_customer(self, customer_ref: str) -> Optional[Account]:
        ...

    def insert_account(self, account: Account) -> Optional[Account]:
        """Insert a new account; ``None`` when its customer reference is already linked."""

    def compare_and_set(self, account: Account, *, expected_version: int) -> Optional[Account]:
        """Persist ``account`` only if the stored version still equals ``expected_version``.

        Returns the stored account with its version advanced, or ``None`` when
        a concurrent writer got there first.
        """


class UserRepository(Protocol):
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def get_communication_status(self, user_id: str) -> Optional[CommunicationStatus]:
        ...

    def set_communication_status(self, user_id: str, status: CommunicationStatus) -> Optional[User]:
        ...

    def link_account(self, user_id: str, account_id: str) -> Optional[User]:
        ...


class AlertRepository(Protocol):
    def create_alert(self, alert: ManagerAlert) -> ManagerAlert:
        ...

    def list_alerts(self, account_id: str, *, unread_only: bool = False) -> Sequence[ManagerAlert]:
        ...


def _row_to_account(row: dict) -> Account:
    return Account(
        account_id=str(row["account_id"]),
        name=row.get("name") or "",
        customer_ref=row.get("customer_ref"),
        subscription_ref=row.get("subscription_ref"),
        plan=PlanKey(row["plan"]) if row.get("plan") else None,
        plan_state=PlanState(row.get("plan_state") or PlanState.CONFIRMED.value),
        status=SubscriptionStatus(row.get("status") or SubscriptionStatus.NONE.value),
        current_period_end=row.get("current_period_end"),
        version=int(row["version"]),
        last_event_at=row.get("last_event_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_user(row: dict) -> User:
    return User(
        user_id=str(row["user_id"]),
        account_id=str(row["account_id"]) if row.get("account_id") else None,
        email=row.get("email"),
        first_name=row.get("first_name"),
        last_name=row.get("last_name"),
        communication_status=CommunicationStatus(row["communication_status"]),
    )


def _row_to_alert(row: dict) -> ManagerAlert:
    return ManagerAlert(
        alert_id=str(row["alert_id"]),
        account_id=str(row["account_id"]),
        alert_type=AlertType(row["alert_type"]),
        message=row["message"],
        is_read=bool(row["is_read"]),
        created_at=row["created_at"],
    )


class PostgresAccountRepository:
    """Account ledger persisted in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def get_account(self, account_id: str) -> Optional[Account]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute("SELECT * FROM accounts WHERE account_id = %s LIMIT 1", (account_id,))
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def get_account_by_customer(self, customer_ref: str) -> Optional[Account]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute("SELECT * FROM accounts WHERE customer_ref = %s LIMIT 1", (customer_ref,))
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def insert_account(self, account: Account) -> Optional[Account]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                INSERT INTO accounts (
                    account_id,
                    name,
                    customer_ref,
                    subscription_ref,
                    plan,
                    plan_state,
                    status,
                    current_period_end,
                    version,
                    last_event_at
                )
                VALUES (%(account_id)s, %(name)s, %(customer_ref)s, %(subscription_ref)s,
                        %(plan)s, %(plan_state)s, %(status)s, %(current_period_end)s,
                        %(version)s, %(last_event_at)s)
                ON CONFLICT DO NOTHING
                RETURNING *
                """,
                _account_params(account),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def compare_and_set(self, account: Account, *, expected_version: int) -> Optional[Account]:
        # customer_ref is only ever filled in, never replaced.
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET name = %(name)s,
                    customer_ref = COALESCE(customer_ref, %(customer_ref)s),
                    subscription_ref = %(subscription_ref)s,
                    plan = %(plan)s,
                    plan_state = %(plan_state)s,
                    status = %(status)s,
                    current_period_end = %(current_period_end)s,
                    last_event_at = %(last_event_at)s,
                    version = version + 1,
                    updated_at = NOW()
                WHERE account_id = %(account_id)s AND version = %(expected_version)s
                RETURNING *
                """,
                {**_account_params(account), "expected_version": expected_version},
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None


def _account_params(account: Account) -> dict:
    return {
        "account_id": account.account_id,
        "name": account.name,
        "customer_ref": account.customer_ref,
        "subscription_ref": account.subscription_ref,
        "plan": account.plan.value if account.plan else None,
        "plan_state": account.plan_state.value,
        "status": account.status.value,
        "current_period_end": account.current_period_end,
        "version": account.version,
        "last_event_at": account.last_event_at,
    }


class PostgresUserRepository:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def get_user(self, user_id: str) -> Optional[User]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute("SELECT * FROM users WHERE user_id = %s LIMIT 1", (user_id,))
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def get_communication_status(self, user_id: str) -> Optional[CommunicationStatus]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                "SELECT communication_status FROM users WHERE user_id = %s LIMIT 1",
                (user_id,),
            )
            row = cursor.fetchone()
            return CommunicationStatus(row["communication_status"]) if row else None

    def set_communication_status(self, user_id: str, status: CommunicationStatus) -> Optional[User]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                UPDATE users
                SET communication_status = %s, updated_at = NOW()
                WHERE user_id = %s
                RETURNING *
                """,
                (status.value, user_id),
            )
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def link_account(self, user_id: str, account_id: str) -> Optional[User]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                UPDATE users
                SET account_id = %s, updated_at = NOW()
                WHERE user_id = %s
                RETURNING *
                """,
                (account_id, user_id),
            )
            row = cursor.fetchone()
            return _row_to_user(row) if row else None


class PostgresAlertRepository:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def create_alert(self, alert: ManagerAlert) -> ManagerAlert:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                INSERT INTO manager_alerts (alert_id, account_id, alert_type, message, is_read)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (alert.alert_id, alert.account_id, alert.alert_type.value, alert.message, alert.is_read),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist manager alert")
            return _row_to_alert(row)

    def list_alerts(self, account_id: str, *, unread_only: bool = False) -> list[ManagerAlert]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM manager_alerts
                WHERE account_id = %s AND (NOT %s OR is_read = FALSE)
                ORDER BY created_at DESC
                """,
                (account_id, unread_only),
            )
            return [_row_to_alert(row) for row in cursor.fetchall() or []]


__all__ = [
    "AccountRepository",
    "AlertRepository",
    "PostgresAccountRepository",
    "PostgresAlertRepository",
    "PostgresUserRepository",
    "UserRepository",
]
