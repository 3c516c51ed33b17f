"""Application wiring for account, user, and alert persistence."""
from __future__ import annotations

from functools import lru_cache

from ..accounts import AccountRepository, AlertRepository, UserRepository
from ..accounts.repository import (
    PostgresAccountRepository,
    PostgresAlertRepository,
    PostgresUserRepository,
)


@lru_cache(maxsize=1)
def get_account_repository() -> AccountRepository:
    return PostgresAccountRepository()


@lru_cache(maxsize=1)
def get_user_repository() -> UserRepository:
    return PostgresUserRepository()


@lru_cache(maxsize=1)
def get_alert_repository() -> AlertRepository:
    return PostgresAlertRepository()


__all__ = ["get_account_repository", "get_alert_repository", "get_user_repository"]
