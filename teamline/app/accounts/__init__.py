"""Account, user, and consent records shared by billing and compliance."""

from .models import (
    Account,
    AccountOwner,
    AlertType,
    CommunicationStatus,
    ManagerAlert,
    PlanKey,
    PlanState,
    SubscriptionStatus,
    User,
)
from .repository import AccountRepository, AlertRepository, UserRepository

__all__ = [
    "Account",
    "AccountOwner",
    "AccountRepository",
    "AlertRepository",
    "AlertType",
    "CommunicationStatus",
    "ManagerAlert",
    "PlanKey",
    "PlanState",
    "SubscriptionStatus",
    "User",
    "UserRepository",
]
