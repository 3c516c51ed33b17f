"""Domain models for accounts, users, and manager alerts."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PlanKey(str, Enum):
    """Canonical identifiers for subscription plans."""

    STARTER = "starter"
    ALL_STAR = "all_star"
    HALL_OF_FAME = "hall_of_fame"

    @classmethod
    def parse(cls, value: object) -> "PlanKey":
        """Resolve enum values, display names ("All Star") and compact names ("AllStar")."""

        if isinstance(value, cls):
            return value
        normalized = re.sub(r"[\s_\-]+", "", str(value or "")).lower()
        for member in cls:
            if normalized == member.value.replace("_", ""):
                return member
        raise ValueError(f"Unknown plan: {value!r}")

    @classmethod
    def lowest(cls) -> "PlanKey":
        return cls.STARTER


class SubscriptionStatus(str, Enum):
    """Lifecycle state of an account's subscription."""

    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class PlanState(str, Enum):
    """Whether the stored plan was confirmed by the provider or written optimistically."""

    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"


class CommunicationStatus(str, Enum):
    """Consent state for outbound generated messages."""

    SUBSCRIBED = "subscribed"
    OPTED_OUT = "opted_out"


class AlertType(str, Enum):
    OPT_OUT = "opt_out"


class Account(BaseModel):
    """Local subscription ledger record for a team."""

    account_id: str
    name: str = ""
    customer_ref: Optional[str] = Field(default=None, description="Provider customer id, immutable once set")
    subscription_ref: Optional[str] = None
    plan: Optional[PlanKey] = None
    plan_state: PlanState = PlanState.CONFIRMED
    status: SubscriptionStatus = SubscriptionStatus.NONE
    current_period_end: Optional[datetime] = None
    version: int = Field(default=0, ge=0)
    last_event_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def has_customer(self) -> bool:
        return bool(self.customer_ref)

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED


class User(BaseModel):
    """A player or manager who can exchange messages with the assistant."""

    user_id: str
    account_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    communication_status: CommunicationStatus = CommunicationStatus.SUBSCRIBED

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_opted_out(self) -> bool:
        return self.communication_status == CommunicationStatus.OPTED_OUT

    @property
    def display_name(self) -> str:
        if not self.first_name:
            return "A player"
        return f"{self.first_name} {self.last_name or ''}".strip()


class ManagerAlert(BaseModel):
    """Notification surfaced to an account manager."""

    alert_id: str
    account_id: str
    alert_type: AlertType = AlertType.OPT_OUT
    message: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class AccountOwner(BaseModel):
    """Authenticated caller bound to exactly one account."""

    user_id: str
    account_id: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(frozen=True)
