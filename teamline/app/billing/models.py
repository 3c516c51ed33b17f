"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..accounts.models import PlanKey, PlanState, SubscriptionStatus


class ProviderEvent(BaseModel):
    """Verified provider notification. Only the subclasses below are ever constructed."""

    event_id: str
    event_type: str
    created_at: datetime
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ChargeSucceeded(ProviderEvent):
    """A checkout completed or a payment intent collected money.

    Hosted checkouts also produce a payment intent for the same money, so only
    events with ``books_revenue`` set append to the revenue ledger.
    """

    charge_id: str
    customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None
    amount_cents: int = Field(default=0, ge=0)
    currency: str = "USD"
    plan: Optional[PlanKey] = None
    account_id: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    books_revenue: bool = True

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class SubscriptionChanged(ProviderEvent):
    """Subscription created or updated at the provider; carries the full target state."""

    subscription_ref: str
    customer_ref: Optional[str] = None
    status: SubscriptionStatus
    plan: Optional[PlanKey] = None
    current_period_end: Optional[datetime] = None
    account_id: Optional[str] = None


class SubscriptionDeleted(ProviderEvent):
    subscription_ref: str
    customer_ref: Optional[str] = None
    current_period_end: Optional[datetime] = None
    account_id: Optional[str] = None


class IgnoredEvent(ProviderEvent):
    """Event type the engine deliberately does not act on."""


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    STALE = "stale"
    IGNORED = "ignored"
    UNMATCHED = "unmatched"


class ReconciliationResult(BaseModel):
    """Outcome persisted in the idempotency store for each processed event."""

    event_id: str
    event_type: str
    outcome: ReconciliationOutcome
    account_id: Optional[str] = None
    ledger_entry_recorded: bool = False
    duplicate: bool = False
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class RevenueLedgerEntry(BaseModel):
    """Append-only record of a reconciled charge."""

    entry_id: str
    account_id: str
    event_id: str
    amount_cents: int = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    description: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    ACCOUNT_CREATED = "account_created"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    REVENUE_RECORDED = "revenue_recorded"
    PLAN_CHANGE_REQUESTED = "plan_change_requested"
    CANCELLATION_REQUESTED = "cancellation_requested"
    PAYMENT_METHOD_UPDATED = "payment_method_updated"
    PAYMENT_SHEET_CREATED = "payment_sheet_created"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    account_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentMethodSummary(BaseModel):
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class ProviderSubscription(BaseModel):
    """Provider-side view of a subscription, as returned by the billing provider."""

    subscription_id: str
    status: str
    item_id: Optional[str] = None
    product_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    default_payment_method: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ProviderCustomerView(BaseModel):
    subscription: Optional[ProviderSubscription] = None
    payment_method: Optional[PaymentMethodSummary] = None

    model_config = ConfigDict(frozen=True)


class SubscriptionDetails(BaseModel):
    """Read model returned by ``get_details``."""

    plan: PlanKey
    plan_state: PlanState
    status: str
    current_period_end: Optional[datetime] = None
    payment_method: Optional[PaymentMethodSummary] = None

    model_config = ConfigDict(frozen=True)


class CheckoutSession(BaseModel):
    """Return value of a checkout session creation request."""

    session_id: str
    checkout_url: str
    plan: PlanKey

    model_config = ConfigDict(frozen=True)


class PaymentSheet(BaseModel):
    """Secrets the mobile client needs to present the provider's payment sheet."""

    client_secret: str
    ephemeral_key: str
    customer_id: str
    plan: PlanKey

    model_config = ConfigDict(frozen=True)


class CancellationResult(BaseModel):
    subscription_id: str
    cancel_at_period_end: bool
    current_period_end: Optional[datetime] = None
    message: str = "Subscription set to cancel at period end."

    model_config = ConfigDict(frozen=True)
