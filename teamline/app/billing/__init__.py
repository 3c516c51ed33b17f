"""Billing domain package: provider event reconciliation and subscription commands."""

from .commands import BillingProvider, SubscriptionCommandService
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    CancellationResult,
    ChargeSucceeded,
    CheckoutSession,
    IgnoredEvent,
    PaymentMethodSummary,
    PaymentSheet,
    ProviderCustomerView,
    ProviderEvent,
    ProviderSubscription,
    ReconciliationOutcome,
    ReconciliationResult,
    RevenueLedgerEntry,
    SubscriptionChanged,
    SubscriptionDeleted,
    SubscriptionDetails,
)
from .plans import PLAN_CATALOG, PlanDetails, get_plan_details
from .reconciliation import BillingEventLogger, EventStore, ReconciliationEngine, RevenueLedger
from .verifier import EventVerifier

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingProvider",
    "CancellationResult",
    "ChargeSucceeded",
    "CheckoutSession",
    "EventStore",
    "EventVerifier",
    "IgnoredEvent",
    "PLAN_CATALOG",
    "PaymentMethodSummary",
    "PaymentSheet",
    "PlanDetails",
    "ProviderCustomerView",
    "ProviderEvent",
    "ProviderSubscription",
    "ReconciliationEngine",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "RevenueLedger",
    "RevenueLedgerEntry",
    "SubscriptionChanged",
    "SubscriptionCommandService",
    "SubscriptionDeleted",
    "SubscriptionDetails",
    "get_plan_details",
]
