"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Optional
from uuid import uuid4

from ...config import get_settings
from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    BillingProvider,
    EventVerifier,
    ProviderCustomerView,
    ProviderSubscription,
    ReconciliationEngine,
    SubscriptionCommandService,
)
from ..billing.plans import PlanDetails
from ..billing.provider import StripeBillingProvider
from ..billing.repository import PostgresEventStore, PostgresRevenueLedger
from .accounts import get_account_repository, get_user_repository


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s account=%s actor=%s metadata=%s",
            event.event_type.value,
            event.account_id,
            event.actor_id,
            event.metadata,
        )


class LocalSandboxBillingProvider(BillingProvider):
    """Provider used when no Stripe key is configured; knows no customers."""

    def get_customer_view(self, customer_id: str) -> ProviderCustomerView:
        return ProviderCustomerView()

    def get_live_subscription(
        self,
        customer_id: str,
        *,
        preferred_id: Optional[str] = None,
    ) -> Optional[ProviderSubscription]:
        return None

    def update_subscription_plan(self, subscription: ProviderSubscription, plan: PlanDetails) -> ProviderSubscription:
        raise NotImplementedError("Plan changes require real billing provider integration")

    def cancel_subscription_at_period_end(self, subscription_id: str) -> ProviderSubscription:
        raise NotImplementedError("Cancellation requires real billing provider integration")

    def create_checkout_session(
        self,
        *,
        plan: PlanDetails,
        customer_id: Optional[str],
        customer_email: Optional[str],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, object]:
        session_id = f"cs_{uuid4().hex}"
        return {"id": session_id, "url": f"https://billing.local/checkout/{session_id}"}

    def create_setup_intent(self, customer_id: str) -> str:
        return f"seti_{uuid4().hex}_secret_local"

    def create_payment_sheet(
        self,
        *,
        plan: PlanDetails,
        customer_id: Optional[str],
        customer_email: Optional[str],
        metadata: Dict[str, str],
    ) -> Dict[str, str]:
        intent_id = f"pi_{uuid4().hex}"
        return {
            "client_secret": f"{intent_id}_secret_local",
            "ephemeral_key": f"ek_{uuid4().hex}_local",
            "customer_id": customer_id or f"cus_{uuid4().hex}",
        }

    def set_default_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        *,
        subscription_id: Optional[str] = None,
    ) -> None:
        logger.debug("Sandbox default payment method %s for %s", payment_method_id, customer_id)


@lru_cache(maxsize=1)
def get_billing_event_logger() -> BillingEventLogger:
    return LoggingBillingEventLogger()


@lru_cache(maxsize=1)
def get_event_verifier() -> EventVerifier:
    settings = get_settings()
    return EventVerifier(
        signing_secret=settings.stripe_webhook_secret,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )


@lru_cache(maxsize=1)
def get_billing_provider() -> BillingProvider:
    settings = get_settings()
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; using the local sandbox billing provider")
        return LocalSandboxBillingProvider()
    return StripeBillingProvider(
        api_key=settings.stripe_secret_key,
        timeout_seconds=settings.provider_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_reconciliation_engine() -> ReconciliationEngine:
    settings = get_settings()
    return ReconciliationEngine(
        accounts=get_account_repository(),
        users=get_user_repository(),
        events=PostgresEventStore(),
        ledger=PostgresRevenueLedger(),
        event_logger=get_billing_event_logger(),
        max_attempts=settings.reconcile_max_attempts,
    )


@lru_cache(maxsize=1)
def get_subscription_command_service() -> SubscriptionCommandService:
    settings = get_settings()
    return SubscriptionCommandService(
        accounts=get_account_repository(),
        provider=get_billing_provider(),
        event_logger=get_billing_event_logger(),
        app_base_url=settings.app_base_url,
    )


__all__ = [
    "LocalSandboxBillingProvider",
    "LoggingBillingEventLogger",
    "get_billing_event_logger",
    "get_billing_provider",
    "get_event_verifier",
    "get_reconciliation_engine",
    "get_subscription_command_service",
]
