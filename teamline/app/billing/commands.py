"""Owner-initiated subscription commands."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from ..accounts.models import Account, AccountOwner, PlanKey, PlanState, SubscriptionStatus
from ..accounts.repository import AccountRepository
from ..errors import PreconditionError
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    CancellationResult,
    CheckoutSession,
    PaymentSheet,
    ProviderCustomerView,
    ProviderSubscription,
    SubscriptionDetails,
)
from .plans import PlanDetails, get_plan_details
from .reconciliation import BillingEventLogger

logger = logging.getLogger("billing.commands")


class BillingProvider(Protocol):
    """External billing provider. Implementations bound every call with a timeout
    and raise :class:`~teamline.app.errors.ProviderUnavailableError` on failure."""

    def get_customer_view(self, customer_id: str) -> ProviderCustomerView:
        """Primary subscription and default payment method for a customer."""

    def get_live_subscription(
        self,
        customer_id: str,
        *,
        preferred_id: Optional[str] = None,
    ) -> Optional[ProviderSubscription]:
        """Trialing, active or past-due subscription, preferring ``preferred_id``."""

    def update_subscription_plan(
        self,
        subscription: ProviderSubscription,
        plan: PlanDetails,
    ) -> ProviderSubscription:
        ...

    def cancel_subscription_at_period_end(self, subscription_id: str) -> ProviderSubscription:
        ...

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
        """Create a hosted checkout; returns at least ``id`` and ``url``."""

    def create_setup_intent(self, customer_id: str) -> str:
        """Create a card setup intent and return its client secret."""

    def create_payment_sheet(
        self,
        *,
        plan: PlanDetails,
        customer_id: Optional[str],
        customer_email: Optional[str],
        metadata: Dict[str, str],
    ) -> Dict[str, str]:
        """Create a payment intent; returns ``client_secret``, ``ephemeral_key`` and ``customer_id``."""

    def set_default_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        *,
        subscription_id: Optional[str] = None,
    ) -> None:
        ...


@dataclass(slots=True)
class SubscriptionCommandService:
    """Proposes subscription changes to the provider on behalf of an account owner.

    Local writes made here are provisional; the reconciliation engine confirms
    or overwrites them when the provider's events arrive.
    """

    accounts: AccountRepository
    provider: BillingProvider
    event_logger: BillingEventLogger
    app_base_url: str = "http://localhost:5173"
    max_local_write_attempts: int = 3

    def get_details(self, owner: AccountOwner) -> SubscriptionDetails:
        account = self._load_account(owner)
        plan = (account.plan if account else None) or PlanKey.lowest()
        plan_state = account.plan_state if account else PlanState.CONFIRMED
        local_status = account.status if account else SubscriptionStatus.NONE

        if account is None or not account.has_customer:
            return SubscriptionDetails(
                plan=plan,
                plan_state=plan_state,
                status=local_status.value,
                current_period_end=account.current_period_end if account else None,
            )

        view = self.provider.get_customer_view(account.customer_ref)
        subscription = view.subscription
        return SubscriptionDetails(
            plan=plan,
            plan_state=plan_state,
            status=subscription.status if subscription else "inactive",
            current_period_end=subscription.current_period_end if subscription else None,
            payment_method=view.payment_method,
        )

    def change_plan(self, owner: AccountOwner, plan: object) -> Account:
        target_plan = self._parse_plan(plan)
        account = self._require_customer(owner)
        subscription = self._require_active_subscription(account)

        self.provider.update_subscription_plan(subscription, get_plan_details(target_plan))
        self._audit(
            BillingAuditEventType.PLAN_CHANGE_REQUESTED,
            account,
            owner,
            metadata={"plan": target_plan.value, "subscription_id": subscription.subscription_id},
        )
        return self._write_provisional_plan(account, target_plan)

    def cancel_subscription(self, owner: AccountOwner) -> CancellationResult:
        account = self._require_customer(owner)
        subscription = self._require_active_subscription(account)

        # Local status is left alone until the provider's subscription events arrive.
        canceled = self.provider.cancel_subscription_at_period_end(subscription.subscription_id)
        self._audit(
            BillingAuditEventType.CANCELLATION_REQUESTED,
            account,
            owner,
            metadata={"subscription_id": canceled.subscription_id},
        )
        return CancellationResult(
            subscription_id=canceled.subscription_id,
            cancel_at_period_end=canceled.cancel_at_period_end,
            current_period_end=canceled.current_period_end,
        )

    def create_checkout_session(
        self,
        owner: AccountOwner,
        plan: object,
        *,
        origin: Optional[str] = None,
    ) -> CheckoutSession:
        target_plan = self._parse_plan(plan)
        account = self._load_account(owner)
        details = get_plan_details(target_plan)
        base_url = (origin or self.app_base_url).rstrip("/")

        metadata = {"user_id": owner.user_id, "plan": target_plan.value}
        if owner.account_id:
            metadata["account_id"] = owner.account_id

        customer_id = account.customer_ref if account else None
        session = self.provider.create_checkout_session(
            plan=details,
            customer_id=customer_id,
            customer_email=None if customer_id else owner.email,
            metadata=metadata,
            success_url=f"{base_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/pricing",
        )
        return CheckoutSession(
            session_id=str(session.get("id", "")),
            checkout_url=str(session.get("url", "")),
            plan=target_plan,
        )

    def create_setup_intent(self, owner: AccountOwner) -> str:
        account = self._require_customer(owner)
        return self.provider.create_setup_intent(account.customer_ref)

    def create_payment_sheet(self, owner: AccountOwner, plan: object) -> PaymentSheet:
        """Start an in-app payment for ``plan``; the succeeded webhook settles the account."""

        target_plan = self._parse_plan(plan)
        account = self._load_account(owner)
        customer_id = account.customer_ref if account else None

        metadata = {"user_id": owner.user_id, "plan": target_plan.value}
        if owner.account_id:
            metadata["account_id"] = owner.account_id
        if owner.email:
            metadata["email"] = owner.email

        sheet = self.provider.create_payment_sheet(
            plan=get_plan_details(target_plan),
            customer_id=customer_id,
            customer_email=None if customer_id else owner.email,
            metadata=metadata,
        )
        logger.info("Payment sheet for account %s on customer %s", owner.account_id, sheet["customer_id"])
        if account is not None:
            self._audit(
                BillingAuditEventType.PAYMENT_SHEET_CREATED,
                account,
                owner,
                metadata={"plan": target_plan.value, "customer_id": sheet["customer_id"]},
            )
        return PaymentSheet(
            client_secret=sheet["client_secret"],
            ephemeral_key=sheet["ephemeral_key"],
            customer_id=sheet["customer_id"],
            plan=target_plan,
        )

    def update_payment_method(self, owner: AccountOwner, payment_method_id: Optional[str]) -> None:
        if not payment_method_id:
            raise PreconditionError(code="missing_parameter", message="payment_method_id required")
        account = self._require_customer(owner)
        subscription = self.provider.get_live_subscription(
            account.customer_ref, preferred_id=account.subscription_ref
        )
        self.provider.set_default_payment_method(
            account.customer_ref,
            payment_method_id,
            subscription_id=subscription.subscription_id if subscription else None,
        )
        self._audit(BillingAuditEventType.PAYMENT_METHOD_UPDATED, account, owner)

    def _load_account(self, owner: AccountOwner) -> Optional[Account]:
        if not owner.account_id:
            return None
        return self.accounts.get_account(owner.account_id)

    def _require_customer(self, owner: AccountOwner) -> Account:
        account = self._load_account(owner)
        if account is None or not account.has_customer:
            raise PreconditionError(
                code="no_billing_customer",
                message="No billing customer found for this account.",
            )
        return account

    def _require_active_subscription(self, account: Account) -> ProviderSubscription:
        subscription = self.provider.get_live_subscription(
            account.customer_ref, preferred_id=account.subscription_ref
        )
        if subscription is None:
            raise PreconditionError(
                code="no_active_subscription",
                message="No active subscription found for this account.",
            )
        return subscription

    def _write_provisional_plan(self, account: Account, plan: PlanKey) -> Account:
        current = account
        for _ in range(self.max_local_write_attempts):
            updated = current.model_copy(update={"plan": plan, "plan_state": PlanState.PROVISIONAL})
            stored = self.accounts.compare_and_set(updated, expected_version=current.version)
            if stored is not None:
                return stored
            refreshed = self.accounts.get_account(account.account_id)
            if refreshed is None:
                break
            current = refreshed
        logger.warning(
            "Provisional plan write for account %s lost to concurrent updates; reconciliation will settle it",
            account.account_id,
        )
        return current

    @staticmethod
    def _parse_plan(plan: object) -> PlanKey:
        if not plan:
            raise PreconditionError(code="missing_parameter", message="Plan is required")
        try:
            return PlanKey.parse(plan)
        except ValueError as exc:
            raise PreconditionError(code="invalid_plan", message=f"Unknown plan: {plan}") from exc

    def _audit(
        self,
        event_type: BillingAuditEventType,
        account: Account,
        owner: AccountOwner,
        *,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        self.event_logger.log(
            BillingAuditEvent(
                event_type=event_type,
                account_id=account.account_id,
                actor_id=owner.user_id,
                metadata=metadata or {},
            )
        )


__all__ = ["BillingProvider", "SubscriptionCommandService"]
