"""Stripe-backed implementation of the billing provider."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

import stripe
from fastapi import status

from ..errors import PreconditionError, ProviderUnavailableError
from .events import is_live_status, parse_timestamp
from .models import PaymentMethodSummary, ProviderCustomerView, ProviderSubscription
from .plans import PlanDetails

logger = logging.getLogger("billing.provider")

T = TypeVar("T")

# Ephemeral keys are pinned to the API version the mobile SDK speaks.
EPHEMERAL_KEY_API_VERSION = "2022-11-15"


def _subscription_from_stripe(obj: Mapping[str, Any]) -> ProviderSubscription:
    items = (obj.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    period_end = obj.get("current_period_end") or first_item.get("current_period_end")
    price = first_item.get("price") or {}
    default_pm = obj.get("default_payment_method")
    if isinstance(default_pm, Mapping):
        default_pm = default_pm.get("id")
    return ProviderSubscription(
        subscription_id=str(obj["id"]),
        status=str(obj.get("status") or "inactive"),
        item_id=first_item.get("id"),
        product_id=price.get("product") if isinstance(price.get("product"), str) else None,
        current_period_end=parse_timestamp(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        default_payment_method=default_pm,
    )


def _payment_method_summary(obj: Optional[Mapping[str, Any]]) -> Optional[PaymentMethodSummary]:
    if not obj:
        return None
    card = obj.get("card") or {}
    return PaymentMethodSummary(
        brand=card.get("brand"),
        last4=card.get("last4"),
        exp_month=card.get("exp_month"),
        exp_year=card.get("exp_year"),
    )


class StripeBillingProvider:
    """Billing provider talking to Stripe with a bounded per-request timeout."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: float = 10.0,
        client: Optional[stripe.StripeClient] = None,
    ) -> None:
        self._client = client or stripe.StripeClient(
            api_key,
            http_client=stripe.RequestsClient(timeout=timeout_seconds),
            max_network_retries=0,
        )

    def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except stripe.APIConnectionError as exc:
            logger.warning("Stripe %s failed to connect or timed out: %s", operation, exc)
            raise ProviderUnavailableError(
                message="Billing provider timed out, please retry",
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                detail={"operation": operation},
            ) from exc
        except (stripe.CardError, stripe.InvalidRequestError) as exc:
            logger.info("Stripe rejected %s: %s", operation, exc)
            raise PreconditionError(
                code="provider_rejected",
                message=exc.user_message or "Request rejected by billing provider",
            ) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", operation, exc)
            raise ProviderUnavailableError(detail={"operation": operation}) from exc

    def get_customer_view(self, customer_id: str) -> ProviderCustomerView:
        customer = self._call(
            "customers.retrieve",
            self._client.customers.retrieve,
            customer_id,
            params={"expand": ["subscriptions", "invoice_settings.default_payment_method"]},
        )
        if customer.get("deleted"):
            return ProviderCustomerView()

        subscriptions = (customer.get("subscriptions") or {}).get("data") or []
        subscription = _subscription_from_stripe(subscriptions[0]) if subscriptions else None

        payment_method = (customer.get("invoice_settings") or {}).get("default_payment_method")
        if not payment_method and subscription and subscription.default_payment_method:
            payment_method = subscription.default_payment_method
        if isinstance(payment_method, str):
            payment_method = self._call(
                "payment_methods.retrieve",
                self._client.payment_methods.retrieve,
                payment_method,
            )
        return ProviderCustomerView(
            subscription=subscription,
            payment_method=_payment_method_summary(payment_method),
        )

    def get_live_subscription(
        self,
        customer_id: str,
        *,
        preferred_id: Optional[str] = None,
    ) -> Optional[ProviderSubscription]:
        result = self._call(
            "subscriptions.list",
            self._client.subscriptions.list,
            params={"customer": customer_id, "status": "all", "limit": 10},
        )
        live = [
            _subscription_from_stripe(obj)
            for obj in result.get("data") or []
            if is_live_status(obj.get("status"))
        ]
        for subscription in live:
            if subscription.subscription_id == preferred_id:
                return subscription
        return live[0] if live else None

    def update_subscription_plan(
        self,
        subscription: ProviderSubscription,
        plan: PlanDetails,
    ) -> ProviderSubscription:
        if not subscription.item_id or not subscription.product_id:
            raise PreconditionError(
                code="no_active_subscription",
                message="Subscription has no billable item to update.",
            )
        updated = self._call(
            "subscriptions.update",
            self._client.subscriptions.update,
            subscription.subscription_id,
            params={
                "items": [
                    {
                        "id": subscription.item_id,
                        "price_data": {
                            "currency": plan.currency,
                            "product": subscription.product_id,
                            "unit_amount": plan.amount_cents,
                            "recurring": {"interval": plan.interval},
                        },
                    }
                ],
                "metadata": {"plan": plan.key.value},
            },
        )
        return _subscription_from_stripe(updated)

    def cancel_subscription_at_period_end(self, subscription_id: str) -> ProviderSubscription:
        updated = self._call(
            "subscriptions.update",
            self._client.subscriptions.update,
            subscription_id,
            params={"cancel_at_period_end": True},
        )
        return _subscription_from_stripe(updated)

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
        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": plan.currency,
                        "product_data": {
                            "name": plan.name,
                            "description": f"Subscription to {plan.name}",
                        },
                        "unit_amount": plan.amount_cents,
                        "recurring": {"interval": plan.interval},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        session = self._call("checkout.sessions.create", self._client.checkout.sessions.create, params=params)
        return {"id": session.get("id"), "url": session.get("url")}

    def create_setup_intent(self, customer_id: str) -> str:
        intent = self._call(
            "setup_intents.create",
            self._client.setup_intents.create,
            params={"customer": customer_id, "payment_method_types": ["card"]},
        )
        return str(intent.get("client_secret"))

    def create_payment_sheet(
        self,
        *,
        plan: PlanDetails,
        customer_id: Optional[str],
        customer_email: Optional[str],
        metadata: Dict[str, str],
    ) -> Dict[str, str]:
        """Payment intent plus ephemeral key for the mobile payment sheet.

        A customer is created when the account has none yet; the intent's
        metadata lets the succeeded webhook link it back to the account.
        """

        if not customer_id:
            customer_params: Dict[str, Any] = {"metadata": metadata}
            if customer_email:
                customer_params["email"] = customer_email
            customer = self._call("customers.create", self._client.customers.create, params=customer_params)
            customer_id = str(customer.get("id"))

        ephemeral_key = self._call(
            "ephemeral_keys.create",
            self._client.ephemeral_keys.create,
            params={"customer": customer_id},
            options={"stripe_version": EPHEMERAL_KEY_API_VERSION},
        )
        intent = self._call(
            "payment_intents.create",
            self._client.payment_intents.create,
            params={
                "amount": plan.amount_cents,
                "currency": plan.currency,
                "customer": customer_id,
                "automatic_payment_methods": {"enabled": True},
                "metadata": metadata,
            },
        )
        return {
            "client_secret": str(intent.get("client_secret")),
            "ephemeral_key": str(ephemeral_key.get("secret")),
            "customer_id": customer_id,
        }

    def set_default_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        *,
        subscription_id: Optional[str] = None,
    ) -> None:
        self._call(
            "customers.update",
            self._client.customers.update,
            customer_id,
            params={"invoice_settings": {"default_payment_method": payment_method_id}},
        )
        if subscription_id:
            self._call(
                "subscriptions.update",
                self._client.subscriptions.update,
                subscription_id,
                params={"default_payment_method": payment_method_id},
            )


__all__ = ["StripeBillingProvider"]
