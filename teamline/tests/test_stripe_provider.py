from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
import stripe

from teamline.app.accounts import PlanKey
from teamline.app.billing import ProviderSubscription
from teamline.app.billing.plans import get_plan_details
from teamline.app.billing.provider import StripeBillingProvider
from teamline.app.errors import PreconditionError, ProviderUnavailableError

SUBSCRIPTION = {
    "id": "sub_1",
    "status": "active",
    "cancel_at_period_end": False,
    "default_payment_method": "pm_sub",
    "items": {
        "data": [
            {"id": "si_1", "current_period_end": 1_711_929_600, "price": {"id": "price_1", "product": "prod_1"}}
        ]
    },
}


class _Recorder:
    def __init__(self, responses: Dict[str, Any]) -> None:
        self.responses = responses
        self.calls: List[tuple] = []

    def endpoint(self, name: str):
        def call(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            response = self.responses.get(name)
            if isinstance(response, Exception):
                raise response
            return response

        return call


def _client(recorder: _Recorder) -> SimpleNamespace:
    return SimpleNamespace(
        customers=SimpleNamespace(
            create=recorder.endpoint("customers.create"),
            retrieve=recorder.endpoint("customers.retrieve"),
            update=recorder.endpoint("customers.update"),
        ),
        subscriptions=SimpleNamespace(
            list=recorder.endpoint("subscriptions.list"),
            update=recorder.endpoint("subscriptions.update"),
        ),
        payment_methods=SimpleNamespace(retrieve=recorder.endpoint("payment_methods.retrieve")),
        checkout=SimpleNamespace(sessions=SimpleNamespace(create=recorder.endpoint("checkout.sessions.create"))),
        setup_intents=SimpleNamespace(create=recorder.endpoint("setup_intents.create")),
        ephemeral_keys=SimpleNamespace(create=recorder.endpoint("ephemeral_keys.create")),
        payment_intents=SimpleNamespace(create=recorder.endpoint("payment_intents.create")),
    )


def _provider(responses: Dict[str, Any]):
    recorder = _Recorder(responses)
    return StripeBillingProvider(api_key="sk_test", client=_client(recorder)), recorder


def test_customer_view_falls_back_to_subscription_payment_method():
    provider, recorder = _provider(
        {
            "customers.retrieve": {"id": "cus_1", "subscriptions": {"data": [SUBSCRIPTION]}, "invoice_settings": {}},
            "payment_methods.retrieve": {"id": "pm_sub", "card": {"brand": "visa", "last4": "4242", "exp_month": 1, "exp_year": 2031}},
        }
    )

    view = provider.get_customer_view("cus_1")

    assert view.subscription.subscription_id == "sub_1"
    assert view.subscription.item_id == "si_1"
    assert view.subscription.product_id == "prod_1"
    assert view.subscription.current_period_end is not None
    assert view.payment_method.last4 == "4242"
    assert recorder.calls[1][1] == ("pm_sub",)


def test_deleted_customer_has_empty_view():
    provider, _ = _provider({"customers.retrieve": {"id": "cus_1", "deleted": True}})

    view = provider.get_customer_view("cus_1")

    assert view.subscription is None
    assert view.payment_method is None


def test_plan_update_targets_existing_item_and_product():
    provider, recorder = _provider({"subscriptions.update": SUBSCRIPTION})
    subscription = ProviderSubscription(subscription_id="sub_1", status="active", item_id="si_1", product_id="prod_1")

    provider.update_subscription_plan(subscription, get_plan_details(PlanKey.ALL_STAR))

    name, args, kwargs = recorder.calls[0]
    assert name == "subscriptions.update"
    assert args == ("sub_1",)
    item = kwargs["params"]["items"][0]
    assert item["id"] == "si_1"
    assert item["price_data"]["product"] == "prod_1"
    assert item["price_data"]["unit_amount"] == 19900
    assert kwargs["params"]["metadata"] == {"plan": "all_star"}


def test_plan_update_without_item_is_a_precondition_error():
    provider, recorder = _provider({})

    with pytest.raises(PreconditionError):
        provider.update_subscription_plan(
            ProviderSubscription(subscription_id="sub_1", status="active"),
            get_plan_details(PlanKey.STARTER),
        )

    assert recorder.calls == []


def test_checkout_session_uses_subscription_mode_and_email():
    provider, recorder = _provider({"checkout.sessions.create": {"id": "cs_1", "url": "https://pay.example/cs_1"}})

    session = provider.create_checkout_session(
        plan=get_plan_details(PlanKey.STARTER),
        customer_id=None,
        customer_email="coach@example.com",
        metadata={"user_id": "user-1", "plan": "starter"},
        success_url="https://app.example/dashboard",
        cancel_url="https://app.example/pricing",
    )

    params = recorder.calls[0][2]["params"]
    assert session == {"id": "cs_1", "url": "https://pay.example/cs_1"}
    assert params["mode"] == "subscription"
    assert params["customer_email"] == "coach@example.com"
    assert "customer" not in params
    assert params["line_items"][0]["price_data"]["recurring"] == {"interval": "month"}
    assert params["subscription_data"]["metadata"]["plan"] == "starter"


def test_connection_errors_become_timeouts():
    provider, _ = _provider({"subscriptions.list": stripe.APIConnectionError("Request timed out")})

    with pytest.raises(ProviderUnavailableError) as excinfo:
        provider.get_live_subscription("cus_1")

    assert excinfo.value.status_code == 504


def test_other_stripe_errors_become_bad_gateway():
    provider, _ = _provider({"setup_intents.create": stripe.APIError("boom")})

    with pytest.raises(ProviderUnavailableError) as excinfo:
        provider.create_setup_intent("cus_1")

    assert excinfo.value.status_code == 502


def test_rejected_requests_are_business_errors():
    provider, _ = _provider({"customers.update": stripe.InvalidRequestError("No such PaymentMethod", "payment_method")})

    with pytest.raises(PreconditionError) as excinfo:
        provider.set_default_payment_method("cus_1", "pm_missing")

    assert excinfo.value.code == "provider_rejected"


def test_default_payment_method_is_set_on_subscription_too():
    provider, recorder = _provider({"customers.update": {"id": "cus_1"}, "subscriptions.update": SUBSCRIPTION})

    provider.set_default_payment_method("cus_1", "pm_1", subscription_id="sub_1")

    assert [call[0] for call in recorder.calls] == ["customers.update", "subscriptions.update"]
    assert recorder.calls[1][2]["params"] == {"default_payment_method": "pm_1"}


def test_live_subscription_includes_trials_and_skips_ended_ones():
    provider, recorder = _provider(
        {
            "subscriptions.list": {
                "data": [
                    {**SUBSCRIPTION, "id": "sub_old", "status": "canceled"},
                    {**SUBSCRIPTION, "id": "sub_gone", "status": "incomplete_expired"},
                    {**SUBSCRIPTION, "id": "sub_trial", "status": "trialing"},
                ]
            }
        }
    )

    subscription = provider.get_live_subscription("cus_1")

    assert subscription.subscription_id == "sub_trial"
    assert recorder.calls[0][2]["params"]["status"] == "all"


def test_live_subscription_prefers_the_linked_one():
    provider, _ = _provider(
        {
            "subscriptions.list": {
                "data": [
                    {**SUBSCRIPTION, "id": "sub_a", "status": "active"},
                    {**SUBSCRIPTION, "id": "sub_b", "status": "past_due"},
                ]
            }
        }
    )

    assert provider.get_live_subscription("cus_1", preferred_id="sub_b").subscription_id == "sub_b"
    assert provider.get_live_subscription("cus_1", preferred_id="sub_missing").subscription_id == "sub_a"


def test_payment_sheet_creates_customer_key_and_intent():
    provider, recorder = _provider(
        {
            "customers.create": {"id": "cus_new"},
            "ephemeral_keys.create": {"id": "ephkey_1", "secret": "ek_secret"},
            "payment_intents.create": {"id": "pi_1", "client_secret": "pi_1_secret"},
        }
    )
    metadata = {"user_id": "user-1", "plan": "all_star", "email": "coach@example.com"}

    sheet = provider.create_payment_sheet(
        plan=get_plan_details(PlanKey.ALL_STAR),
        customer_id=None,
        customer_email="coach@example.com",
        metadata=metadata,
    )

    assert sheet == {"client_secret": "pi_1_secret", "ephemeral_key": "ek_secret", "customer_id": "cus_new"}
    assert [call[0] for call in recorder.calls] == ["customers.create", "ephemeral_keys.create", "payment_intents.create"]
    assert recorder.calls[0][2]["params"] == {"metadata": metadata, "email": "coach@example.com"}
    key_call = recorder.calls[1][2]
    assert key_call["params"] == {"customer": "cus_new"}
    assert key_call["options"] == {"stripe_version": "2022-11-15"}
    intent_params = recorder.calls[2][2]["params"]
    assert intent_params["amount"] == 19900
    assert intent_params["customer"] == "cus_new"
    assert intent_params["metadata"] == metadata
    assert intent_params["automatic_payment_methods"] == {"enabled": True}


def test_payment_sheet_reuses_existing_customer():
    provider, recorder = _provider(
        {
            "ephemeral_keys.create": {"secret": "ek_secret"},
            "payment_intents.create": {"client_secret": "pi_2_secret"},
        }
    )

    sheet = provider.create_payment_sheet(
        plan=get_plan_details(PlanKey.STARTER),
        customer_id="cus_123",
        customer_email=None,
        metadata={"user_id": "user-1", "plan": "starter"},
    )

    assert sheet["customer_id"] == "cus_123"
    assert "customers.create" not in [call[0] for call in recorder.calls]
