from __future__ import annotations

import json
import time

import pytest

from teamline.app.accounts import PlanKey, SubscriptionStatus
from teamline.app.billing import (
    ChargeSucceeded,
    EventVerifier,
    IgnoredEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
)
from teamline.app.errors import AuthenticationError, InvalidEventError

SECRET = "whsec_test_secret"


@pytest.fixture
def verifier() -> EventVerifier:
    return EventVerifier(signing_secret=SECRET, tolerance_seconds=300)


def test_verify_returns_typed_charge_event(verifier, sign, envelope):
    body = json.dumps(
        envelope(
            "evt_1",
            "checkout.session.completed",
            {
                "id": "cs_1",
                "customer": "cus_123",
                "subscription": "sub_9",
                "amount_total": 19900,
                "currency": "usd",
                "customer_email": "coach@example.com",
                "metadata": {"user_id": "user-1", "plan": "All Star", "account_id": "acct-1"},
            },
        )
    ).encode("utf-8")

    event = verifier.verify(body, sign(body))

    assert isinstance(event, ChargeSucceeded)
    assert event.event_id == "evt_1"
    assert event.customer_ref == "cus_123"
    assert event.subscription_ref == "sub_9"
    assert event.plan == PlanKey.ALL_STAR
    assert event.amount_cents == 19900
    assert event.currency == "USD"
    assert event.user_id == "user-1"
    assert event.books_revenue is False


def test_verify_maps_subscription_events(verifier, sign, envelope):
    updated = json.dumps(
        envelope(
            "evt_2",
            "customer.subscription.updated",
            {"id": "sub_1", "customer": "cus_123", "status": "unpaid", "current_period_end": 1_700_500_000},
        )
    ).encode("utf-8")
    deleted = json.dumps(
        envelope("evt_3", "customer.subscription.deleted", {"id": "sub_1", "customer": "cus_123"})
    ).encode("utf-8")

    changed_event = verifier.verify(updated, sign(updated))
    deleted_event = verifier.verify(deleted, sign(deleted))

    assert isinstance(changed_event, SubscriptionChanged)
    assert changed_event.status == SubscriptionStatus.PAST_DUE
    assert changed_event.plan is None
    assert changed_event.current_period_end is not None
    assert isinstance(deleted_event, SubscriptionDeleted)


def test_unknown_event_types_are_ignored_not_rejected(verifier, sign, envelope):
    body = json.dumps(envelope("evt_4", "invoice.finalized", {"id": "in_1"})).encode("utf-8")

    event = verifier.verify(body, sign(body))

    assert isinstance(event, IgnoredEvent)
    assert event.event_type == "invoice.finalized"


def test_missing_signature_header_is_rejected(verifier, envelope):
    body = json.dumps(envelope("evt_5", "invoice.paid", {"id": "in_1"})).encode("utf-8")

    with pytest.raises(AuthenticationError) as excinfo:
        verifier.verify(body, None)

    assert excinfo.value.status_code == 400


def test_wrong_secret_is_rejected_even_for_valid_json(verifier, sign, envelope):
    body = json.dumps(envelope("evt_6", "checkout.session.completed", {"id": "cs_1"})).encode("utf-8")

    with pytest.raises(AuthenticationError) as excinfo:
        verifier.verify(body, sign(body, secret="whsec_other"))

    assert not isinstance(excinfo.value, InvalidEventError)
    assert excinfo.value.code == "invalid_signature"


def test_tampered_body_is_rejected(verifier, sign, envelope):
    body = json.dumps(envelope("evt_7", "checkout.session.completed", {"id": "cs_1", "amount_total": 100}))
    header = sign(body.encode("utf-8"))
    tampered = body.replace("100", "1").encode("utf-8")

    with pytest.raises(AuthenticationError):
        verifier.verify(tampered, header)


def test_timestamp_outside_tolerance_is_rejected(verifier, sign, envelope):
    body = json.dumps(envelope("evt_8", "checkout.session.completed", {"id": "cs_1"})).encode("utf-8")
    stale_header = sign(body, timestamp=int(time.time()) - 3600)

    with pytest.raises(AuthenticationError):
        verifier.verify(body, stale_header)


def test_verified_body_that_is_not_an_event_is_invalid(verifier, sign):
    body = b'{"hello": "world"}'

    with pytest.raises(InvalidEventError) as excinfo:
        verifier.verify(body, sign(body))

    assert excinfo.value.code == "invalid_payload"


def test_unconfigured_secret_rejects_everything(sign, envelope):
    verifier = EventVerifier(signing_secret="")
    body = json.dumps(envelope("evt_9", "checkout.session.completed", {"id": "cs_1"})).encode("utf-8")

    with pytest.raises(AuthenticationError):
        verifier.verify(body, sign(body))
