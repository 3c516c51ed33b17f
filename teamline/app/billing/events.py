"""Translation of raw provider event envelopes into typed events."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from ..accounts.models import SubscriptionStatus
from ..errors import InvalidEventError
from .models import (
    ChargeSucceeded,
    IgnoredEvent,
    ProviderEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
)
from .plans import plan_from_metadata

# Provider statuses outside our lifecycle collapse onto the closest local state.
_STATUS_ALIASES: Dict[str, SubscriptionStatus] = {
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.NONE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def normalize_status(value: object) -> SubscriptionStatus:
    raw = str(value or "").strip().lower()
    if raw in _STATUS_ALIASES:
        return _STATUS_ALIASES[raw]
    try:
        return SubscriptionStatus(raw)
    except ValueError as exc:
        raise InvalidEventError(detail={"status": raw}) from exc


_LIVE_STATUSES = frozenset(
    {SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE}
)


def is_live_status(value: object) -> bool:
    """Whether a provider subscription status can still be changed or canceled."""

    try:
        return normalize_status(value) in _LIVE_STATUSES
    except InvalidEventError:
        return False


def parse_timestamp(value: object) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported datetime value")


def _metadata(obj: Mapping[str, Any]) -> Dict[str, str]:
    value = obj.get("metadata")
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if v is not None}
    return {}


def _optional_str(value: object) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        # Expanded objects carry their id.
        return _optional_str(value.get("id"))
    return str(value)


def _period_end(obj: Mapping[str, Any]) -> Optional[datetime]:
    if obj.get("current_period_end") is not None:
        return parse_timestamp(obj["current_period_end"])
    items = (obj.get("items") or {}).get("data") or []
    if items and isinstance(items[0], dict):
        return parse_timestamp(items[0].get("current_period_end"))
    return None


def _base_fields(envelope: Mapping[str, Any], received_at: Optional[datetime]) -> Dict[str, Any]:
    created_at = parse_timestamp(envelope.get("created")) or datetime.now(timezone.utc)
    fields: Dict[str, Any] = {
        "event_id": str(envelope["id"]),
        "event_type": str(envelope["type"]),
        "created_at": created_at,
        "payload": dict(envelope["data"]["object"]),
    }
    if received_at is not None:
        fields["received_at"] = received_at
    return fields


def _parse_payment_intent(base: Dict[str, Any], obj: Mapping[str, Any]) -> ProviderEvent:
    metadata = _metadata(obj)
    return ChargeSucceeded(
        **base,
        charge_id=str(obj["id"]),
        customer_ref=_optional_str(obj.get("customer")),
        subscription_ref=_optional_str(metadata.get("subscription_id")),
        amount_cents=int(obj.get("amount_received") or obj.get("amount") or 0),
        currency=str(obj.get("currency") or "usd"),
        plan=plan_from_metadata(metadata.get("plan")),
        account_id=metadata.get("account_id") or metadata.get("team_id"),
        user_id=metadata.get("user_id"),
        email=metadata.get("email") or _optional_str(obj.get("receipt_email")),
    )


def _parse_checkout_session(base: Dict[str, Any], obj: Mapping[str, Any]) -> ProviderEvent:
    metadata = _metadata(obj)
    details = obj.get("customer_details") or {}
    return ChargeSucceeded(
        **base,
        charge_id=str(obj["id"]),
        customer_ref=_optional_str(obj.get("customer")),
        subscription_ref=_optional_str(obj.get("subscription")),
        amount_cents=int(obj.get("amount_total") or 0),
        currency=str(obj.get("currency") or "usd"),
        plan=plan_from_metadata(metadata.get("plan")),
        account_id=metadata.get("account_id") or metadata.get("team_id"),
        user_id=metadata.get("user_id"),
        email=_optional_str(obj.get("customer_email")) or _optional_str(details.get("email")),
        # The session's payment intent reports the money; the session only links and activates.
        books_revenue=False,
    )


def _parse_subscription_changed(base: Dict[str, Any], obj: Mapping[str, Any]) -> ProviderEvent:
    metadata = _metadata(obj)
    return SubscriptionChanged(
        **base,
        subscription_ref=str(obj["id"]),
        customer_ref=_optional_str(obj.get("customer")),
        status=normalize_status(obj.get("status")),
        plan=plan_from_metadata(metadata.get("plan")),
        current_period_end=_period_end(obj),
        account_id=metadata.get("account_id") or metadata.get("team_id"),
    )


def _parse_subscription_deleted(base: Dict[str, Any], obj: Mapping[str, Any]) -> ProviderEvent:
    metadata = _metadata(obj)
    return SubscriptionDeleted(
        **base,
        subscription_ref=str(obj["id"]),
        customer_ref=_optional_str(obj.get("customer")),
        current_period_end=_period_end(obj),
        account_id=metadata.get("account_id") or metadata.get("team_id"),
    )


_PARSERS: Dict[str, Callable[[Dict[str, Any], Mapping[str, Any]], ProviderEvent]] = {
    "payment_intent.succeeded": _parse_payment_intent,
    "checkout.session.completed": _parse_checkout_session,
    "customer.subscription.created": _parse_subscription_changed,
    "customer.subscription.updated": _parse_subscription_changed,
    "customer.subscription.deleted": _parse_subscription_deleted,
}


def parse_provider_event(
    envelope: Mapping[str, Any],
    *,
    received_at: Optional[datetime] = None,
) -> ProviderEvent:
    """Build the typed event for a verified ``{id, type, created, data: {object}}`` envelope."""

    if not isinstance(envelope, Mapping):
        raise InvalidEventError()
    data = envelope.get("data")
    if not envelope.get("id") or not envelope.get("type") or not isinstance(data, dict):
        raise InvalidEventError()
    obj = data.get("object")
    if not isinstance(obj, dict):
        raise InvalidEventError()

    try:
        base = _base_fields(envelope, received_at)
        parser = _PARSERS.get(base["event_type"])
        if parser is None:
            return IgnoredEvent(**base)
        return parser(base, obj)
    except InvalidEventError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidEventError(detail={"event_type": str(envelope.get("type"))}) from exc


__all__ = ["is_live_status", "normalize_status", "parse_provider_event", "parse_timestamp"]
