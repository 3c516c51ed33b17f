"""Authentication of inbound provider notifications."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

import stripe

from ..errors import AuthenticationError, InvalidEventError
from .events import parse_provider_event
from .models import ProviderEvent

logger = logging.getLogger("billing.webhook")

DEFAULT_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class EventVerifier:
    """Checks the provider signature over the raw body before anything is parsed.

    The signature header has the form ``t=<unix ts>,v1=<hex hmac>``; the HMAC is
    SHA-256 over ``"<t>.<raw body>"`` keyed with the endpoint signing secret.
    Headers whose timestamp is further than ``tolerance_seconds`` from now are
    rejected so captured payloads cannot be replayed later.
    """

    signing_secret: str
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS

    def verify(self, raw_body: Union[bytes, str], signature_header: Optional[str]) -> ProviderEvent:
        if not self.signing_secret:
            logger.error("Webhook signing secret is not configured")
            raise AuthenticationError(message="Webhook signing secret is not configured")
        if not signature_header:
            raise AuthenticationError(message="No signature")

        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        except UnicodeDecodeError as exc:
            raise AuthenticationError(message="Webhook body is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature_header,
                self.signing_secret,
                tolerance=self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise AuthenticationError() from exc

        try:
            envelope = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise InvalidEventError() from exc
        return parse_provider_event(envelope, received_at=datetime.now(timezone.utc))


__all__ = ["DEFAULT_TOLERANCE_SECONDS", "EventVerifier"]
