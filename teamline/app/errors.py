"""Error taxonomy shared by the billing and compliance layers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class ServiceError(Exception):
    """Represents an actionable failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class AuthenticationError(ServiceError):
    """Inbound notification failed signature or freshness verification."""

    code: str = "invalid_signature"
    message: str = "Webhook signature verification failed"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class InvalidEventError(AuthenticationError):
    """A verified body that does not describe a provider event."""

    code: str = "invalid_payload"
    message: str = "Webhook payload is not a valid provider event"


@dataclass
class PreconditionError(ServiceError):
    """Command issued against an account that cannot satisfy it."""

    code: str = "precondition_failed"
    message: str = "The account cannot perform this operation"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class TransientStoreError(ServiceError):
    """Local persistence failed; the caller should retry later."""

    code: str = "store_unavailable"
    message: str = "Local store is temporarily unavailable"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass
class ComplianceBlock(ServiceError):
    """Request refused because the user opted out of communications."""

    code: str = "OPT_OUT_BLOCK"
    message: str = "User has opted out of communications."
    status_code: int = status.HTTP_403_FORBIDDEN


@dataclass
class ProviderUnavailableError(ServiceError):
    """The billing provider timed out or refused the request."""

    code: str = "provider_unavailable"
    message: str = "Billing provider is unavailable, please retry"
    status_code: int = status.HTTP_502_BAD_GATEWAY


__all__ = [
    "AuthenticationError",
    "ComplianceBlock",
    "InvalidEventError",
    "PreconditionError",
    "ProviderUnavailableError",
    "ServiceError",
    "TransientStoreError",
]
