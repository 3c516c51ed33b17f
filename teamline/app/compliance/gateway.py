"""Request interception enforcing region policy, consent, and AI disclosure."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Dict, Optional, Sequence

from fastapi import status

from ..accounts.models import CommunicationStatus
from ..accounts.repository import UserRepository
from ..errors import ComplianceBlock
from .models import (
    AI_DISCLOSURE_HEADER,
    CORS_HEADERS,
    GatewayHandler,
    GatewayRequest,
    GatewayResponse,
)

logger = logging.getLogger("compliance")

INTERNAL_ERROR_BODY = {"error": "Internal Server Error during compliance check"}


def _json_headers() -> Dict[str, str]:
    return {**CORS_HEADERS, "Content-Type": "application/json"}


def _merge_headers(existing: Dict[str, str]) -> Dict[str, str]:
    merged = dict(existing)
    lowered = {key.lower(): key for key in merged}

    # The disclosure marker always wins; CORS defaults only fill gaps.
    disclosure_key = lowered.get(AI_DISCLOSURE_HEADER.lower(), AI_DISCLOSURE_HEADER)
    merged[disclosure_key] = "true"
    for key, value in CORS_HEADERS.items():
        if key.lower() not in lowered:
            merged[key] = value
    return merged


@dataclass(slots=True)
class ComplianceGateway:
    """Wraps message handlers with the compliance checks every outbound reply needs.

    Steps run in a fixed order: CORS preflight, data-residency check (logged,
    never blocking), the consent kill switch, the wrapped handler, and finally
    the AI disclosure header on successful responses.
    """

    users: UserRepository
    processing_region: str = "unknown"
    allowed_regions: Sequence[str] = field(default_factory=lambda: ("eu-central-1",))

    def wrap(self, handler: GatewayHandler) -> GatewayHandler:
        @wraps(handler)
        def guarded(request: GatewayRequest) -> GatewayResponse:
            return self.handle(request, handler)

        return guarded

    def handle(self, request: GatewayRequest, handler: GatewayHandler) -> GatewayResponse:
        if request.method.upper() == "OPTIONS":
            return GatewayResponse(status_code=status.HTTP_200_OK, body="ok", headers=dict(CORS_HEADERS))

        try:
            self._check_region()

            user_id = self._extract_user_id(request.body)
            if user_id and self._is_opted_out(user_id):
                logger.info("Blocked request from opted-out user: %s", user_id)
                block = ComplianceBlock()
                return GatewayResponse(
                    status_code=block.status_code,
                    body={"error": block.message, "code": block.code},
                    headers=_json_headers(),
                )

            response = handler(request)
        except Exception:
            logger.exception("Compliance gateway failed while handling request")
            return GatewayResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                body=dict(INTERNAL_ERROR_BODY),
                headers=_json_headers(),
            )

        if not response.is_success:
            return response
        return response.model_copy(update={"headers": _merge_headers(response.headers)})

    def _check_region(self) -> None:
        if self.processing_region in self.allowed_regions:
            return
        logger.warning(
            "[COMPLIANCE ALERT] Region Mismatch. Data processing is occurring in '%s', but strictly required in '%s'.",
            self.processing_region,
            ", ".join(self.allowed_regions),
        )

    def _is_opted_out(self, user_id: str) -> bool:
        return self.users.get_communication_status(user_id) == CommunicationStatus.OPTED_OUT

    @staticmethod
    def _extract_user_id(body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        user_id = body.get("user_id")
        if user_id is None or user_id == "":
            return None
        return str(user_id)


__all__ = ["ComplianceGateway", "INTERNAL_ERROR_BODY"]
