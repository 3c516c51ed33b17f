"""API routes for inbound messages and communication consent."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from ..accounts import AccountOwner
from ..compliance import GatewayRequest, GatewayResponse
from ..schemas.messages import ConsentStatusResponse, MessageReply
from ..services.accounts import get_user_repository
from ..services.auth import get_account_owner
from ..services.messages import get_classifier, get_compliance_gateway, get_consent_service

logger = logging.getLogger("compliance")

router = APIRouter(prefix="/api", tags=["messages"])

_JSON_HEADERS = {"Content-Type": "application/json"}


def answer_message(request: GatewayRequest) -> GatewayResponse:
    """Innermost handler: validate the payload and let the classifier reply."""

    user_id = request.body.get("user_id")
    prompt = request.body.get("prompt")
    if not user_id or not prompt:
        return GatewayResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            body={"error": "Missing user_id or prompt"},
            headers=dict(_JSON_HEADERS),
        )

    decision = get_classifier().handle(str(user_id), str(prompt))
    reply = MessageReply(result=decision.result, model_used=decision.model_used)
    return GatewayResponse(status_code=status.HTTP_200_OK, body=reply.model_dump(), headers=dict(_JSON_HEADERS))


def handle_message(method: str, body: Mapping[str, Any], headers: Mapping[str, str]) -> GatewayResponse:
    handler = get_compliance_gateway().wrap(answer_message)
    return handler(GatewayRequest(method=method, body=dict(body), headers=dict(headers)))


def _parse_body(raw: bytes) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.info("Inbound message body is not valid JSON")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def to_http_response(response: GatewayResponse) -> Response:
    if isinstance(response.body, str):
        return PlainTextResponse(response.body, status_code=response.status_code, headers=response.headers)
    return JSONResponse(content=response.body, status_code=response.status_code, headers=response.headers)


@router.api_route("/messages", methods=["POST", "OPTIONS"])
async def receive_message(request: Request) -> Response:
    raw = await request.body()
    response = await run_in_threadpool(
        handle_message,
        request.method,
        _parse_body(raw),
        dict(request.headers),
    )
    return to_http_response(response)


@router.post("/compliance/users/{user_id}/resubscribe", response_model=ConsentStatusResponse)
def resubscribe_user(
    user_id: str,
    *,
    owner: AccountOwner = Depends(get_account_owner),
) -> ConsentStatusResponse:
    user = get_user_repository().get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not owner.account_id or user.account_id != owner.account_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot change consent for another team")

    updated = get_consent_service().resubscribe(user_id)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    logger.info("Owner %s re-subscribed user %s", owner.user_id, user_id)
    return ConsentStatusResponse(
        user_id=updated.user_id,
        communication_status=updated.communication_status,
        account_id=updated.account_id,
    )
