"""API routes exposing billing functionality."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..accounts import AccountOwner
from ..billing import SubscriptionCommandService
from ..errors import ServiceError
from ..schemas.billing import (
    CancellationResponse,
    CheckoutSessionResponse,
    PaymentSheetResponse,
    PlanChangeResponse,
    SetupIntentResponse,
    SubscriptionAction,
    SubscriptionCommandRequest,
    SubscriptionDetailsResponse,
    SuccessResponse,
    WebhookAckResponse,
)
from ..services.auth import get_account_owner
from ..services.billing import (
    get_event_verifier,
    get_reconciliation_engine,
    get_subscription_command_service,
)

logger = logging.getLogger("billing.webhook")

router = APIRouter(prefix="/api", tags=["billing"])


def process_webhook(raw_body: bytes, signature: Optional[str]) -> WebhookAckResponse:
    """Verify, reconcile, and acknowledge one provider notification."""

    event = get_event_verifier().verify(raw_body, signature)
    result = get_reconciliation_engine().reconcile(event)
    logger.info(
        "Processed provider event %s (%s): %s%s",
        result.event_id,
        result.event_type,
        result.outcome.value,
        " [duplicate]" if result.duplicate else "",
    )
    return WebhookAckResponse.from_result(result)


@router.post("/billing/webhook", response_model=WebhookAckResponse)
async def receive_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAckResponse:
    raw_body = await request.body()
    try:
        return await run_in_threadpool(process_webhook, raw_body, stripe_signature)
    except ServiceError as exc:
        if exc.status_code >= 500:
            logger.warning("Webhook processing deferred for redelivery: %s", exc.message)
        raise exc.to_http_exception() from exc


@router.get("/subscription", response_model=SubscriptionDetailsResponse)
def read_subscription(*, owner: AccountOwner = Depends(get_account_owner)) -> SubscriptionDetailsResponse:
    service = get_subscription_command_service()
    try:
        details = service.get_details(owner)
    except ServiceError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionDetailsResponse.from_details(details)


@router.post("/subscription", response_model=None)
def run_subscription_command(
    payload: SubscriptionCommandRequest,
    *,
    owner: AccountOwner = Depends(get_account_owner),
) -> BaseModel:
    service = get_subscription_command_service()
    try:
        return _dispatch(service, owner, payload)
    except ServiceError as exc:
        raise exc.to_http_exception() from exc


def _dispatch(
    service: SubscriptionCommandService,
    owner: AccountOwner,
    payload: SubscriptionCommandRequest,
) -> BaseModel:
    try:
        action = SubscriptionAction(payload.action)
    except ValueError as exc:
        raise ServiceError(code="unknown_action", message=f"Unknown action: {payload.action}") from exc

    if action == SubscriptionAction.GET_DETAILS:
        return SubscriptionDetailsResponse.from_details(service.get_details(owner))
    if action == SubscriptionAction.CHANGE_PLAN:
        account = service.change_plan(owner, payload.plan)
        return PlanChangeResponse(plan=account.plan, plan_state=account.plan_state)
    if action == SubscriptionAction.CANCEL_SUBSCRIPTION:
        return CancellationResponse.from_result(service.cancel_subscription(owner))
    if action == SubscriptionAction.CREATE_CHECKOUT_SESSION:
        session = service.create_checkout_session(owner, payload.plan, origin=payload.origin)
        return CheckoutSessionResponse.from_checkout(session)
    if action == SubscriptionAction.CREATE_SETUP_INTENT:
        return SetupIntentResponse(client_secret=service.create_setup_intent(owner))
    if action == SubscriptionAction.CREATE_PAYMENT_SHEET:
        return PaymentSheetResponse.from_sheet(service.create_payment_sheet(owner, payload.plan))
    if action == SubscriptionAction.UPDATE_PAYMENT_METHOD:
        service.update_payment_method(owner, payload.payment_method_id)
        return SuccessResponse()
    raise TypeError(f"Unhandled subscription action: {action}")
