"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..accounts.models import PlanKey, PlanState
from ..billing import (
    CancellationResult,
    CheckoutSession,
    PaymentMethodSummary,
    PaymentSheet,
    ReconciliationResult,
    SubscriptionDetails,
)


class SubscriptionAction(str, Enum):
    GET_DETAILS = "get_details"
    CHANGE_PLAN = "change_plan"
    CANCEL_SUBSCRIPTION = "cancel_subscription"
    CREATE_CHECKOUT_SESSION = "create_checkout_session"
    CREATE_SETUP_INTENT = "create_setup_intent"
    CREATE_PAYMENT_SHEET = "create_payment_sheet"
    UPDATE_PAYMENT_METHOD = "update_payment_method"


class SubscriptionCommandRequest(BaseModel):
    # Kept as a plain string so unknown actions get a domain error instead of a 422.
    action: str
    plan: Optional[str] = None
    payment_method_id: Optional[str] = Field(default=None, alias="paymentMethodId")
    origin: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionDetailsResponse(BaseModel):
    plan: PlanKey
    plan_state: PlanState
    status: str
    current_period_end: Optional[datetime] = None
    payment_method: Optional[PaymentMethodSummary] = None

    @classmethod
    def from_details(cls, details: SubscriptionDetails) -> "SubscriptionDetailsResponse":
        return cls(
            plan=details.plan,
            plan_state=details.plan_state,
            status=details.status,
            current_period_end=details.current_period_end,
            payment_method=details.payment_method,
        )


class PlanChangeResponse(BaseModel):
    success: bool = True
    plan: PlanKey
    plan_state: PlanState


class CancellationResponse(BaseModel):
    subscription_id: str
    cancel_at_period_end: bool
    current_period_end: Optional[datetime] = None
    message: str

    @classmethod
    def from_result(cls, result: CancellationResult) -> "CancellationResponse":
        return cls(
            subscription_id=result.subscription_id,
            cancel_at_period_end=result.cancel_at_period_end,
            current_period_end=result.current_period_end,
            message=result.message,
        )


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    url: str
    plan: PlanKey

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_checkout(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        return cls(session_id=session.session_id, url=session.checkout_url, plan=session.plan)


class SetupIntentResponse(BaseModel):
    client_secret: str = Field(alias="clientSecret")

    model_config = ConfigDict(populate_by_name=True)


class PaymentSheetResponse(BaseModel):
    payment_intent: str = Field(alias="paymentIntent")
    ephemeral_key: str = Field(alias="ephemeralKey")
    customer: str
    plan: PlanKey

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_sheet(cls, sheet: PaymentSheet) -> "PaymentSheetResponse":
        return cls(
            payment_intent=sheet.client_secret,
            ephemeral_key=sheet.ephemeral_key,
            customer=sheet.customer_id,
            plan=sheet.plan,
        )


class SuccessResponse(BaseModel):
    success: bool = True


class WebhookAckResponse(BaseModel):
    received: bool = True
    duplicate: bool = False
    outcome: str

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> "WebhookAckResponse":
        return cls(duplicate=result.duplicate, outcome=result.outcome.value)
