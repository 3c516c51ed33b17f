"""Catalogue of purchasable plans and their monthly prices."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..accounts.models import PlanKey


@dataclass(frozen=True)
class PlanDetails:
    key: PlanKey
    name: str
    amount_cents: int
    currency: str = "usd"
    interval: str = "month"
    features: Tuple[str, ...] = ()


PLAN_CATALOG: Dict[PlanKey, PlanDetails] = {
    PlanKey.STARTER: PlanDetails(
        key=PlanKey.STARTER,
        name="Starter Pack",
        amount_cents=9900,
        features=(
            "Up to 50 active players",
            "Basic AI Auto-Replies",
            "PDF/Excel Schedule Upload",
            "Email Support",
        ),
    ),
    PlanKey.ALL_STAR: PlanDetails(
        key=PlanKey.ALL_STAR,
        name="All Star",
        amount_cents=19900,
        features=(
            "Unlimited players",
            "Advanced AI Reasoning",
            "Calendar & Flight Sync",
            "Priority Support",
            "Usage Analytics",
        ),
    ),
    PlanKey.HALL_OF_FAME: PlanDetails(
        key=PlanKey.HALL_OF_FAME,
        name="Hall of Fame",
        amount_cents=24900,
        features=(
            "Everything in All Star",
            "Custom Integrations",
            "Dedicated Account Manager",
            "White-glove Onboarding",
            "SLA Guarantee",
        ),
    ),
}


def get_plan_details(plan: PlanKey) -> PlanDetails:
    return PLAN_CATALOG[plan]


def plan_from_metadata(value: object, *, default: Optional[PlanKey] = None) -> Optional[PlanKey]:
    """Best-effort plan lookup for provider metadata; unknown names fall back to ``default``."""

    if not value:
        return default
    try:
        return PlanKey.parse(value)
    except ValueError:
        return default


__all__ = ["PLAN_CATALOG", "PlanDetails", "get_plan_details", "plan_from_metadata"]
