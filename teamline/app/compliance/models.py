"""Request, response, and decision types for the compliance layer."""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field

SYSTEM_MODEL = "system-compliance"

OPT_OUT_KEYWORDS = frozenset({"STOP", "UNSUBSCRIBE"})
EMERGENCY_KEYWORDS = ("911", "112", "SUICIDE", "FIRE", "POLICE", "AMBULANCE", "EMERGENCY")

OPT_OUT_CONFIRMATION = (
    "You have been unsubscribed. You will no longer receive messages. To opt back in, reply START."
)
EMERGENCY_REPLY = (
    "⚠️ I cannot contact emergency services. Please dial 911 or 112 directly if you are in danger."
)

CORS_HEADERS: Mapping[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}
AI_DISCLOSURE_HEADER = "X-AI-Generated"


class DecisionKind(str, Enum):
    """Which branch of the classifier produced a reply."""

    OPT_OUT = "opt_out"
    EMERGENCY = "emergency"
    GENERATED = "generated"


class ClassifierDecision(BaseModel):
    kind: DecisionKind
    result: str
    model_used: str

    model_config = ConfigDict(frozen=True)


class GatewayRequest(BaseModel):
    """Transport-neutral inbound request seen by the compliance gateway."""

    method: str = "POST"
    body: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class GatewayResponse(BaseModel):
    status_code: int = 200
    body: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


GatewayHandler = Callable[[GatewayRequest], GatewayResponse]


__all__ = [
    "AI_DISCLOSURE_HEADER",
    "CORS_HEADERS",
    "ClassifierDecision",
    "DecisionKind",
    "EMERGENCY_KEYWORDS",
    "EMERGENCY_REPLY",
    "GatewayHandler",
    "GatewayRequest",
    "GatewayResponse",
    "OPT_OUT_CONFIRMATION",
    "OPT_OUT_KEYWORDS",
    "SYSTEM_MODEL",
]
