"""Consent, safety, and disclosure rules for AI-generated messages."""

from .classifier import SafetyConsentClassifier, is_opt_out, mentions_emergency
from .consent import ConsentService
from .gateway import ComplianceGateway
from .generation import (
    ContextProvider,
    GenerationClient,
    GenerationError,
    HttpGenerationClient,
    PostgresScheduleContextProvider,
    build_prompt,
)
from .models import (
    AI_DISCLOSURE_HEADER,
    CORS_HEADERS,
    ClassifierDecision,
    DecisionKind,
    GatewayRequest,
    GatewayResponse,
)

__all__ = [
    "AI_DISCLOSURE_HEADER",
    "CORS_HEADERS",
    "ClassifierDecision",
    "ComplianceGateway",
    "ConsentService",
    "ContextProvider",
    "DecisionKind",
    "GatewayRequest",
    "GatewayResponse",
    "GenerationClient",
    "GenerationError",
    "HttpGenerationClient",
    "PostgresScheduleContextProvider",
    "SafetyConsentClassifier",
    "build_prompt",
    "is_opt_out",
    "mentions_emergency",
]
