"""Application wiring for the compliance gateway and message classifier."""
from __future__ import annotations

import logging
from functools import lru_cache

from ...config import get_settings
from ..compliance import (
    ComplianceGateway,
    ConsentService,
    GenerationClient,
    HttpGenerationClient,
    PostgresScheduleContextProvider,
    SafetyConsentClassifier,
)
from .accounts import get_alert_repository, get_user_repository

logger = logging.getLogger("compliance")


class LocalEchoGenerationClient(GenerationClient):
    """Stand-in generator for local development when no generation API is configured."""

    def generate(self, model: str, prompt: str) -> str:
        logger.debug("Local generation for model %s with prompt prefix %r", model, prompt[:50])
        return f"[Response from {model}]: Processed your request."


@lru_cache(maxsize=1)
def get_generation_client() -> GenerationClient:
    settings = get_settings()
    if not settings.generation_api_url:
        logger.warning("GENERATION_API_URL is not set; replies come from the local echo generator")
        return LocalEchoGenerationClient()
    return HttpGenerationClient(
        api_url=settings.generation_api_url,
        api_key=settings.generation_api_key,
        timeout_seconds=settings.generation_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_consent_service() -> ConsentService:
    return ConsentService(users=get_user_repository(), alerts=get_alert_repository())


@lru_cache(maxsize=1)
def get_classifier() -> SafetyConsentClassifier:
    settings = get_settings()
    return SafetyConsentClassifier(
        consent=get_consent_service(),
        generator=get_generation_client(),
        context=PostgresScheduleContextProvider(),
        model=settings.generation_model,
        context_limit=settings.context_lookback_limit,
    )


@lru_cache(maxsize=1)
def get_compliance_gateway() -> ComplianceGateway:
    settings = get_settings()
    return ComplianceGateway(
        users=get_user_repository(),
        processing_region=settings.processing_region,
        allowed_regions=settings.allowed_regions,
    )


__all__ = [
    "LocalEchoGenerationClient",
    "get_classifier",
    "get_compliance_gateway",
    "get_consent_service",
    "get_generation_client",
]
