"""Runtime configuration helpers."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Settings:
    """Externally supplied configuration for billing and compliance."""

    stripe_secret_key: str
    stripe_webhook_secret: str
    webhook_tolerance_seconds: int
    provider_timeout_seconds: float
    processing_region: str
    allowed_regions: Tuple[str, ...]
    generation_api_url: str
    generation_api_key: Optional[str]
    generation_model: str
    generation_timeout_seconds: float
    context_lookback_limit: int
    app_base_url: str
    jwt_secret_key: str
    jwt_algorithm: str
    reconcile_max_attempts: int
    cors_allow_origins: Tuple[str, ...]
    db: Dict[str, Any] = field(default_factory=dict)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_list(value: Optional[str], *, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None or not value.strip():
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_connect_timeout(raw_value: Optional[str]) -> int:
    timeout = _to_float(raw_value, default=5.0)
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Load :class:`Settings` from environment variables."""

    env_mapping = os.environ if env is None else env

    tolerance = _to_int(env_mapping.get("WEBHOOK_TOLERANCE_SECONDS"), default=300)
    if tolerance <= 0:
        raise ValueError("WEBHOOK_TOLERANCE_SECONDS must be positive")

    provider_timeout = _to_float(env_mapping.get("PROVIDER_TIMEOUT_SECONDS"), default=10.0)
    if provider_timeout <= 0:
        raise ValueError("PROVIDER_TIMEOUT_SECONDS must be positive")

    return Settings(
        stripe_secret_key=env_mapping.get("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET", ""),
        webhook_tolerance_seconds=tolerance,
        provider_timeout_seconds=provider_timeout,
        processing_region=(env_mapping.get("PROCESSING_REGION") or "unknown").strip(),
        allowed_regions=_to_list(env_mapping.get("ALLOWED_REGIONS"), default=("eu-central-1",)),
        generation_api_url=env_mapping.get("GENERATION_API_URL", ""),
        generation_api_key=env_mapping.get("GENERATION_API_KEY") or None,
        generation_model=env_mapping.get("GENERATION_MODEL", "gemini-pro"),
        generation_timeout_seconds=max(
            1.0, _to_float(env_mapping.get("GENERATION_TIMEOUT_SECONDS"), default=30.0)
        ),
        context_lookback_limit=max(0, _to_int(env_mapping.get("CONTEXT_LOOKBACK_LIMIT"), default=5)),
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:5173").rstrip("/"),
        jwt_secret_key=env_mapping.get("JWT_SECRET_KEY", "dev-secret-change-me"),
        jwt_algorithm=env_mapping.get("JWT_ALGORITHM", "HS256"),
        reconcile_max_attempts=max(1, _to_int(env_mapping.get("RECONCILE_MAX_ATTEMPTS"), default=5)),
        cors_allow_origins=_to_list(env_mapping.get("CORS_ALLOW_ORIGINS"), default=("*",)),
        db=dict(
            host=env_mapping.get("DB_HOST", "127.0.0.1"),
            port=_to_int(env_mapping.get("DB_PORT"), default=5432),
            dbname=env_mapping.get("DB_NAME", "teamline"),
            user=env_mapping.get("DB_USER", "teamline"),
            password=env_mapping.get("DB_PASSWORD", "teamline"),
            connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT")),
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


__all__ = ["Settings", "get_settings", "load_settings"]
