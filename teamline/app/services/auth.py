"""Bearer token authentication for account owners."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status
from jose import JWTError, jwt

from ...config import get_settings
from ..accounts import AccountOwner

logger = logging.getLogger("auth")

DEFAULT_TOKEN_TTL = timedelta(hours=1)


def create_owner_token(owner: AccountOwner, *, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    payload = {"sub": owner.user_id}
    if owner.account_id:
        payload["account_id"] = owner.account_id
    if owner.email:
        payload["email"] = owner.email
    payload["exp"] = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL)
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def resolve_owner_from_token(token: str) -> Optional[AccountOwner]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if not subject:
        return None
    account_id = payload.get("account_id")
    return AccountOwner(
        user_id=str(subject),
        account_id=str(account_id) if account_id else None,
        email=payload.get("email"),
    )


def get_account_owner(authorization: Optional[str] = Header(None)) -> AccountOwner:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    owner = resolve_owner_from_token(token.strip())
    if owner is None:
        logger.info("Rejected bearer token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return owner


__all__ = ["create_owner_token", "get_account_owner", "resolve_owner_from_token"]
