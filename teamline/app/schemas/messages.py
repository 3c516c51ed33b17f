"""API schemas for the message and consent endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from ..accounts.models import CommunicationStatus


class MessageReply(BaseModel):
    result: str
    model_used: str


class ConsentStatusResponse(BaseModel):
    user_id: str
    communication_status: CommunicationStatus
    account_id: Optional[str] = None
