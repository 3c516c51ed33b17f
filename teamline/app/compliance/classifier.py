"""Safety and consent screening applied before any text is generated."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from .consent import ConsentService
from .generation import ContextProvider, GenerationClient, build_prompt
from .models import (
    EMERGENCY_KEYWORDS,
    EMERGENCY_REPLY,
    OPT_OUT_CONFIRMATION,
    OPT_OUT_KEYWORDS,
    SYSTEM_MODEL,
    ClassifierDecision,
    DecisionKind,
)

logger = logging.getLogger("compliance.classifier")


def is_opt_out(text: str) -> bool:
    return text.strip().upper() in OPT_OUT_KEYWORDS


def mentions_emergency(text: str) -> bool:
    upper = text.upper()
    return any(keyword in upper for keyword in EMERGENCY_KEYWORDS)


@dataclass(slots=True)
class SafetyConsentClassifier:
    """Routes a message to the opt-out flow, the emergency deflection, or generation.

    Opt-out is an exact whole-message match and wins over everything else;
    emergency keywords match anywhere in the text. Neither short-circuit ever
    reaches the generation service.
    """

    consent: ConsentService
    generator: GenerationClient
    context: ContextProvider
    model: str = "gemini-pro"
    context_limit: int = 5

    def handle(self, user_id: str, text: str) -> ClassifierDecision:
        opt_out = is_opt_out(text)
        emergency = mentions_emergency(text)

        if opt_out:
            self.consent.opt_out(user_id)
            return ClassifierDecision(kind=DecisionKind.OPT_OUT, result=OPT_OUT_CONFIRMATION, model_used=SYSTEM_MODEL)

        if emergency:
            logger.info("Emergency context detected for user %s; deflecting", user_id)
            return ClassifierDecision(kind=DecisionKind.EMERGENCY, result=EMERGENCY_REPLY, model_used=SYSTEM_MODEL)

        prompt = build_prompt(text, self._context_for(user_id))
        reply = self.generator.generate(self.model, prompt)
        return ClassifierDecision(kind=DecisionKind.GENERATED, result=reply, model_used=self.model)

    def _context_for(self, user_id: str) -> Sequence[str]:
        user = self.consent.users.get_user(user_id)
        if user is None or not user.account_id:
            return ()
        return self.context.recent_context(user.account_id, limit=self.context_limit)


__all__ = ["SafetyConsentClassifier", "is_opt_out", "mentions_emergency"]
