"""Communication consent changes and the manager alerts they raise."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from ..accounts.models import AlertType, CommunicationStatus, ManagerAlert, User
from ..accounts.repository import AlertRepository, UserRepository

logger = logging.getLogger("compliance.consent")


def opt_out_alert_message(user: User) -> str:
    return (
        f"Player {user.display_name} has opted out of WhatsApp updates. "
        "They will no longer receive AI responses."
    )


@dataclass(slots=True)
class ConsentService:
    users: UserRepository
    alerts: AlertRepository

    def opt_out(self, user_id: str) -> Optional[ManagerAlert]:
        """Mark ``user_id`` as opted out and alert the account manager.

        Returns the created alert, or ``None`` when the user is unknown or not
        yet linked to an account.
        """

        user = self.users.get_user(user_id)
        if user is None:
            logger.warning("Opt-out requested for unknown user %s", user_id)
            return None

        # The alert is written before the kill switch flips: once opted out, a
        # repeated STOP never reaches this service again.
        alert: Optional[ManagerAlert] = None
        if user.account_id:
            alert = self.alerts.create_alert(
                ManagerAlert(
                    alert_id=str(uuid4()),
                    account_id=user.account_id,
                    alert_type=AlertType.OPT_OUT,
                    message=opt_out_alert_message(user),
                )
            )

        self.users.set_communication_status(user_id, CommunicationStatus.OPTED_OUT)
        logger.info("User %s opted out", user_id)
        return alert

    def resubscribe(self, user_id: str) -> Optional[User]:
        updated = self.users.set_communication_status(user_id, CommunicationStatus.SUBSCRIBED)
        if updated is None:
            logger.warning("Resubscribe requested for unknown user %s", user_id)
        else:
            logger.info("User %s opted back in", user_id)
        return updated

    def is_opted_out(self, user_id: str) -> bool:
        return self.users.get_communication_status(user_id) == CommunicationStatus.OPTED_OUT


__all__ = ["ConsentService", "opt_out_alert_message"]
