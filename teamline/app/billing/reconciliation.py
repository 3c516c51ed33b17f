"""Reconciliation of provider events into the local subscription ledger."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from ..accounts.models import Account, PlanKey, PlanState, SubscriptionStatus
from ..accounts.repository import AccountRepository, UserRepository
from ..errors import TransientStoreError
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    ChargeSucceeded,
    IgnoredEvent,
    ProviderEvent,
    ReconciliationOutcome,
    ReconciliationResult,
    RevenueLedgerEntry,
    SubscriptionChanged,
    SubscriptionDeleted,
)
from .plans import get_plan_details

logger = logging.getLogger("billing.reconciliation")


class EventStore(Protocol):
    """Idempotency store mapping provider event ids to their recorded outcome."""

    def get_outcome(self, event_id: str) -> Optional[ReconciliationResult]:
        ...

    def record_outcome(self, result: ReconciliationResult, *, payload: dict) -> ReconciliationResult:
        ...


class RevenueLedger(Protocol):
    """Append-only ledger of reconciled charges."""

    def append(self, entry: RevenueLedgerEntry) -> bool:
        """Append ``entry``; ``False`` when an entry for the same event already exists."""

    def list_entries(self, account_id: str, *, limit: int = 50) -> Sequence[RevenueLedgerEntry]:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


Derivation = Callable[[Account], Optional[Account]]


@dataclass(slots=True)
class ReconciliationEngine:
    """Applies verified provider events to accounts exactly once.

    Every transition re-derives the complete target state from the event
    payload and writes it with a compare-and-set on the account version, so
    duplicate, concurrent and out-of-order deliveries converge on the newest
    provider state.
    """

    accounts: AccountRepository
    users: UserRepository
    events: EventStore
    ledger: RevenueLedger
    event_logger: BillingEventLogger
    max_attempts: int = 5

    def reconcile(self, event: ProviderEvent) -> ReconciliationResult:
        previous = self.events.get_outcome(event.event_id)
        if previous is not None:
            logger.info("Skipping duplicate provider event %s (%s)", event.event_id, previous.outcome.value)
            return previous.model_copy(update={"duplicate": True})

        if isinstance(event, ChargeSucceeded):
            result = self._apply_charge(event)
        elif isinstance(event, SubscriptionChanged):
            result = self._apply_subscription_changed(event)
        elif isinstance(event, SubscriptionDeleted):
            result = self._apply_subscription_deleted(event)
        elif isinstance(event, IgnoredEvent):
            logger.info("Ignoring provider event %s of type %s", event.event_id, event.event_type)
            result = self._result(event, ReconciliationOutcome.IGNORED)
        else:
            raise TypeError(f"Unhandled provider event variant: {type(event).__name__}")

        # Recorded last: a failure above leaves the event unprocessed so redelivery retries it.
        return self.events.record_outcome(result, payload=event.payload)

    def _apply_charge(self, event: ChargeSucceeded) -> ReconciliationResult:
        account = self._resolve_account(
            customer_ref=event.customer_ref,
            account_id=event.account_id,
            user_id=event.user_id,
        )
        if account is None and not (event.customer_ref or event.user_id):
            logger.error("Charge %s carries no customer or user reference", event.charge_id)
            return self._result(event, ReconciliationOutcome.UNMATCHED)

        changed = False
        if account is None:
            account, changed = self._create_account(event)

        if not changed:
            if account.customer_ref and event.customer_ref and account.customer_ref != event.customer_ref:
                logger.error(
                    "Account %s is linked to customer %s; ignoring relink to %s",
                    account.account_id,
                    account.customer_ref,
                    event.customer_ref,
                )

            def derive(current: Account) -> Optional[Account]:
                if self._is_stale(current, event):
                    return None
                if current.is_canceled and event.subscription_ref in (None, current.subscription_ref):
                    # Only a charge that brings a new subscription revives a canceled account.
                    return None
                return current.model_copy(
                    update={
                        "customer_ref": current.customer_ref or event.customer_ref,
                        "subscription_ref": event.subscription_ref or current.subscription_ref,
                        "plan": event.plan or current.plan or PlanKey.lowest(),
                        "plan_state": PlanState.CONFIRMED,
                        "status": SubscriptionStatus.ACTIVE,
                        "last_event_at": event.created_at,
                    }
                )

            account, changed = self._update_account(account.account_id, derive)
            if changed:
                self._audit(BillingAuditEventType.SUBSCRIPTION_ACTIVATED, account, event)

        if event.user_id:
            self._link_user(event.user_id, account.account_id)

        recorded = self._record_revenue(account, event) if event.books_revenue else False
        outcome = ReconciliationOutcome.APPLIED if changed else ReconciliationOutcome.STALE
        return self._result(event, outcome, account_id=account.account_id, ledger_entry_recorded=recorded)

    def _apply_subscription_changed(self, event: SubscriptionChanged) -> ReconciliationResult:
        account = self._resolve_account(customer_ref=event.customer_ref, account_id=event.account_id)
        if account is None:
            logger.warning(
                "No account for subscription %s (customer=%s)", event.subscription_ref, event.customer_ref
            )
            return self._result(event, ReconciliationOutcome.UNMATCHED)

        def derive(current: Account) -> Optional[Account]:
            if self._is_stale(current, event):
                return None
            if current.is_canceled and current.subscription_ref == event.subscription_ref:
                # Canceled is terminal for that subscription; only a new one revives the account.
                return None
            update = {
                "customer_ref": current.customer_ref or event.customer_ref,
                "subscription_ref": event.subscription_ref,
                "status": event.status,
                "current_period_end": event.current_period_end,
                "last_event_at": event.created_at,
            }
            if event.plan is not None:
                update["plan"] = event.plan
                update["plan_state"] = PlanState.CONFIRMED
            return current.model_copy(update=update)

        stored, changed = self._update_account(account.account_id, derive)
        if not changed:
            return self._result(event, ReconciliationOutcome.STALE, account_id=stored.account_id)

        audit_type = (
            BillingAuditEventType.SUBSCRIPTION_ACTIVATED
            if stored.status == SubscriptionStatus.ACTIVE
            else BillingAuditEventType.SUBSCRIPTION_UPDATED
        )
        self._audit(audit_type, stored, event)
        return self._result(event, ReconciliationOutcome.APPLIED, account_id=stored.account_id)

    def _apply_subscription_deleted(self, event: SubscriptionDeleted) -> ReconciliationResult:
        account = self._resolve_account(customer_ref=event.customer_ref, account_id=event.account_id)
        if account is None:
            logger.warning("No account for deleted subscription %s", event.subscription_ref)
            return self._result(event, ReconciliationOutcome.UNMATCHED)

        def derive(current: Account) -> Optional[Account]:
            if self._is_stale(current, event):
                return None
            if current.subscription_ref and current.subscription_ref != event.subscription_ref:
                # An older subscription ended after the account moved to a new one.
                return None
            return current.model_copy(
                update={
                    "customer_ref": current.customer_ref or event.customer_ref,
                    "subscription_ref": event.subscription_ref,
                    "status": SubscriptionStatus.CANCELED,
                    "plan": PlanKey.lowest(),
                    "plan_state": PlanState.CONFIRMED,
                    "current_period_end": event.current_period_end or current.current_period_end,
                    "last_event_at": event.created_at,
                }
            )

        stored, changed = self._update_account(account.account_id, derive)
        if not changed:
            return self._result(event, ReconciliationOutcome.STALE, account_id=stored.account_id)
        self._audit(BillingAuditEventType.SUBSCRIPTION_CANCELED, stored, event)
        return self._result(event, ReconciliationOutcome.APPLIED, account_id=stored.account_id)

    def _resolve_account(
        self,
        *,
        customer_ref: Optional[str],
        account_id: Optional[str],
        user_id: Optional[str] = None,
    ) -> Optional[Account]:
        if customer_ref:
            account = self.accounts.get_account_by_customer(customer_ref)
            if account is not None:
                return account
        if account_id:
            account = self.accounts.get_account(account_id)
            if account is not None:
                return account
        if user_id:
            user = self.users.get_user(user_id)
            if user is not None and user.account_id:
                return self.accounts.get_account(user.account_id)
        return None

    def _create_account(self, event: ChargeSucceeded) -> Tuple[Account, bool]:
        account = Account(
            account_id=str(uuid4()),
            name=f"{event.email}'s Team" if event.email else "New Team",
            customer_ref=event.customer_ref,
            subscription_ref=event.subscription_ref,
            plan=event.plan or PlanKey.lowest(),
            plan_state=PlanState.CONFIRMED,
            status=SubscriptionStatus.ACTIVE,
            last_event_at=event.created_at,
        )
        stored = self.accounts.insert_account(account)
        if stored is None:
            # Lost a race with a concurrent delivery for the same customer.
            existing = self.accounts.get_account_by_customer(event.customer_ref) if event.customer_ref else None
            if existing is None:
                raise TransientStoreError(message="Account insert conflicted but no account was found")
            return existing, False

        logger.info("Created account %s for customer %s", stored.account_id, stored.customer_ref)
        self._audit(BillingAuditEventType.ACCOUNT_CREATED, stored, event)
        return stored, True

    def _update_account(self, account_id: str, derive: Derivation) -> Tuple[Account, bool]:
        for attempt in range(1, self.max_attempts + 1):
            current = self.accounts.get_account(account_id)
            if current is None:
                raise TransientStoreError(
                    message="Account disappeared during reconciliation",
                    detail={"account_id": account_id},
                )
            target = derive(current)
            if target is None or target == current:
                return current, False
            stored = self.accounts.compare_and_set(target, expected_version=current.version)
            if stored is not None:
                return stored, True
            logger.info(
                "Version conflict on account %s (attempt %s/%s); re-evaluating",
                account_id,
                attempt,
                self.max_attempts,
            )
        raise TransientStoreError(
            message="Account update kept conflicting with concurrent writers",
            detail={"account_id": account_id},
        )

    def _link_user(self, user_id: str, account_id: str) -> None:
        user = self.users.get_user(user_id)
        if user is None:
            logger.warning("Charge references unknown user %s", user_id)
            return
        if user.account_id is None:
            self.users.link_account(user_id, account_id)
        elif user.account_id != account_id:
            logger.warning("User %s already belongs to account %s", user_id, user.account_id)

    def _record_revenue(self, account: Account, event: ChargeSucceeded) -> bool:
        plan = event.plan or account.plan or PlanKey.lowest()
        entry = RevenueLedgerEntry(
            entry_id=str(uuid4()),
            account_id=account.account_id,
            event_id=event.event_id,
            amount_cents=event.amount_cents,
            currency=event.currency,
            description=f"Payment for {get_plan_details(plan).name} plan",
        )
        appended = self.ledger.append(entry)
        if appended:
            self._audit(
                BillingAuditEventType.REVENUE_RECORDED,
                account,
                event,
                metadata={"amount_cents": str(entry.amount_cents), "currency": entry.currency},
            )
        else:
            logger.info("Revenue for event %s already booked", event.event_id)
        return appended

    @staticmethod
    def _is_stale(current: Account, event: ProviderEvent) -> bool:
        return current.last_event_at is not None and event.created_at < current.last_event_at

    def _audit(
        self,
        event_type: BillingAuditEventType,
        account: Account,
        event: ProviderEvent,
        *,
        metadata: Optional[dict] = None,
    ) -> None:
        self.event_logger.log(
            BillingAuditEvent(
                event_type=event_type,
                account_id=account.account_id,
                actor_id="provider",
                metadata={"event_id": event.event_id, **(metadata or {})},
            )
        )

    @staticmethod
    def _result(
        event: ProviderEvent,
        outcome: ReconciliationOutcome,
        *,
        account_id: Optional[str] = None,
        ledger_entry_recorded: bool = False,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome,
            account_id=account_id,
            ledger_entry_recorded=ledger_entry_recorded,
        )


__all__ = ["BillingEventLogger", "EventStore", "ReconciliationEngine", "RevenueLedger"]
