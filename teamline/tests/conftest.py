"""Shared in-memory fakes for billing and compliance tests."""
from __future__ import annotations

import hashlib
import hmac
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest

from teamline.app.accounts import (
    Account,
    AccountOwner,
    CommunicationStatus,
    ManagerAlert,
    PlanKey,
    SubscriptionStatus,
    User,
)
from teamline.app.billing import (
    BillingAuditEvent,
    PaymentMethodSummary,
    ProviderCustomerView,
    ProviderSubscription,
    ReconciliationEngine,
    ReconciliationResult,
    RevenueLedgerEntry,
    SubscriptionCommandService,
)
from teamline.app.billing.events import is_live_status
from teamline.app.billing.plans import PlanDetails
from teamline.app.compliance import ComplianceGateway, ConsentService, SafetyConsentClassifier
from teamline.app.errors import ProviderUnavailableError, TransientStoreError

WEBHOOK_SECRET = "whsec_test_secret"


class InMemoryAccountRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.accounts: Dict[str, Account] = {}
        self.injected_conflicts = 0
        self.cas_calls = 0

    def add(self, account: Account) -> Account:
        self.accounts[account.account_id] = account
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self.accounts.get(account_id)

    def get_account_by_customer(self, customer_ref: str) -> Optional[Account]:
        with self._lock:
            for account in self.accounts.values():
                if account.customer_ref == customer_ref:
                    return account
            return None

    def insert_account(self, account: Account) -> Optional[Account]:
        with self._lock:
            if account.account_id in self.accounts:
                return None
            if account.customer_ref and any(
                existing.customer_ref == account.customer_ref for existing in self.accounts.values()
            ):
                return None
            self.accounts[account.account_id] = account
            return account

    def compare_and_set(self, account: Account, *, expected_version: int) -> Optional[Account]:
        with self._lock:
            self.cas_calls += 1
            stored = self.accounts.get(account.account_id)
            if stored is None:
                return None
            if self.injected_conflicts > 0:
                # Simulates another writer committing first.
                self.injected_conflicts -= 1
                self.accounts[stored.account_id] = stored.model_copy(update={"version": stored.version + 1})
                return None
            if stored.version != expected_version:
                return None
            updated = account.model_copy(
                update={
                    "customer_ref": stored.customer_ref or account.customer_ref,
                    "version": stored.version + 1,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self.accounts[account.account_id] = updated
            return updated


class InMemoryUserRepository:
    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.status_lookups = 0

    def add(self, user: User) -> User:
        self.users[user.user_id] = user
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def get_communication_status(self, user_id: str) -> Optional[CommunicationStatus]:
        self.status_lookups += 1
        user = self.users.get(user_id)
        return user.communication_status if user else None

    def set_communication_status(self, user_id: str, status: CommunicationStatus) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update={"communication_status": status})
        self.users[user_id] = updated
        return updated

    def link_account(self, user_id: str, account_id: str) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update={"account_id": account_id})
        self.users[user_id] = updated
        return updated


class InMemoryAlertRepository:
    def __init__(self) -> None:
        self.alerts: List[ManagerAlert] = []
        self.fail_creates = 0

    def create_alert(self, alert: ManagerAlert) -> ManagerAlert:
        if self.fail_creates:
            self.fail_creates -= 1
            raise TransientStoreError(message="alert store offline")
        self.alerts.append(alert)
        return alert

    def list_alerts(self, account_id: str, *, unread_only: bool = False) -> Sequence[ManagerAlert]:
        return [
            alert
            for alert in self.alerts
            if alert.account_id == account_id and (not unread_only or not alert.is_read)
        ]


class InMemoryEventStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.outcomes: Dict[str, ReconciliationResult] = {}

    def get_outcome(self, event_id: str) -> Optional[ReconciliationResult]:
        with self._lock:
            return self.outcomes.get(event_id)

    def record_outcome(self, result: ReconciliationResult, *, payload: dict) -> ReconciliationResult:
        with self._lock:
            return self.outcomes.setdefault(result.event_id, result)


class InMemoryRevenueLedger:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.entries: List[RevenueLedgerEntry] = []
        self.fail_appends = False

    def append(self, entry: RevenueLedgerEntry) -> bool:
        if self.fail_appends:
            raise TransientStoreError(detail={"reason": "OperationalError"})
        with self._lock:
            if any(existing.event_id == entry.event_id for existing in self.entries):
                return False
            self.entries.append(entry)
            return True

    def list_entries(self, account_id: str, *, limit: int = 50) -> Sequence[RevenueLedgerEntry]:
        return [entry for entry in self.entries if entry.account_id == account_id][:limit]


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


class FakeBillingProvider:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self.subscription: Optional[ProviderSubscription] = None
        self.payment_method: Optional[PaymentMethodSummary] = None
        self.plan_updates: List[tuple[str, PlanKey]] = []
        self.checkout_requests: List[Dict[str, Any]] = []
        self.payment_sheet_requests: List[Dict[str, Any]] = []
        self.default_payment_methods: List[tuple[str, str, Optional[str]]] = []
        self.fail_with: Optional[Exception] = None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def get_customer_view(self, customer_id: str) -> ProviderCustomerView:
        self._record("get_customer_view")
        return ProviderCustomerView(subscription=self.subscription, payment_method=self.payment_method)

    def get_live_subscription(
        self,
        customer_id: str,
        *,
        preferred_id: Optional[str] = None,
    ) -> Optional[ProviderSubscription]:
        self._record("get_live_subscription")
        if self.subscription is not None and is_live_status(self.subscription.status):
            return self.subscription
        return None

    def update_subscription_plan(self, subscription: ProviderSubscription, plan: PlanDetails) -> ProviderSubscription:
        self._record("update_subscription_plan")
        self.plan_updates.append((subscription.subscription_id, plan.key))
        return subscription

    def cancel_subscription_at_period_end(self, subscription_id: str) -> ProviderSubscription:
        self._record("cancel_subscription_at_period_end")
        assert self.subscription is not None
        self.subscription = self.subscription.model_copy(update={"cancel_at_period_end": True})
        return self.subscription

    def create_checkout_session(self, **kwargs: Any) -> Dict[str, object]:
        self._record("create_checkout_session")
        self.checkout_requests.append(kwargs)
        return {"id": "cs_test_123", "url": "https://checkout.example/cs_test_123"}

    def create_setup_intent(self, customer_id: str) -> str:
        self._record("create_setup_intent")
        return f"seti_{customer_id}_secret"

    def create_payment_sheet(self, **kwargs: Any) -> Dict[str, str]:
        self._record("create_payment_sheet")
        self.payment_sheet_requests.append(kwargs)
        customer_id = kwargs["customer_id"] or "cus_created"
        return {"client_secret": "pi_123_secret_456", "ephemeral_key": "ek_test_789", "customer_id": customer_id}

    def set_default_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        *,
        subscription_id: Optional[str] = None,
    ) -> None:
        self._record("set_default_payment_method")
        self.default_payment_methods.append((customer_id, payment_method_id, subscription_id))


class FakeGenerationClient:
    def __init__(self, reply: str = "See you at practice at 6pm.") -> None:
        self.reply = reply
        self.prompts: List[tuple[str, str]] = []

    def generate(self, model: str, prompt: str) -> str:
        self.prompts.append((model, prompt))
        return self.reply


class FakeContextProvider:
    def __init__(self, lines: Optional[Dict[str, List[str]]] = None) -> None:
        self.lines = lines or {}

    def recent_context(self, account_id: str, *, limit: int = 5) -> Sequence[str]:
        return self.lines.get(account_id, [])[:limit]


def sign_payload(payload: bytes, *, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def make_envelope(event_id: str, event_type: str, obj: Dict[str, Any], *, created: int = 1_700_000_000) -> Dict[str, Any]:
    return {"id": event_id, "type": event_type, "created": created, "data": {"object": obj}}


@pytest.fixture
def accounts() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def alerts() -> InMemoryAlertRepository:
    return InMemoryAlertRepository()


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def ledger() -> InMemoryRevenueLedger:
    return InMemoryRevenueLedger()


@pytest.fixture
def event_logger() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture
def engine(accounts, users, event_store, ledger, event_logger) -> ReconciliationEngine:
    return ReconciliationEngine(
        accounts=accounts,
        users=users,
        events=event_store,
        ledger=ledger,
        event_logger=event_logger,
        max_attempts=3,
    )


@pytest.fixture
def command_service(accounts, provider, event_logger) -> SubscriptionCommandService:
    return SubscriptionCommandService(
        accounts=accounts,
        provider=provider,
        event_logger=event_logger,
        app_base_url="https://app.example",
    )


@pytest.fixture
def linked_account(accounts) -> Account:
    return accounts.add(
        Account(
            account_id="acct-1",
            name="Falcons",
            customer_ref="cus_123",
            subscription_ref="sub_1",
            plan=PlanKey.STARTER,
            status=SubscriptionStatus.ACTIVE,
        )
    )


@pytest.fixture
def owner() -> AccountOwner:
    return AccountOwner(user_id="user-1", account_id="acct-1", email="coach@example.com")


@pytest.fixture
def provider_unavailable() -> ProviderUnavailableError:
    return ProviderUnavailableError(status_code=504, message="Billing provider timed out, please retry")


@pytest.fixture
def sign():
    return sign_payload


@pytest.fixture
def envelope():
    return make_envelope


@pytest.fixture
def generator() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def context_provider() -> FakeContextProvider:
    return FakeContextProvider({"acct-1": ["Practice on Tue 18:00 at Riverside Field"]})


@pytest.fixture
def consent(users, alerts) -> ConsentService:
    return ConsentService(users=users, alerts=alerts)


@pytest.fixture
def classifier(consent, generator, context_provider) -> SafetyConsentClassifier:
    return SafetyConsentClassifier(consent=consent, generator=generator, context=context_provider, model="gemini-pro")


@pytest.fixture
def gateway(users) -> ComplianceGateway:
    return ComplianceGateway(users=users, processing_region="eu-central-1", allowed_regions=("eu-central-1",))


@pytest.fixture
def player(users) -> User:
    return users.add(
        User(user_id="player-1", account_id="acct-1", email="sam@example.com", first_name="Sam", last_name="Rivera")
    )
