import os
from datetime import datetime, timedelta
from typing import Callable, Generator

# Settings are read at import time
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["INTERNAL_API_TOKEN"] = "test-internal-token"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["FRONTEND_URL"] = "https://waitlist.test"

import pytest
import structlog
from fastapi.testclient import TestClient

from waitlist.api.main import app
from waitlist.auth.accounts import AccountService
from waitlist.auth.local import LocalAuthService
from waitlist.auth.models import UserAccount
from waitlist.referral.eligibility import EligibilityEvaluator
from waitlist.referral.issuer import CreditIssuer
from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.models import ReferralTracking
from waitlist.referral.policy import CreditPolicy
from waitlist.storage.db import Database, get_database

INTERNAL_HEADERS = {"X-Internal-Token": "test-internal-token"}


class TickingClock:
    """Clock that moves one second forward on every reading."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture()
def database() -> Generator[Database, None, None]:
    """Fresh in-memory database per test."""
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def policy() -> CreditPolicy:
    return CreditPolicy()


@pytest.fixture()
def ledger(database: Database, clock: TickingClock, policy: CreditPolicy) -> ReferralLedger:
    return ReferralLedger(database, credit_window=policy.credit_window, clock=clock)


@pytest.fixture()
def accounts(database: Database) -> AccountService:
    return AccountService(database)


@pytest.fixture()
def evaluator(ledger: ReferralLedger, policy: CreditPolicy) -> EligibilityEvaluator:
    return EligibilityEvaluator(ledger, policy)


@pytest.fixture()
def issuer(ledger: ReferralLedger, evaluator: EligibilityEvaluator, policy: CreditPolicy) -> CreditIssuer:
    return CreditIssuer(ledger, evaluator, policy)


@pytest.fixture()
def make_user(accounts: AccountService) -> Callable[..., UserAccount]:
    counter = {"n": 0}

    def _make_user(user_type: str = "waitlist", name: str | None = None) -> UserAccount:
        counter["n"] += 1
        return accounts.create_user(
            f"user{counter['n']}@example.com",
            name=name or f"User {counter['n']}",
            user_type=user_type,
        )

    return _make_user


@pytest.fixture()
def add_referrals(make_user, ledger: ReferralLedger) -> Callable[..., list[ReferralTracking]]:
    """Create referred users for a referrer; ``paying`` of them become paying."""

    def _add_referrals(
        referrer: UserAccount,
        count: int,
        paying: int | None = None,
        amount: float = 20.0,
        tier: str = "pro",
    ) -> list[ReferralTracking]:
        paying = count if paying is None else paying
        entries = []
        for i in range(count):
            referred = make_user()
            entry = ledger.record_referral_signup(referrer.id, referred.id, tier=tier)
            if i < paying:
                entry = ledger.mark_became_paying(referred.id, tier, amount)
            entries.append(entry)
        return entries

    return _add_referrals


@pytest.fixture()
def client(database: Database) -> Generator[TestClient, None, None]:
    """HTTP client bound to the app, using the test database."""
    app.dependency_overrides[get_database] = lambda: database
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(database: Database) -> Callable[[UserAccount], dict[str, str]]:
    def _auth_headers(user: UserAccount) -> dict[str, str]:
        token = LocalAuthService(database).create_access_token(user.id)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo any logging configuration a test applied."""
    yield
    structlog.reset_defaults()
