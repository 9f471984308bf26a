"""Tests for the payment event handler."""

import pytest
from fastapi import BackgroundTasks

from waitlist.referral.errors import LedgerUnavailable
from waitlist.referral.issuer import Issued
from waitlist.referral.notifications import EmailCreditNotifier, notify_credit_issued
from waitlist.referral.payments import PaymentEventHandler


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def credit_issued(self, user_id, credit):
        self.calls.append((user_id, credit.id))


class FailingNotifier:
    def credit_issued(self, user_id, credit):
        raise RuntimeError("smtp down")


class UnavailableIssuer:
    def issue_credit_if_eligible(self, referrer_id, account_tier):
        raise LedgerUnavailable("Referral ledger is unavailable")


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def handler(accounts, ledger, issuer, notifier) -> PaymentEventHandler:
    return PaymentEventHandler(accounts, ledger, issuer, notifier)


def _refer(ledger, make_user, referrer, count):
    referred = [make_user() for _ in range(count)]
    for user in referred:
        ledger.record_referral_signup(referrer.id, user.id)
    return referred


def test_unreferred_payment_only_updates_account(make_user, accounts, ledger, handler, notifier) -> None:
    user = make_user()

    outcome = handler.on_user_became_paying(user.id, "pro", 20.0)

    assert outcome.referral_updated is False
    assert outcome.credit_outcome is None
    assert accounts.get_user(user.id).is_paying is True
    assert ledger.get_entry_for_referred(user.id) is None
    assert notifier.calls == []


def test_payment_marks_referral_paying(make_user, ledger, handler) -> None:
    referrer = make_user(user_type="pilot")
    (referred,) = _refer(ledger, make_user, referrer, 1)

    outcome = handler.on_user_became_paying(referred.id, "ai", 99.0)

    assert outcome.referral_updated is True
    assert outcome.referrer_id == referrer.id
    assert outcome.credit_outcome.status == "not_eligible"
    entry = ledger.get_entry_for_referred(referred.id)
    assert entry.is_paying
    assert entry.subscription_amount == 99.0


def test_repeated_payment_event_is_a_no_op(make_user, ledger, handler, notifier) -> None:
    referrer = make_user(user_type="pilot")
    referred = _refer(ledger, make_user, referrer, 5)
    for user in referred[:4]:
        handler.on_user_became_paying(user.id, "pro", 20.0)

    first = handler.on_user_became_paying(referred[4].id, "pro", 20.0)
    second = handler.on_user_became_paying(referred[4].id, "pro", 20.0)

    assert isinstance(first.credit_outcome, Issued)
    assert second.referral_updated is False
    assert second.credit_outcome is None
    assert len(ledger.credits_for_user(referrer.id)) == 1
    assert len(notifier.calls) == 1


def test_fifth_pilot_referral_issues_and_notifies(make_user, ledger, handler, notifier) -> None:
    referrer = make_user(user_type="pilot")
    referred = _refer(ledger, make_user, referrer, 5)

    outcomes = [handler.on_user_became_paying(user.id, "pro", 20.0) for user in referred]

    assert [o.credit_outcome.status for o in outcomes] == ["not_eligible"] * 4 + ["issued"]
    credit = outcomes[-1].credit_outcome.credit
    assert notifier.calls == [(referrer.id, credit.id)]
    assert sorted(credit.referral_ids) == sorted(
        ledger.get_entry_for_referred(user.id).id for user in referred
    )


def test_notification_failure_keeps_credit(make_user, accounts, ledger, issuer) -> None:
    handler = PaymentEventHandler(accounts, ledger, issuer, FailingNotifier())
    referrer = make_user(user_type="pilot")
    referred = _refer(ledger, make_user, referrer, 5)

    outcomes = [handler.on_user_became_paying(user.id, "pro", 20.0) for user in referred]

    assert isinstance(outcomes[-1].credit_outcome, Issued)
    assert len(ledger.credits_for_user(referrer.id)) == 1


def test_credit_failure_is_reported_not_raised(make_user, accounts, ledger) -> None:
    handler = PaymentEventHandler(accounts, ledger, UnavailableIssuer())
    referrer = make_user(user_type="pilot")
    (referred,) = _refer(ledger, make_user, referrer, 1)

    outcome = handler.on_user_became_paying(referred.id, "pro", 20.0)

    assert outcome.referral_updated is True
    assert outcome.credit_outcome is None
    assert "unavailable" in outcome.credit_error
    # The paying transition is kept for a later reconcile
    assert ledger.get_entry_for_referred(referred.id).is_paying


class FakeEmailService:
    def __init__(self):
        self.sent = []

    async def send_credit_issued_email(self, to_email, user_name, referral_count, expires_at_text):
        self.sent.append((to_email, user_name, referral_count, expires_at_text))
        return True


def test_email_notifier_queues_background_task(make_user, accounts, ledger, add_referrals) -> None:
    referrer = make_user(user_type="pilot", name="Grace Hopper")
    entries = add_referrals(referrer, 5)
    credit = ledger.create_credit(referrer.id, [e.id for e in entries])
    email_service = FakeEmailService()
    background_tasks = BackgroundTasks()

    EmailCreditNotifier(accounts, email_service, background_tasks).credit_issued(referrer.id, credit)

    assert len(background_tasks.tasks) == 1
    task = background_tasks.tasks[0]
    assert task.args[:3] == (referrer.email, "Grace Hopper", 5)


def test_email_notifier_sends_inline_without_background_tasks(make_user, accounts, ledger, add_referrals) -> None:
    referrer = make_user(user_type="pilot")
    entries = add_referrals(referrer, 5)
    credit = ledger.create_credit(referrer.id, [e.id for e in entries])
    email_service = FakeEmailService()

    EmailCreditNotifier(accounts, email_service).credit_issued(referrer.id, credit)

    assert email_service.sent == [
        (referrer.email, referrer.name, 5, credit.expires_at.strftime("%B %d, %Y"))
    ]


def test_notify_credit_issued_reports_failure(make_user, ledger, add_referrals) -> None:
    referrer = make_user(user_type="pilot")
    entries = add_referrals(referrer, 5)
    credit = ledger.create_credit(referrer.id, [e.id for e in entries])
    recording = RecordingNotifier()

    assert notify_credit_issued(recording, referrer.id, credit) is True
    assert recording.calls == [(referrer.id, credit.id)]
    assert notify_credit_issued(FailingNotifier(), referrer.id, credit) is False
