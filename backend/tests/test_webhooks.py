"""Tests for the Stripe webhook endpoint."""

import pytest

from waitlist.api.v1 import webhooks
from waitlist.payments.stripe_service import parse_checkout_payment
from waitlist.referral.models import ReferralTracking

URL = "/api/v1/webhooks/stripe"


@pytest.fixture()
def stripe_event(monkeypatch):
    """Bypass signature verification and deliver the given event."""

    def _deliver(event):
        monkeypatch.setattr(webhooks, "verify_webhook_signature", lambda payload, sig: event)

    return _deliver


def _checkout(event_id, user_id, tier="pro", amount_total=2000):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"metadata": {"userId": str(user_id), "tier": tier}, "amount_total": amount_total}},
    }


def test_parse_checkout_payment() -> None:
    payment = parse_checkout_payment({"metadata": {"user_id": "7"}, "amount_total": 9900})

    assert payment.user_id == 7
    assert payment.tier == "pro"
    assert payment.amount == 99.0
    assert parse_checkout_payment({"metadata": {}}) is None
    assert parse_checkout_payment({"metadata": {"userId": "abc"}}) is None


def test_invalid_signature_rejected(client) -> None:
    response = client.post(URL, content=b"{}", headers={"stripe-signature": "t=1,v1=bad"})
    assert response.status_code == 400


def test_checkout_marks_referral_paying(client, stripe_event, make_user, ledger, accounts) -> None:
    referrer, referred = make_user(), make_user()
    ledger.record_referral_signup(referrer.id, referred.id)
    stripe_event(_checkout("evt_1", referred.id, tier="ai", amount_total=9900))

    response = client.post(URL, content=b"{}")

    assert response.json() == {"received": True}
    entry = ledger.get_entry_for_referred(referred.id)
    assert entry.is_paying
    assert entry.subscription_tier == "ai"
    assert accounts.get_user(referred.id).is_paying is True


def test_duplicate_event_skipped(client, stripe_event, make_user, ledger) -> None:
    referrer, referred = make_user(), make_user()
    ledger.record_referral_signup(referrer.id, referred.id)
    stripe_event(_checkout("evt_dup", referred.id))

    assert client.post(URL, content=b"{}").json() == {"received": True}
    assert client.post(URL, content=b"{}").json() == {"received": True, "duplicate": True}


def test_subscription_deleted_clears_paying_flag(client, stripe_event, make_user, accounts) -> None:
    user = make_user()
    accounts.mark_paying(user.id, "pro", 20.0)
    stripe_event({
        "id": "evt_cancel",
        "type": "customer.subscription.deleted",
        "data": {"object": {"metadata": {"userId": str(user.id)}}},
    })

    assert client.post(URL, content=b"{}").json() == {"received": True}
    assert accounts.get_user(user.id).is_paying is False


def test_unhandled_event_acknowledged(client, stripe_event) -> None:
    stripe_event({"id": "evt_other", "type": "invoice.created", "data": {"object": {}}})

    assert client.post(URL, content=b"{}").json() == {"received": True}


def test_storage_failure_not_marked_processed(client, stripe_event, database, make_user, ledger) -> None:
    referrer, referred = make_user(), make_user()
    ledger.record_referral_signup(referrer.id, referred.id)
    stripe_event(_checkout("evt_fail", referred.id))
    ReferralTracking.__table__.drop(database.engine)

    response = client.post(URL, content=b"{}")

    assert response.status_code == 500
    assert webhooks.is_event_processed(database, "evt_fail", "stripe") is False
