"""Tests for referral codes, signup linking and stats."""

import pytest

from waitlist.referral.service import ReferralService, _generate_unique_code, referral_link


@pytest.fixture()
def service(ledger, accounts, policy) -> ReferralService:
    return ReferralService(ledger, accounts, policy)


def test_generated_codes_avoid_confusing_characters() -> None:
    for _ in range(50):
        code = _generate_unique_code()
        assert len(code) == 8
        assert not set(code) & set("0OIl1")


def test_get_or_create_code_is_stable(make_user, service) -> None:
    user = make_user()

    first = service.get_or_create_code(user.id)
    second = service.get_or_create_code(user.id)

    assert first.code == second.code
    assert referral_link(first.code) == f"https://waitlist.test/referral/{first.code}"


def test_validate_code_is_case_insensitive(make_user, service) -> None:
    user = make_user()
    code = service.get_or_create_code(user.id).code

    assert service.validate_code(f" {code.lower()} ").user_id == user.id
    assert service.validate_code("NOPE2345") is None
    assert service.validate_code("") is None


def test_track_click(make_user, service) -> None:
    user = make_user()
    code = service.get_or_create_code(user.id).code

    assert service.track_click(code) is True
    assert service.track_click(code.lower()) is True
    assert service.track_click("NOPE2345") is False
    assert service.get_or_create_code(user.id).clicks == 2


def test_link_signup_records_referral(make_user, accounts, ledger, service) -> None:
    referrer, referred = make_user(), make_user()
    code = service.get_or_create_code(referrer.id).code

    entry = service.link_signup(referred.id, code)

    assert entry.referrer_id == referrer.id
    assert accounts.get_user(referred.id).referred_by_id == referrer.id
    assert service.get_or_create_code(referrer.id).conversions == 1
    assert ledger.get_entry_for_referred(referred.id).id == entry.id


def test_link_signup_never_overwrites(make_user, ledger, service) -> None:
    first, second, referred = make_user(), make_user(), make_user()
    service.link_signup(referred.id, service.get_or_create_code(first.id).code)

    assert service.link_signup(referred.id, service.get_or_create_code(second.id).code) is None
    assert ledger.get_entry_for_referred(referred.id).referrer_id == first.id
    assert service.get_or_create_code(second.id).conversions == 0


def test_link_signup_ignores_bad_input(make_user, service) -> None:
    user = make_user()
    code = service.get_or_create_code(user.id).code

    assert service.link_signup(user.id, "NOPE2345") is None
    assert service.link_signup(user.id, code) is None
    assert service.link_signup(9999, code) is None


def test_credit_summary(make_user, ledger, service, add_referrals) -> None:
    referrer = make_user(user_type="pilot")
    entries = add_referrals(referrer, 8, paying=7)
    credit = ledger.create_credit(referrer.id, [e.id for e in entries[:5]])

    summary = service.get_credit_summary(referrer.id, "pilot")

    assert [c.id for c in summary["credits"]] == [credit.id]
    assert summary["stats"] == {
        "acknowledged": 8,
        "paying": 7,
        "uncredited_paying": 2,
        "required": 5,
        "progress": "2/5",
        "next_credit_in": 3,
    }


def test_referral_stats(make_user, ledger, service, add_referrals) -> None:
    referrer = make_user(user_type="pilot")
    paid = add_referrals(referrer, 5, amount=35.0, tier="family")
    ledger.create_credit(referrer.id, [e.id for e in paid])
    add_referrals(referrer, 2, amount=99.0, tier="ai")
    waiting = make_user()
    ledger.record_referral_signup(referrer.id, waiting.id, tier="pro")

    stats = service.get_referral_stats(referrer.id, "pilot")

    assert stats["total_referrals"] == 8
    assert stats["paying_referrals"] == 7
    assert stats["waitlist_referrals"] == 1
    assert stats["tier_breakdown"] == {"free": 0, "pro": 1, "ai": 2, "family": 5}
    rewards = stats["rewards"]
    assert rewards["required_referrals"] == 5
    assert rewards["current_batch"] == 2
    assert rewards["progress_to_next_reward"] == pytest.approx(40.0)
    assert rewards["completed_batches"] == 1
    assert rewards["average_subscription_value"] == pytest.approx((5 * 35.0 + 2 * 99.0) / 7)
    assert rewards["projected_reward_tier"] == "family"
    assert rewards["next_batch_average_value"] == pytest.approx(99.0)
    assert rewards["next_batch_projected_tier"] == "ai"
