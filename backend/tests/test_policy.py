"""Tests for the credit policy."""

from datetime import timedelta

import pytest

from waitlist.auth.models import AccountTier
from waitlist.referral.policy import CreditPolicy, reward_tier_for
from waitlist.settings import Settings


def test_default_thresholds() -> None:
    policy = CreditPolicy()
    assert policy.threshold_for("pilot") == 5
    assert policy.threshold_for("waitlist") == 10
    assert policy.threshold_for("standard") == 20
    assert policy.threshold_for("") == 20
    assert policy.threshold_for(None) == 20
    assert policy.credit_window == timedelta(days=90)


def test_threshold_lookup_accepts_enum_and_any_case() -> None:
    policy = CreditPolicy()
    assert policy.threshold_for(AccountTier.PILOT) == 5
    assert policy.threshold_for(" Waitlist ") == 10


def test_from_settings_overrides_table() -> None:
    settings = Settings(
        referral_thresholds={"pilot": 2, "vip": 1},
        referral_default_threshold=7,
        referral_credit_window_days=30,
    )

    policy = CreditPolicy.from_settings(settings)

    assert policy.threshold_for("pilot") == 2
    assert policy.threshold_for("vip") == 1
    assert policy.threshold_for("waitlist") == 7
    assert policy.credit_window == timedelta(days=30)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"thresholds": {"pilot": 0}},
        {"default_threshold": 0},
        {"credit_window": timedelta(0)},
    ],
)
def test_invalid_policy_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        CreditPolicy(**kwargs)


@pytest.mark.parametrize(
    "average, tier",
    [(0.0, "free"), (19.99, "free"), (20.0, "pro"), (35.0, "family"), (99.0, "ai"), (150.0, "ai")],
)
def test_reward_tier_for_average_value(average, tier) -> None:
    assert reward_tier_for(average) == tier
