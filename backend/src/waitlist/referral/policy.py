"""Credit policy: referral thresholds per account tier and credit lifetime."""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from waitlist.settings import Settings

DEFAULT_THRESHOLDS = {"pilot": 5, "waitlist": 10}
DEFAULT_THRESHOLD = 20
DEFAULT_CREDIT_WINDOW_DAYS = 90


@dataclass(frozen=True)
class CreditPolicy:
    """How many paying referrals earn a credit, and how long a credit lasts.

    Thresholds are keyed by account tier; any tier not listed uses
    ``default_threshold``.
    """

    thresholds: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    default_threshold: int = DEFAULT_THRESHOLD
    credit_window: timedelta = timedelta(days=DEFAULT_CREDIT_WINDOW_DAYS)

    def __post_init__(self):
        normalized = {str(tier).lower(): int(count) for tier, count in self.thresholds.items()}
        if any(count < 1 for count in normalized.values()) or self.default_threshold < 1:
            raise ValueError("Referral thresholds must be at least 1")
        if self.credit_window <= timedelta(0):
            raise ValueError("Credit window must be positive")
        object.__setattr__(self, "thresholds", MappingProxyType(normalized))

    @classmethod
    def from_settings(cls, settings: Settings) -> "CreditPolicy":
        return cls(
            thresholds=settings.referral_thresholds,
            default_threshold=settings.referral_default_threshold,
            credit_window=timedelta(days=settings.referral_credit_window_days),
        )

    def threshold_for(self, account_tier: str | Enum | None) -> int:
        """Required paying referrals for one credit at the given tier."""
        if isinstance(account_tier, Enum):
            account_tier = account_tier.value
        key = (account_tier or "").strip().lower()
        return self.thresholds.get(key, self.default_threshold)


def reward_tier_for(average_value: float) -> str:
    """Map the average subscription value of a batch to the reward tier it projects."""
    if average_value >= 99:
        return "ai"
    if average_value >= 35:
        return "family"
    if average_value >= 20:
        return "pro"
    return "free"
