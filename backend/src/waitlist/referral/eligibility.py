"""Eligibility evaluation for referral credits."""

from dataclasses import dataclass, field
from enum import Enum

from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.models import ReferralTracking
from waitlist.referral.policy import CreditPolicy


@dataclass(frozen=True)
class EligibilityResult:
    """Whether a referrer can be credited right now, and with which entries."""

    eligible: bool
    remaining_needed: int
    threshold: int
    uncredited_count: int
    eligible_referrals: list[ReferralTracking] = field(default_factory=list)

    @property
    def referral_ids(self) -> list[int]:
        return [entry.id for entry in self.eligible_referrals]


class EligibilityEvaluator:
    """Decides whether a referrer has enough uncredited paying referrals.

    Reads the ledger only; calling it any number of times, concurrently or
    not, changes nothing.
    """

    def __init__(self, ledger: ReferralLedger, policy: CreditPolicy):
        self.ledger = ledger
        self.policy = policy

    def evaluate(self, referrer_id: int, account_tier: str | Enum | None) -> EligibilityResult:
        """Evaluate a referrer against the threshold for their account tier.

        When eligible, the batch is the ``threshold`` oldest uncredited paying
        entries; anything beyond that waits for the next evaluation.
        """
        threshold = self.policy.threshold_for(account_tier)

        batch: list[ReferralTracking] = []
        count = 0
        for entry in self.ledger.uncredited_paying_entries(referrer_id):
            if count < threshold:
                batch.append(entry)
            count += 1

        eligible = count >= threshold
        return EligibilityResult(
            eligible=eligible,
            remaining_needed=max(0, threshold - count),
            threshold=threshold,
            uncredited_count=count,
            eligible_referrals=batch if eligible else [],
        )
