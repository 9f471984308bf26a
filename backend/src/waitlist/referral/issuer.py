"""Credit issuance: turn an eligible batch into exactly one credit."""

from dataclasses import dataclass
from enum import Enum

from waitlist.logging_config import get_logger
from waitlist.referral.eligibility import EligibilityEvaluator
from waitlist.referral.errors import ReferralAlreadyCredited
from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.models import ReferralCredit
from waitlist.referral.policy import CreditPolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class Issued:
    """A credit was created."""
    credit: ReferralCredit
    status: str = "issued"


@dataclass(frozen=True)
class NotEligible:
    """Not enough uncredited paying referrals yet. Nothing was written."""
    remaining_needed: int
    status: str = "not_eligible"


@dataclass(frozen=True)
class Conflict:
    """Concurrent issuance consumed the batch; the caller may retry later."""
    remaining_needed: int = 0
    status: str = "conflict"


CreditOutcome = Issued | NotEligible | Conflict


class CreditIssuer:
    """Issues referral credits with all-or-nothing semantics."""

    # One retry after a lost race, with a fresh evaluation
    MAX_ATTEMPTS = 2

    def __init__(
        self,
        ledger: ReferralLedger,
        evaluator: EligibilityEvaluator,
        policy: CreditPolicy,
    ):
        self.ledger = ledger
        self.evaluator = evaluator
        self.policy = policy
        self.logger = get_logger(__name__)

    def issue_credit_if_eligible(
        self,
        referrer_id: int,
        account_tier: str | Enum | None,
    ) -> CreditOutcome:
        """Issue one credit if the referrer is eligible.

        Args:
            referrer_id: Referrer to evaluate
            account_tier: The referrer's own account tier

        Returns:
            Issued, NotEligible, or Conflict
        """
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            result = self.evaluator.evaluate(referrer_id, account_tier)

            if not result.eligible:
                if attempt == 1:
                    return NotEligible(remaining_needed=result.remaining_needed)
                # The racing writer took what we were counting on
                self.logger.warning(
                    "credit_conflict_not_eligible_after_retry",
                    referrer_id=referrer_id,
                    remaining_needed=result.remaining_needed,
                )
                return Conflict(remaining_needed=result.remaining_needed)

            try:
                credit = self.ledger.create_credit(
                    referrer_id,
                    result.referral_ids,
                    window=self.policy.credit_window,
                )
            except ReferralAlreadyCredited as e:
                self.logger.warning(
                    "credit_batch_already_credited",
                    referrer_id=referrer_id,
                    attempt=attempt,
                    referral_ids=e.referral_ids,
                )
                continue

            self.logger.info(
                "referral_credit_issued",
                referrer_id=referrer_id,
                credit_id=credit.id,
                attempt=attempt,
                threshold=result.threshold,
            )
            return Issued(credit=credit)

        self.logger.warning("credit_conflict", referrer_id=referrer_id)
        return Conflict()
