"""Referral tracking and credit issuance.

Referrers earn a time-limited credit once enough of the users they referred
become paying subscribers:
- pilot accounts need 5 paying referrals per credit
- waitlist accounts need 10
- everyone else needs 20

Each paying referral counts towards at most one credit.
"""

from waitlist.referral.eligibility import EligibilityEvaluator, EligibilityResult
from waitlist.referral.errors import (
    DuplicateReferral,
    LedgerUnavailable,
    ReferralAlreadyCredited,
    ReferralError,
)
from waitlist.referral.issuer import Conflict, CreditIssuer, CreditOutcome, Issued, NotEligible
from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.models import ReferralCode, ReferralCredit, ReferralCreditItem, ReferralTracking
from waitlist.referral.payments import PaymentEventHandler, PaymentOutcome
from waitlist.referral.policy import CreditPolicy
from waitlist.referral.service import ReferralService

__all__ = [
    "Conflict",
    "CreditIssuer",
    "CreditOutcome",
    "CreditPolicy",
    "DuplicateReferral",
    "EligibilityEvaluator",
    "EligibilityResult",
    "Issued",
    "LedgerUnavailable",
    "NotEligible",
    "PaymentEventHandler",
    "PaymentOutcome",
    "ReferralAlreadyCredited",
    "ReferralCode",
    "ReferralCredit",
    "ReferralCreditItem",
    "ReferralError",
    "ReferralLedger",
    "ReferralService",
    "ReferralTracking",
]
