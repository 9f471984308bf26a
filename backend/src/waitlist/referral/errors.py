"""Referral ledger errors."""


class ReferralError(Exception):
    """Base class for referral ledger errors."""


class DuplicateReferral(ReferralError):
    """Raised when a referred user already has a tracking entry."""

    def __init__(self, referred_id: int):
        self.referred_id = referred_id
        super().__init__(f"User {referred_id} has already been referred")


class ReferralAlreadyCredited(ReferralError):
    """Raised when a referral in a batch was already consumed by a credit."""

    def __init__(self, referral_ids: list[int]):
        self.referral_ids = sorted(referral_ids)
        super().__init__(f"Referrals already credited: {self.referral_ids}")


class LedgerUnavailable(ReferralError):
    """Raised when the ledger storage cannot be reached. Safe to retry."""
