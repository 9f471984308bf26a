"""Entry point for "user became a paying subscriber" events."""

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from waitlist.auth.accounts import AccountService
from waitlist.logging_config import get_logger
from waitlist.referral.errors import LedgerUnavailable
from waitlist.referral.issuer import CreditIssuer, CreditOutcome, Issued
from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.notifications import CreditNotifier, NullNotifier, notify_credit_issued

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentOutcome:
    """What a payment event changed."""

    referral_updated: bool
    referrer_id: int | None = None
    credit_outcome: CreditOutcome | None = None
    credit_error: str | None = None


class PaymentEventHandler:
    """Applies a payment event to the account, the ledger and the referrer's credits.

    Safe under at-least-once delivery: the ledger's paying transition happens
    once per referred user, so a repeated event stops before credit issuance.
    """

    def __init__(
        self,
        accounts: AccountService,
        ledger: ReferralLedger,
        issuer: CreditIssuer,
        notifier: CreditNotifier | None = None,
    ):
        self.accounts = accounts
        self.ledger = ledger
        self.issuer = issuer
        self.notifier = notifier or NullNotifier()
        self.logger = get_logger(__name__)

    def on_user_became_paying(
        self,
        user_id: int,
        tier: str | None,
        amount: float | None,
    ) -> PaymentOutcome:
        """Handle a user's transition to paying status.

        Storage failures while updating the account or the tracking entry
        propagate so that the sender retries. Failures while issuing the
        referrer's credit are logged and reported in the outcome; the payment
        itself is still acknowledged.
        """
        self.accounts.mark_paying(user_id, tier, amount)

        entry = self.ledger.mark_became_paying(user_id, tier, amount)
        if entry is None:
            self.logger.info("payment_no_referral_update", user_id=user_id)
            return PaymentOutcome(referral_updated=False)

        referrer_id = entry.referrer_id

        try:
            account_tier = self.accounts.get_account_tier(referrer_id)
            outcome = self.issuer.issue_credit_if_eligible(referrer_id, account_tier)
        except (LedgerUnavailable, SQLAlchemyError) as e:
            self.logger.error(
                "referral_credit_check_failed",
                user_id=user_id,
                referrer_id=referrer_id,
                error=str(e),
            )
            return PaymentOutcome(
                referral_updated=True,
                referrer_id=referrer_id,
                credit_error=str(e),
            )

        if isinstance(outcome, Issued):
            notify_credit_issued(self.notifier, referrer_id, outcome.credit)

        self.logger.info(
            "payment_referral_processed",
            user_id=user_id,
            referrer_id=referrer_id,
            credit_status=outcome.status,
        )
        return PaymentOutcome(
            referral_updated=True,
            referrer_id=referrer_id,
            credit_outcome=outcome,
        )
