"""Referral ledger: tracking entries and the credits that consume them.

The ledger is the only writer of ``referral_tracking``, ``referral_credits``
and ``referral_credit_items``. Its two race-sensitive writes are:

- ``mark_became_paying``: a conditional UPDATE on ``became_paying_at IS NULL``,
  so exactly one concurrent caller sees the transition.
- ``create_credit``: guarded by the unique constraint on
  ``referral_credit_items.referral_tracking_id``, so two issuers racing on the
  same batch cannot both succeed.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Generator, Iterable, Iterator

from sqlalchemy import exists, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from waitlist.logging_config import get_logger
from waitlist.referral.errors import (
    DuplicateReferral,
    LedgerUnavailable,
    ReferralAlreadyCredited,
)
from waitlist.referral.models import ReferralCredit, ReferralCreditItem, ReferralTracking
from waitlist.referral.policy import DEFAULT_CREDIT_WINDOW_DAYS
from waitlist.storage.db import Database

logger = get_logger(__name__)


def _uncredited_clause():
    return ~exists().where(ReferralCreditItem.referral_tracking_id == ReferralTracking.id)


class UncreditedPayingEntries:
    """Paying, not-yet-credited entries of one referrer, oldest payment first.

    Iterating runs a fresh query each time, so the sequence can be restarted
    and always reflects the current ledger. Rows are streamed in batches.
    """

    def __init__(self, ledger: "ReferralLedger", referrer_id: int, batch_size: int = 100):
        self.ledger = ledger
        self.referrer_id = referrer_id
        self.batch_size = batch_size

    def _statement(self):
        return (
            select(ReferralTracking)
            .where(
                ReferralTracking.referrer_id == self.referrer_id,
                ReferralTracking.became_paying_at.is_not(None),
                _uncredited_clause(),
            )
            .order_by(ReferralTracking.became_paying_at.asc(), ReferralTracking.id.asc())
            .execution_options(yield_per=self.batch_size)
        )

    def __iter__(self) -> Iterator[ReferralTracking]:
        with self.ledger._transaction() as session:
            for entry in session.scalars(self._statement()):
                yield entry


class ReferralLedger:
    """Durable storage for referral tracking entries and referral credits."""

    def __init__(
        self,
        database: Database,
        credit_window: timedelta = timedelta(days=DEFAULT_CREDIT_WINDOW_DAYS),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """Initialize the ledger.

        Args:
            database: Database holding the ledger tables
            credit_window: Default lifetime of a new credit
            clock: Source of "now" for timestamps
        """
        self.database = database
        self.credit_window = credit_window
        self.clock = clock
        self.logger = get_logger(__name__)

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        """Open a session, translating storage failures into LedgerUnavailable."""
        try:
            with self.database.session() as session:
                yield session
        except IntegrityError:
            raise
        except DBAPIError as e:
            self.logger.error("ledger_unavailable", error=str(e.orig or e))
            raise LedgerUnavailable("Referral ledger is unavailable") from e

    # ==================== TRACKING ENTRIES ====================

    def record_referral_signup(
        self,
        referrer_id: int,
        referred_id: int,
        tier: str | None = None,
    ) -> ReferralTracking:
        """Create the tracking entry for a user who signed up with a referral link.

        Args:
            referrer_id: User whose code was used
            referred_id: Newly signed-up user
            tier: Subscription tier the referred user picked at signup, if any

        Returns:
            The new tracking entry (not yet paying)

        Raises:
            DuplicateReferral: If the referred user already has an entry
            ValueError: If a user tries to refer themselves
        """
        if referrer_id == referred_id:
            raise ValueError("A user cannot refer themselves")

        try:
            with self._transaction() as session:
                existing = session.scalar(
                    select(ReferralTracking.id).where(ReferralTracking.referred_id == referred_id)
                )
                if existing is not None:
                    raise DuplicateReferral(referred_id)

                entry = ReferralTracking(
                    referrer_id=referrer_id,
                    referred_id=referred_id,
                    subscription_tier=tier,
                    acknowledged_at=self.clock(),
                )
                session.add(entry)
                session.flush()
        except IntegrityError as e:
            # Lost a race against a concurrent signup for the same user
            raise DuplicateReferral(referred_id) from e

        self.logger.info(
            "referral_signup_recorded",
            entry_id=entry.id,
            referrer_id=referrer_id,
            referred_id=referred_id,
        )
        return entry

    def mark_became_paying(
        self,
        referred_id: int,
        tier: str | None,
        amount: float | None,
        paid_at: datetime | None = None,
    ) -> ReferralTracking | None:
        """Move a referred user's entry from acknowledged to paying.

        Only an entry with ``became_paying_at IS NULL`` is updated, in a single
        conditional write, so repeated or concurrent calls update it once.

        Returns:
            The updated entry, or None if the user was not referred or is
            already paying
        """
        paid_at = paid_at or self.clock()

        with self._transaction() as session:
            result = session.execute(
                update(ReferralTracking)
                .where(
                    ReferralTracking.referred_id == referred_id,
                    ReferralTracking.became_paying_at.is_(None),
                )
                .values(
                    became_paying_at=paid_at,
                    subscription_tier=tier,
                    subscription_amount=amount,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None

            entry = session.scalar(
                select(ReferralTracking).where(ReferralTracking.referred_id == referred_id)
            )

        self.logger.info(
            "referral_became_paying",
            entry_id=entry.id,
            referrer_id=entry.referrer_id,
            referred_id=referred_id,
            tier=tier,
        )
        return entry

    def uncredited_paying_entries(self, referrer_id: int) -> UncreditedPayingEntries:
        """Paying entries of a referrer not consumed by any credit, oldest first."""
        return UncreditedPayingEntries(self, referrer_id)

    def entries_for_referrer(self, referrer_id: int) -> list[ReferralTracking]:
        """All tracking entries of a referrer, in signup order."""
        with self._transaction() as session:
            return list(
                session.scalars(
                    select(ReferralTracking)
                    .where(ReferralTracking.referrer_id == referrer_id)
                    .order_by(ReferralTracking.acknowledged_at.asc(), ReferralTracking.id.asc())
                )
            )

    def get_entry_for_referred(self, referred_id: int) -> ReferralTracking | None:
        with self._transaction() as session:
            return session.scalar(
                select(ReferralTracking).where(ReferralTracking.referred_id == referred_id)
            )

    def referrers_with_uncredited_entries(self) -> list[int]:
        """Referrer ids that have at least one paying, uncredited entry."""
        with self._transaction() as session:
            return list(
                session.scalars(
                    select(ReferralTracking.referrer_id)
                    .where(
                        ReferralTracking.became_paying_at.is_not(None),
                        _uncredited_clause(),
                    )
                    .distinct()
                    .order_by(ReferralTracking.referrer_id)
                )
            )

    # ==================== CREDITS ====================

    def create_credit(
        self,
        user_id: int,
        referral_ids: Iterable[int],
        window: timedelta | None = None,
    ) -> ReferralCredit:
        """Persist a credit that consumes the given tracking entries.

        The credit and all of its items are written in one transaction.

        Args:
            user_id: Referrer being rewarded
            referral_ids: Tracking entry ids consumed by this credit
            window: Credit lifetime (defaults to the ledger's credit window)

        Returns:
            The new credit

        Raises:
            ReferralAlreadyCredited: If any entry is already consumed by a credit
            ValueError: If the batch is empty or holds entries that are not
                paying referrals of ``user_id``
        """
        ids = list(dict.fromkeys(referral_ids))
        if not ids:
            raise ValueError("A credit must consume at least one referral")

        window = window or self.credit_window
        if window <= timedelta(0):
            raise ValueError("Credit window must be positive")

        try:
            with self._transaction() as session:
                already = list(
                    session.scalars(
                        select(ReferralCreditItem.referral_tracking_id).where(
                            ReferralCreditItem.referral_tracking_id.in_(ids)
                        )
                    )
                )
                if already:
                    raise ReferralAlreadyCredited(already)

                entries = list(
                    session.scalars(select(ReferralTracking).where(ReferralTracking.id.in_(ids)))
                )
                creditable = {
                    entry.id
                    for entry in entries
                    if entry.referrer_id == user_id and entry.became_paying_at is not None
                }
                invalid = sorted(set(ids) - creditable)
                if invalid:
                    raise ValueError(f"Referrals {invalid} are not paying referrals of user {user_id}")

                issued_at = self.clock()
                credit = ReferralCredit(
                    user_id=user_id,
                    issued_at=issued_at,
                    expires_at=issued_at + window,
                    items=[ReferralCreditItem(referral_tracking_id=i) for i in ids],
                )
                session.add(credit)
                session.flush()
        except IntegrityError as e:
            # A concurrent credit claimed one of these entries first
            self.logger.warning("credit_create_conflict", user_id=user_id, referral_ids=ids)
            raise ReferralAlreadyCredited(ids) from e

        self.logger.info(
            "referral_credit_created",
            credit_id=credit.id,
            user_id=user_id,
            referral_count=len(ids),
            expires_at=credit.expires_at.isoformat(),
        )
        return credit

    def credits_for_user(self, user_id: int) -> list[ReferralCredit]:
        """Every credit ever issued to a user, oldest first."""
        with self._transaction() as session:
            return list(
                session.scalars(
                    select(ReferralCredit)
                    .where(ReferralCredit.user_id == user_id)
                    .order_by(ReferralCredit.issued_at.asc(), ReferralCredit.id.asc())
                )
            )

    def active_credits(self, user_id: int, now: datetime | None = None) -> list[ReferralCredit]:
        """Unused, unexpired credits of a user, soonest expiry first."""
        now = now or self.clock()
        with self._transaction() as session:
            return list(
                session.scalars(
                    select(ReferralCredit)
                    .where(
                        ReferralCredit.user_id == user_id,
                        ReferralCredit.used_at.is_(None),
                        ReferralCredit.expires_at >= now,
                    )
                    .order_by(ReferralCredit.expires_at.asc())
                )
            )
