"""Account lookups and payment-status updates."""

from datetime import datetime

from sqlalchemy import update

from waitlist.auth.models import AccountTier, UserAccount
from waitlist.logging_config import get_logger
from waitlist.storage.db import Database

logger = get_logger(__name__)


class AccountService:
    """Reads and updates user accounts outside the referral ledger."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger(__name__)

    def create_user(
        self,
        email: str,
        name: str | None = None,
        user_type: str = AccountTier.WAITLIST.value,
    ) -> UserAccount:
        """Create a user account.

        Raises:
            ValueError: If email already exists
        """
        with self.database.session() as session:
            existing = session.query(UserAccount).filter(
                UserAccount.email == email.lower()
            ).first()

            if existing:
                raise ValueError("Email already registered")

            user = UserAccount(
                email=email.lower(),
                name=name,
                user_type=user_type,
            )
            session.add(user)
            session.flush()
            session.refresh(user)

            self.logger.info("user_created", user_id=user.id, user_type=user_type)
            return user

    def get_user(self, user_id: int) -> UserAccount | None:
        with self.database.session() as session:
            return session.get(UserAccount, user_id)

    def get_account_tier(self, user_id: int) -> str:
        """Return the user's account tier, or an empty string for unknown users."""
        user = self.get_user(user_id)
        return user.user_type if user and user.user_type else ""

    def mark_paying(self, user_id: int, tier: str | None, amount: float | None) -> bool:
        """Flag the account as a paying subscriber.

        Returns:
            True if an account was updated
        """
        with self.database.session() as session:
            result = session.execute(
                update(UserAccount)
                .where(UserAccount.id == user_id)
                .values(
                    is_paying=True,
                    subscription_tier=tier,
                    subscription_amount=amount,
                    updated_at=datetime.utcnow(),
                )
            )

        if result.rowcount == 0:
            self.logger.warning("mark_paying_unknown_user", user_id=user_id)
            return False

        self.logger.info("account_marked_paying", user_id=user_id, tier=tier, amount=amount)
        return True

    def mark_not_paying(self, user_id: int) -> bool:
        """Clear the paying flag after a cancelled subscription."""
        with self.database.session() as session:
            result = session.execute(
                update(UserAccount)
                .where(UserAccount.id == user_id)
                .values(
                    is_paying=False,
                    subscription_tier=None,
                    subscription_amount=None,
                    updated_at=datetime.utcnow(),
                )
            )

        self.logger.info("account_marked_not_paying", user_id=user_id, updated=result.rowcount > 0)
        return result.rowcount > 0

    def set_referred_by(self, user_id: int, referrer_id: int) -> bool:
        """Record the referrer on the account, only if none is set yet."""
        with self.database.session() as session:
            result = session.execute(
                update(UserAccount)
                .where(UserAccount.id == user_id, UserAccount.referred_by_id.is_(None))
                .values(referred_by_id=referrer_id, updated_at=datetime.utcnow())
            )
        return result.rowcount > 0
