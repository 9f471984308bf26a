"""Referral ledger database models."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from waitlist.storage.models import Base


class ReferralCode(Base):
    """Unique referral code for each user.

    Each user gets one referral code that they can share.
    Tracks link clicks and signups made with the code.
    """
    __tablename__ = "referral_codes"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True)
    code = Column(String(20), unique=True, nullable=False, index=True)

    # Statistics
    clicks = Column(Integer, default=0, nullable=False)  # How many times the link was visited
    conversions = Column(Integer, default=0, nullable=False)  # How many users registered with this code

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ReferralCode(code={self.code}, conversions={self.conversions})>"


class ReferralTracking(Base):
    """One referred user, from signup ("acknowledged") to first payment ("paying").

    ``became_paying_at`` is written once and never cleared.
    """
    __tablename__ = "referral_tracking"

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    # A user can only be referred once
    referred_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True)

    subscription_tier = Column(String(50), nullable=True)
    subscription_amount = Column(Float, nullable=True)

    acknowledged_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    became_paying_at = Column(DateTime, nullable=True, index=True)

    @property
    def is_paying(self) -> bool:
        return self.became_paying_at is not None

    def __repr__(self):
        return (
            f"<ReferralTracking(id={self.id}, referrer={self.referrer_id}, "
            f"referred={self.referred_id}, paying={self.is_paying})>"
        )


class ReferralCredit(Base):
    """Reward issued to a referrer for a batch of paying referrals."""
    __tablename__ = "referral_credits"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used_at = Column(DateTime, nullable=True)

    items = relationship(
        "ReferralCreditItem",
        back_populates="credit",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ReferralCreditItem.referral_tracking_id",
    )

    @property
    def referral_ids(self) -> list[int]:
        """Tracking entry ids consumed by this credit."""
        return [item.referral_tracking_id for item in self.items]

    def __repr__(self):
        return f"<ReferralCredit(id={self.id}, user={self.user_id}, referrals={len(self.items)})>"


class ReferralCreditItem(Base):
    """Link between a credit and one tracking entry it consumed.

    The unique constraint on ``referral_tracking_id`` guarantees that a
    referral is consumed by at most one credit, across all users.
    """
    __tablename__ = "referral_credit_items"

    id = Column(Integer, primary_key=True)
    credit_id = Column(Integer, ForeignKey("referral_credits.id"), nullable=False, index=True)
    referral_tracking_id = Column(
        Integer, ForeignKey("referral_tracking.id"), nullable=False, unique=True
    )

    credit = relationship("ReferralCredit", back_populates="items")

    def __repr__(self):
        return f"<ReferralCreditItem(credit={self.credit_id}, referral={self.referral_tracking_id})>"
