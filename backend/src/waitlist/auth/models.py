"""Account models for waitlist users."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from waitlist.storage.models import Base


class AccountTier(str, Enum):
    """Account tiers that drive referral requirements.

    Tiers are stored as plain strings so that tiers added later fall back to
    the default referral threshold.
    """
    PILOT = "pilot"          # Early pilot program members
    WAITLIST = "waitlist"    # Signed up through the public waitlist
    STANDARD = "standard"    # Everyone else


class UserAccount(Base):
    """User account for the waitlist site."""
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)

    # Account tier (pilot, waitlist, ...)
    user_type = Column(String(20), nullable=False, default=AccountTier.WAITLIST.value)

    # Subscription
    is_paying = Column(Boolean, default=False, nullable=False)
    subscription_tier = Column(String(50), nullable=True)
    subscription_amount = Column(Float, nullable=True)

    # Who referred this user (set once at signup)
    referred_by_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True, index=True)

    # Status
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    referred_by = relationship("UserAccount", remote_side=[id])

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email}, type={self.user_type})>"
