"""Referral service for codes, signup linking and referral statistics."""

import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import update

from waitlist.auth.accounts import AccountService
from waitlist.logging_config import get_logger
from waitlist.referral.errors import DuplicateReferral
from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.models import ReferralCode, ReferralTracking
from waitlist.referral.policy import CreditPolicy, reward_tier_for
from waitlist.settings import settings

logger = get_logger(__name__)

TIER_BREAKDOWN_KEYS = ("free", "pro", "ai", "family")


def _generate_unique_code(length: int = 8) -> str:
    """Generate a unique, readable referral code.

    Uses uppercase letters and digits, avoiding confusing characters.
    Format: ABC12XYZ (8 chars by default)
    """
    # Exclude confusing characters: 0, O, I, l, 1
    alphabet = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def referral_link(code: str) -> str:
    base_url = settings.frontend_url or settings.allowed_origins.split(",")[0]
    return f"{base_url.rstrip('/')}/referral/{code}"


class ReferralService:
    """Service for referral codes, signup linking and dashboard stats."""

    def __init__(self, ledger: ReferralLedger, accounts: AccountService, policy: CreditPolicy):
        """Initialize referral service."""
        self.ledger = ledger
        self.accounts = accounts
        self.policy = policy
        self.database = ledger.database
        self.logger = get_logger(__name__)

    # ==================== CODES ====================

    def get_or_create_code(self, user_id: int) -> ReferralCode:
        """Get existing referral code or create new one for user.

        Args:
            user_id: User ID

        Returns:
            ReferralCode object
        """
        with self.database.session() as session:
            # Check if user already has a code
            existing = session.query(ReferralCode).filter(
                ReferralCode.user_id == user_id
            ).first()

            if existing:
                return existing

            # Generate unique code
            code = _generate_unique_code()
            attempts = 0
            while attempts < 10:
                existing_code = session.query(ReferralCode).filter(
                    ReferralCode.code == code
                ).first()
                if not existing_code:
                    break
                code = _generate_unique_code()
                attempts += 1

            referral_code = ReferralCode(
                user_id=user_id,
                code=code,
                clicks=0,
                conversions=0,
            )
            session.add(referral_code)
            session.flush()
            session.refresh(referral_code)

        self.logger.info("referral_code_created", user_id=user_id, code=code)
        return referral_code

    def validate_code(self, code: str) -> ReferralCode | None:
        """Resolve a referral code to its record, or None if unknown."""
        if not code:
            return None

        code = code.upper().strip()

        with self.database.session() as session:
            return session.query(ReferralCode).filter(
                ReferralCode.code == code
            ).first()

    def track_click(self, code: str) -> bool:
        """Track a click on referral link.

        Returns:
            True if tracked successfully
        """
        code = code.upper().strip()

        with self.database.session() as session:
            result = session.execute(
                update(ReferralCode)
                .where(ReferralCode.code == code)
                .values(clicks=ReferralCode.clicks + 1, updated_at=datetime.utcnow())
            )

        if result.rowcount == 0:
            return False

        self.logger.info("referral_click_tracked", code=code)
        return True

    # ==================== SIGNUP ====================

    def link_signup(self, referred_id: int, code: str) -> ReferralTracking | None:
        """Link a newly created account to the owner of a referral code.

        Unknown codes, self-referrals and users that were already referred are
        logged and ignored; an existing link is never overwritten.

        Returns:
            The new tracking entry, or None if nothing was linked
        """
        referral_code = self.validate_code(code)
        if referral_code is None:
            self.logger.info("referral_signup_unknown_code", referred_id=referred_id, code=code)
            return None

        referred = self.accounts.get_user(referred_id)
        if referred is None:
            self.logger.warning("referral_signup_unknown_user", referred_id=referred_id)
            return None

        referrer_id = referral_code.user_id
        try:
            entry = self.ledger.record_referral_signup(
                referrer_id,
                referred_id,
                tier=referred.subscription_tier,
            )
        except DuplicateReferral:
            self.logger.warning("referral_signup_duplicate", referred_id=referred_id, code=referral_code.code)
            return None
        except ValueError as e:
            self.logger.warning("referral_signup_rejected", referred_id=referred_id, reason=str(e))
            return None

        self.accounts.set_referred_by(referred_id, referrer_id)
        with self.database.session() as session:
            session.execute(
                update(ReferralCode)
                .where(ReferralCode.id == referral_code.id)
                .values(conversions=ReferralCode.conversions + 1, updated_at=datetime.utcnow())
            )

        self.logger.info(
            "referral_signup_processed",
            referrer_id=referrer_id,
            referred_id=referred_id,
        )
        return entry

    # ==================== STATS ====================

    def get_credit_summary(self, user_id: int, account_tier: str | None) -> dict[str, Any]:
        """Active credits and progress towards the next one."""
        entries = self.ledger.entries_for_referrer(user_id)
        uncredited = sum(1 for _ in self.ledger.uncredited_paying_entries(user_id))
        paying = sum(1 for entry in entries if entry.is_paying)
        required = self.policy.threshold_for(account_tier)

        return {
            "credits": self.ledger.active_credits(user_id),
            "stats": {
                "acknowledged": len(entries),
                "paying": paying,
                "uncredited_paying": uncredited,
                "required": required,
                "progress": f"{uncredited}/{required}",
                "next_credit_in": max(0, required - uncredited),
            },
        }

    def get_referral_stats(self, user_id: int, account_tier: str | None) -> dict[str, Any]:
        """Dashboard statistics for a referrer.

        Includes:
        - Referral counts (total, paying, still on the waitlist)
        - Potential revenue from referrals that have not paid yet
        - Subscription tier breakdown
        - Progress towards the next reward and its projected tier
        """
        referral_code = self.get_or_create_code(user_id)
        entries = self.ledger.entries_for_referrer(user_id)
        uncredited_ids = {entry.id for entry in self.ledger.uncredited_paying_entries(user_id)}
        required = self.policy.threshold_for(account_tier)

        tier_breakdown = {key: 0 for key in TIER_BREAKDOWN_KEYS}
        potential_paying = 0
        potential_revenue = 0.0
        paying_values = []
        next_batch_values = []

        for entry in entries:
            if entry.subscription_tier in tier_breakdown:
                tier_breakdown[entry.subscription_tier] += 1

            amount = entry.subscription_amount or 0.0
            if not entry.is_paying:
                if amount > 0:
                    potential_paying += 1
                    potential_revenue += amount
                continue

            if amount > 0:
                paying_values.append(amount)
                if entry.id in uncredited_ids:
                    next_batch_values.append(amount)

        paying_count = sum(1 for entry in entries if entry.is_paying)
        average_value = sum(paying_values) / len(paying_values) if paying_values else 0.0
        next_batch_average = (
            sum(next_batch_values) / len(next_batch_values) if next_batch_values else 0.0
        )

        return {
            "code": referral_code.code,
            "link": referral_link(referral_code.code),
            "clicks": referral_code.clicks,
            "conversions": referral_code.conversions,
            "total_referrals": len(entries),
            "paying_referrals": paying_count,
            "waitlist_referrals": len(entries) - paying_count,
            "potential_paying_users": potential_paying,
            "potential_revenue": potential_revenue,
            "tier_breakdown": tier_breakdown,
            "rewards": {
                "required_referrals": required,
                "current_batch": len(uncredited_ids),
                "progress_to_next_reward": min(len(uncredited_ids) / required * 100, 100.0),
                "completed_batches": len(self.ledger.credits_for_user(user_id)),
                "average_subscription_value": average_value,
                "projected_reward_tier": reward_tier_for(average_value),
                "next_batch_average_value": next_batch_average,
                "next_batch_projected_tier": reward_tier_for(next_batch_average),
            },
        }
