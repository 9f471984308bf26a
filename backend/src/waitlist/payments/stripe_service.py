"""Stripe webhook helpers."""

from dataclasses import dataclass
from typing import Any

import stripe

from waitlist.logging_config import get_logger
from waitlist.settings import settings

logger = get_logger(__name__)

DEFAULT_SUBSCRIPTION_TIER = "pro"


@dataclass(frozen=True)
class CheckoutPayment:
    """A completed checkout that turned a user into a paying subscriber."""
    user_id: int
    tier: str
    amount: float


def verify_webhook_signature(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and parse a Stripe webhook event.

    Args:
        payload: Raw request body
        sig_header: Stripe-Signature header value

    Returns:
        Verified Stripe event

    Raises:
        ValueError: If the payload or signature is invalid
    """
    if not settings.stripe_webhook_secret:
        raise ValueError("Stripe webhook secret not configured")

    try:
        return stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret,
        )
    except stripe.SignatureVerificationError:
        raise ValueError("Invalid webhook signature")


def _metadata_user_id(obj: Any) -> int | None:
    metadata = obj.get("metadata") or {}
    raw = metadata.get("userId") or metadata.get("user_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("stripe_metadata_invalid_user_id", value=raw)
        return None


def parse_checkout_payment(session: Any) -> CheckoutPayment | None:
    """Extract the paying user from a completed checkout session.

    Returns:
        The payment, or None if the session carries no user id
    """
    user_id = _metadata_user_id(session)
    if user_id is None:
        return None

    metadata = session.get("metadata") or {}
    return CheckoutPayment(
        user_id=user_id,
        tier=metadata.get("tier") or DEFAULT_SUBSCRIPTION_TIER,
        amount=(session.get("amount_total") or 0) / 100,
    )


def parse_cancelled_subscription(subscription: Any) -> int | None:
    """User id of a deleted subscription, if present."""
    return _metadata_user_id(subscription)
