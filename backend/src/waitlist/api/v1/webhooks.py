"""Webhook endpoints for external services."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from waitlist.api.dependencies import get_accounts, get_payment_handler
from waitlist.auth.accounts import AccountService
from waitlist.logging_config import get_logger
from waitlist.payments.stripe_service import (
    parse_cancelled_subscription,
    parse_checkout_payment,
    verify_webhook_signature,
)
from waitlist.referral.errors import LedgerUnavailable
from waitlist.referral.payments import PaymentEventHandler
from waitlist.settings import settings
from waitlist.storage.db import Database, get_database
from waitlist.storage.models import ProcessedWebhookEvent

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def is_event_processed(database: Database, event_id: str, source: str) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        database: Database holding processed events
        event_id: The unique event ID from the webhook source
        source: The webhook source (e.g., "stripe")

    Returns:
        True if already processed, False otherwise
    """
    with database.session() as session:
        existing = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.event_id == event_id,
            ProcessedWebhookEvent.source == source,
        ).first()
        return existing is not None


def mark_event_processed(database: Database, event_id: str, event_type: str, source: str) -> None:
    """Mark a webhook event as processed.

    A concurrent delivery of the same event may have marked it first; that is
    not an error.
    """
    try:
        with database.session() as session:
            session.add(
                ProcessedWebhookEvent(
                    event_id=event_id,
                    event_type=event_type,
                    source=source,
                    processed_at=datetime.utcnow(),
                )
            )
    except IntegrityError:
        logger.info("webhook_event_already_marked", event_id=event_id, source=source)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    database: Database = Depends(get_database),
    accounts: AccountService = Depends(get_accounts),
    handler: PaymentEventHandler = Depends(get_payment_handler),
):
    """Handle Stripe webhook events.

    Verifies the webhook signature and feeds completed checkouts into
    referral tracking. Uses database-backed idempotency to skip events that
    were already handled.
    """
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = verify_webhook_signature(payload, sig_header)
    except ValueError as e:
        logger.warning("stripe_webhook_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    event_id = event.get("id", "")
    event_type = event.get("type", "")
    data_object = event["data"]["object"]

    if event_type not in ("checkout.session.completed", "customer.subscription.deleted"):
        logger.info("stripe_webhook_unhandled", event_type=event_type)
        return {"received": True}

    if is_event_processed(database, event_id, "stripe"):
        logger.info("stripe_webhook_duplicate", event_id=event_id)
        return {"received": True, "duplicate": True}

    try:
        if event_type == "checkout.session.completed":
            payment = parse_checkout_payment(data_object)
            if payment is None:
                logger.warning("stripe_checkout_without_user", event_id=event_id)
            else:
                outcome = handler.on_user_became_paying(payment.user_id, payment.tier, payment.amount)
                logger.info(
                    "stripe_checkout_completed",
                    event_id=event_id,
                    user_id=payment.user_id,
                    referral_updated=outcome.referral_updated,
                )
        else:
            user_id = parse_cancelled_subscription(data_object)
            if user_id is not None:
                accounts.mark_not_paying(user_id)
                logger.info("stripe_subscription_cancelled", event_id=event_id, user_id=user_id)
    except (LedgerUnavailable, SQLAlchemyError) as e:
        # Not marked as processed, so Stripe's retry runs it again
        logger.error("stripe_webhook_error", event_id=event_id, event_type=event_type, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error processing payment",
        )

    # Mark as processed AFTER successful handling
    mark_event_processed(database, event_id, event_type, "stripe")
    return {"received": True}
