"""Notification sinks for issued credits."""

import asyncio
from typing import Protocol

from fastapi import BackgroundTasks

from waitlist.auth.accounts import AccountService
from waitlist.email.service import EmailService
from waitlist.logging_config import get_logger
from waitlist.referral.models import ReferralCredit

logger = get_logger(__name__)


class CreditNotifier(Protocol):
    """Receives a fire-and-forget notice for every issued credit."""

    def credit_issued(self, user_id: int, credit: ReferralCredit) -> None:
        ...


class NullNotifier:
    """Notifier that only logs."""

    def credit_issued(self, user_id: int, credit: ReferralCredit) -> None:
        logger.info("credit_notification_skipped", user_id=user_id, credit_id=credit.id)


class EmailCreditNotifier:
    """Emails the referrer when a credit is issued.

    Inside a request the email is queued as a background task so it runs after
    the response is sent; elsewhere (CLI) it is sent inline.
    """

    def __init__(
        self,
        accounts: AccountService,
        email_service: EmailService,
        background_tasks: BackgroundTasks | None = None,
    ):
        self.accounts = accounts
        self.email_service = email_service
        self.background_tasks = background_tasks

    def credit_issued(self, user_id: int, credit: ReferralCredit) -> None:
        user = self.accounts.get_user(user_id)
        if user is None:
            logger.warning("credit_notification_unknown_user", user_id=user_id, credit_id=credit.id)
            return

        args = (
            user.email,
            user.name,
            len(credit.referral_ids),
            credit.expires_at.strftime("%B %d, %Y"),
        )

        if self.background_tasks is not None:
            self.background_tasks.add_task(self.email_service.send_credit_issued_email, *args)
        else:
            asyncio.run(self.email_service.send_credit_issued_email(*args))

        logger.info("credit_notification_queued", user_id=user_id, credit_id=credit.id)


def notify_credit_issued(notifier: CreditNotifier, user_id: int, credit: ReferralCredit) -> bool:
    """Hand an issued credit to the notifier.

    The credit is already committed, so a failing notifier is logged and
    reported as False instead of raised.
    """
    try:
        notifier.credit_issued(user_id, credit)
    except Exception as e:
        logger.error(
            "credit_notification_failed",
            user_id=user_id,
            credit_id=credit.id,
            error=str(e),
        )
        return False
    return True
