"""Dependency providers wiring the referral components together."""

from fastapi import BackgroundTasks, Depends

from waitlist.auth.accounts import AccountService
from waitlist.email.service import EmailService
from waitlist.referral.eligibility import EligibilityEvaluator
from waitlist.referral.issuer import CreditIssuer
from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.notifications import CreditNotifier, EmailCreditNotifier
from waitlist.referral.payments import PaymentEventHandler
from waitlist.referral.policy import CreditPolicy
from waitlist.referral.service import ReferralService
from waitlist.settings import settings
from waitlist.storage.db import Database, get_database


def get_policy() -> CreditPolicy:
    return CreditPolicy.from_settings(settings)


def get_accounts(database: Database = Depends(get_database)) -> AccountService:
    return AccountService(database)


def get_ledger(
    database: Database = Depends(get_database),
    policy: CreditPolicy = Depends(get_policy),
) -> ReferralLedger:
    return ReferralLedger(database, credit_window=policy.credit_window)


def get_issuer(
    ledger: ReferralLedger = Depends(get_ledger),
    policy: CreditPolicy = Depends(get_policy),
) -> CreditIssuer:
    return CreditIssuer(ledger, EligibilityEvaluator(ledger, policy), policy)


def get_email_service() -> EmailService:
    return EmailService()


def get_credit_notifier(
    background_tasks: BackgroundTasks,
    accounts: AccountService = Depends(get_accounts),
    email_service: EmailService = Depends(get_email_service),
) -> CreditNotifier:
    """Emails for issued credits, sent after the response."""
    return EmailCreditNotifier(accounts, email_service, background_tasks)


def get_payment_handler(
    accounts: AccountService = Depends(get_accounts),
    ledger: ReferralLedger = Depends(get_ledger),
    issuer: CreditIssuer = Depends(get_issuer),
    notifier: CreditNotifier = Depends(get_credit_notifier),
) -> PaymentEventHandler:
    return PaymentEventHandler(accounts, ledger, issuer, notifier)


def get_referral_service(
    ledger: ReferralLedger = Depends(get_ledger),
    accounts: AccountService = Depends(get_accounts),
    policy: CreditPolicy = Depends(get_policy),
) -> ReferralService:
    return ReferralService(ledger, accounts, policy)
