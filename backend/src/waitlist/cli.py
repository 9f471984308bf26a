"""Command-line interface for waitlist operators."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from waitlist.auth.accounts import AccountService
from waitlist.email.service import EmailService
from waitlist.logging_config import configure_logging, get_logger
from waitlist.referral.eligibility import EligibilityEvaluator
from waitlist.referral.errors import LedgerUnavailable
from waitlist.referral.issuer import Conflict, CreditIssuer, Issued
from waitlist.referral.ledger import ReferralLedger
from waitlist.referral.notifications import EmailCreditNotifier, notify_credit_issued
from waitlist.referral.policy import CreditPolicy
from waitlist.settings import settings
from waitlist.storage.db import db

logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="waitlist",
    help="Waitlist referral credits - operator tools",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log at DEBUG level")] = False,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Emit JSON log lines")] = False,
) -> None:
    """Configure logging for every command."""
    configure_logging(
        level="DEBUG" if verbose else None,
        log_format="json" if json_logs else None,
    )


def _components() -> tuple[AccountService, ReferralLedger, CreditIssuer]:
    policy = CreditPolicy.from_settings(settings)
    ledger = ReferralLedger(db, credit_window=policy.credit_window)
    issuer = CreditIssuer(ledger, EligibilityEvaluator(ledger, policy), policy)
    return AccountService(db), ledger, issuer


def _issue(accounts: AccountService, issuer: CreditIssuer, user_id: int, notify: bool):
    outcome = issuer.issue_credit_if_eligible(user_id, accounts.get_account_tier(user_id))
    if isinstance(outcome, Issued) and notify:
        notify_credit_issued(EmailCreditNotifier(accounts, EmailService()), user_id, outcome.credit)
    return outcome


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("credit-status")
def credit_status(
    user_id: Annotated[int, typer.Argument(help="Referrer user ID")],
) -> None:
    """Show a referrer's credits and progress towards the next one."""
    accounts, ledger, issuer = _components()

    user = accounts.get_user(user_id)
    if not user:
        console.print(f"[red]User {user_id} not found[/red]")
        raise typer.Exit(1)

    result = issuer.evaluator.evaluate(user_id, user.user_type)

    console.print(f"[bold]User:[/bold] {user.email} (ID: {user.id}, tier: {user.user_type})")
    console.print(f"[bold]Uncredited paying referrals:[/bold] {result.uncredited_count}/{result.threshold}")
    console.print(f"[bold]Eligible now:[/bold] {'yes' if result.eligible else 'no'}")

    credits = ledger.credits_for_user(user_id)
    if not credits:
        console.print("[yellow]No credits issued[/yellow]")
        return

    table = Table(title="Credits")
    table.add_column("ID", style="cyan")
    table.add_column("Referrals", justify="right")
    table.add_column("Issued")
    table.add_column("Expires")
    table.add_column("Used")

    for credit in credits:
        table.add_row(
            str(credit.id),
            str(len(credit.referral_ids)),
            credit.issued_at.strftime("%Y-%m-%d %H:%M"),
            credit.expires_at.strftime("%Y-%m-%d"),
            credit.used_at.strftime("%Y-%m-%d") if credit.used_at else "-",
        )

    console.print(table)


@app.command("issue-credit")
def issue_credit(
    user_id: Annotated[int, typer.Argument(help="Referrer user ID")],
    notify: Annotated[bool, typer.Option("--notify/--no-notify", help="Email the referrer")] = True,
) -> None:
    """Issue a credit to a referrer if they are eligible."""
    accounts, _, issuer = _components()

    try:
        outcome = _issue(accounts, issuer, user_id, notify)
    except LedgerUnavailable as e:
        console.print(f"[bold red]✗[/bold red] Ledger unavailable: {e}")
        raise typer.Exit(1)

    if isinstance(outcome, Issued):
        console.print(
            f"[bold green]✓[/bold green] Credit {outcome.credit.id} issued "
            f"for {len(outcome.credit.referral_ids)} referrals"
        )
    elif isinstance(outcome, Conflict):
        console.print("[yellow]Conflict with a concurrent issuance, try again[/yellow]")
        raise typer.Exit(2)
    else:
        console.print(f"[yellow]Not eligible yet: {outcome.remaining_needed} more paying referrals needed[/yellow]")


@app.command("reconcile")
def reconcile(
    notify: Annotated[bool, typer.Option("--notify/--no-notify", help="Email rewarded referrers")] = True,
) -> None:
    """Issue every credit that is due, e.g. after a failed payment callback."""
    accounts, ledger, issuer = _components()

    issued = 0
    conflicts = 0
    try:
        for referrer_id in ledger.referrers_with_uncredited_entries():
            # Several batches may be due for one referrer
            while True:
                outcome = _issue(accounts, issuer, referrer_id, notify)
                if isinstance(outcome, Issued):
                    issued += 1
                    continue
                if isinstance(outcome, Conflict):
                    conflicts += 1
                break
    except LedgerUnavailable as e:
        logger.error("reconcile_aborted", issued=issued, conflicts=conflicts, error=str(e))
        console.print(f"[bold red]✗[/bold red] Ledger unavailable after {issued} credits: {e}")
        raise typer.Exit(1)

    logger.info("reconcile_finished", issued=issued, conflicts=conflicts)
    console.print(f"[bold green]✓[/bold green] Reconcile finished: {issued} credits issued, {conflicts} conflicts")


if __name__ == "__main__":
    app()
