"""Transactional email via SendGrid."""

from typing import Optional

import httpx

from waitlist.logging_config import get_logger
from waitlist.settings import settings

logger = get_logger(__name__)


class EmailService:
    """Email service using SendGrid API.

    Sends the referral credit notification. Failures are logged and reported
    as False, never raised.
    """

    SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key: str | None = None):
        """Initialize email service."""
        self.api_key = api_key if api_key is not None else settings.sendgrid_api_key
        self.from_email = settings.sendgrid_from_email
        self.from_name = settings.sendgrid_from_name
        self.enabled = bool(self.api_key)

        if not self.enabled:
            logger.warning("email_service_disabled", reason="SENDGRID_API_KEY not set")

    async def _send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """Send an email via SendGrid API.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.enabled:
            logger.warning("email_not_sent", reason="service_disabled", to=to_email)
            return False

        payload = {
            "personalizations": [
                {
                    "to": [{"email": to_email}],
                    "subject": subject,
                }
            ],
            "from": {
                "email": self.from_email,
                "name": self.from_name,
            },
            "content": [
                {"type": "text/html", "value": html_content},
            ],
        }

        if text_content:
            payload["content"].insert(0, {"type": "text/plain", "value": text_content})

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.SENDGRID_API_URL,
                    json=payload,
                    headers=headers,
                    timeout=30.0,
                )
        except httpx.RequestError as e:
            logger.error("email_send_error", to=to_email, error=str(e))
            return False

        if response.status_code in (200, 201, 202):
            logger.info("email_sent", to=to_email, subject=subject)
            return True

        logger.error(
            "email_send_failed",
            to=to_email,
            status=response.status_code,
            body=response.text[:200],
        )
        return False

    async def send_credit_issued_email(
        self,
        to_email: str,
        user_name: Optional[str],
        referral_count: int,
        expires_at_text: str,
    ) -> bool:
        """Tell a referrer that their referrals earned a credit.

        Args:
            to_email: Referrer's email address
            user_name: Referrer's name (optional)
            referral_count: Paying referrals consumed by the credit
            expires_at_text: Human readable expiry date

        Returns:
            True if sent successfully
        """
        base_url = settings.frontend_url or settings.allowed_origins.split(",")[0]
        dashboard_url = f"{base_url}/dashboard"
        greeting = f"Hi {user_name}," if user_name else "Hi,"

        subject = "You earned a referral credit"

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"></head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <p>{greeting}</p>
                <p>{referral_count} people you referred are now paying subscribers, so you have earned a referral credit.</p>
                <p>Your credit is valid until <strong>{expires_at_text}</strong>.</p>
                <p style="text-align: center;">
                    <a href="{dashboard_url}" style="display: inline-block; background-color: #2563eb; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px;">View your rewards</a>
                </p>
            </div>
        </body>
        </html>
        """

        text_content = (
            f"{greeting}\n\n"
            f"{referral_count} people you referred are now paying subscribers, "
            f"so you have earned a referral credit.\n"
            f"Your credit is valid until {expires_at_text}.\n\n"
            f"View your rewards: {dashboard_url}\n"
        )

        return await self._send_email(to_email, subject, html_content, text_content)
