"""Application settings and configuration."""

import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "http://localhost:3000"
    frontend_url: str | None = None

    # JWT
    jwt_secret_key: str = "change-me-in-production"

    # Shared secret for server-to-server calls (payment source, signup flow)
    internal_api_token: str | None = None

    # Database
    database_url: str = "sqlite:///./waitlist.db"

    # Stripe
    stripe_webhook_secret: str | None = None

    # SendGrid
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str = "hello@example.com"
    sendgrid_from_name: str = "Waitlist"

    # Referral credits
    referral_thresholds: dict[str, int] = Field(
        default_factory=lambda: {"pilot": 5, "waitlist": 10}
    )
    referral_default_threshold: int = 20
    referral_credit_window_days: int = 90


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
