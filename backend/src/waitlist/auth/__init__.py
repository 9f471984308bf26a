"""Accounts and bearer-token authentication."""

from waitlist.auth.accounts import AccountService
from waitlist.auth.local import LocalAuthService
from waitlist.auth.middleware import get_current_user, require_auth, require_internal_token
from waitlist.auth.models import AccountTier, UserAccount

__all__ = [
    "AccountService",
    "AccountTier",
    "LocalAuthService",
    "UserAccount",
    "get_current_user",
    "require_auth",
    "require_internal_token",
]
