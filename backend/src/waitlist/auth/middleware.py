"""Authentication dependencies for FastAPI."""

import secrets

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from waitlist.auth.local import LocalAuthService
from waitlist.auth.models import UserAccount
from waitlist.logging_config import get_logger
from waitlist.settings import settings
from waitlist.storage.db import Database, get_database

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    database: Database = Depends(get_database),
) -> UserAccount | None:
    """Get current authenticated user.

    Args:
        request: FastAPI request
        credentials: Bearer token
        database: Database holding user accounts

    Returns:
        User account or None if not authenticated
    """
    if not credentials:
        return None

    user = LocalAuthService(database).get_user_from_token(credentials.credentials)

    if user:
        # Store user in request state for later use
        request.state.user = user

    return user


def require_auth(user: UserAccount | None = Depends(get_current_user)) -> UserAccount:
    """Require authentication - raises 401 if not authenticated.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_internal_token(
    x_internal_token: str | None = Header(default=None, alias="X-Internal-Token"),
) -> None:
    """Guard server-to-server endpoints with the shared internal token.

    Raises:
        HTTPException: 503 if no token is configured, 401 if it does not match
    """
    expected = settings.internal_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal endpoints not configured",
        )

    if not x_internal_token or not secrets.compare_digest(x_internal_token, expected):
        logger.warning("internal_token_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )
