"""Bearer token issuing and verification (JWT)."""

from datetime import datetime, timedelta

from jose import JWTError, jwt

from waitlist.auth.models import UserAccount
from waitlist.logging_config import get_logger
from waitlist.settings import settings
from waitlist.storage.db import Database

logger = get_logger(__name__)

# JWT settings
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 2


class LocalAuthService:
    """Resolves bearer tokens to user accounts."""

    def __init__(self, database: Database):
        """Initialize auth service."""
        self.database = database
        self.logger = get_logger(__name__)

    # ==================== TOKENS ====================

    def create_access_token(self, user_id: int, expires_in: timedelta | None = None) -> str:
        """Create a JWT access token.

        Args:
            user_id: User ID
            expires_in: Token lifetime (defaults to JWT_EXPIRE_HOURS)

        Returns:
            Encoded JWT
        """
        expire = datetime.utcnow() + (expires_in or timedelta(hours=JWT_EXPIRE_HOURS))
        payload = {
            "sub": str(user_id),
            "exp": expire,
            "type": "access",
        }
        return jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """Verify and decode a JWT token.

        Args:
            token: JWT token

        Returns:
            Decoded payload or None if invalid
        """
        try:
            payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_invalid", error=str(e))
            return None

        if payload.get("type") != "access":
            return None
        return payload

    def get_user_from_token(self, token: str) -> UserAccount | None:
        """Get the active user a token was issued for.

        Args:
            token: JWT token

        Returns:
            User account or None
        """
        payload = self.verify_token(token)
        if not payload:
            return None

        try:
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            return None

        with self.database.session() as session:
            user = session.get(UserAccount, user_id)
            if user is None or not user.is_active:
                return None
            return user
