"""JWT verification for the application's session cookie"""

import logging
from datetime import UTC, datetime, timedelta

import jwt

logger = logging.getLogger(__name__)


class AuthService:
    """Validate session tokens issued by the main application"""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        if not secret_key:
            raise ValueError("JWT secret key cannot be empty")

        self.secret_key = secret_key
        self.algorithm = algorithm

    def create_access_token(self, account_id: str, expires_in: timedelta = timedelta(days=30)) -> str:
        """Issue a token for an account (used by tooling and tests)"""
        now = datetime.now(UTC)
        payload = {"sub": account_id, "iat": now, "exp": now + expires_in}
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> dict | None:
        """Verify a JWT token and return the payload if valid"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        if payload.get("sub") is None:
            logger.warning("Token missing sub")
            return None
        return payload
