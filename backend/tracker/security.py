# backend/tracker/security.py
"""
Bearer token handling.

Credentials are issued elsewhere (login and registration are not part of
this service); this module only signs and validates the access tokens the
API accepts. Tokens carry the user id in `sub`.

Security notes:
- Access tokens are stateless and never stored
- Uses HS256 by default (symmetric, fast)
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from tracker.config import settings
from tracker.services.exceptions import InvalidCredentialsError, TokenExpiredError


class JWTHandler:
    """
    Creates and validates access tokens.

    Access tokens contain:
    - sub: User ID (string)
    - email: User's email
    - exp: Expiration timestamp
    - iat: Issued at timestamp
    - type: "access"
    """

    @staticmethod
    def create_access_token(
        user_id: int,
        email: str,
        expires_delta: timedelta | None = None,
    ) -> str:
        """
        Create a signed access token.

        Example:
            token = JWTHandler.create_access_token(user_id=1, email="user@example.com")
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)

        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "exp": now + expires_delta,
            "iat": now,
            "type": "access",
        }
        return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    @staticmethod
    def validate_access_token(token: str) -> dict[str, Any]:
        """
        Validate an access token and return its payload.

        Raises:
            TokenExpiredError: If the token has expired
            InvalidCredentialsError: If the token is invalid or malformed
        """
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret_key,
                algorithms=[settings.jwt_algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Access token has expired")
        except JWTError as e:
            raise InvalidCredentialsError(f"Invalid token: {str(e)}")

        if payload.get("type") != "access":
            raise InvalidCredentialsError("Invalid token type")
        if not str(payload.get("sub", "")).isdigit():
            raise InvalidCredentialsError("Invalid token subject")
        return payload
