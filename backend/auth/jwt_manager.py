"""Bearer token creation and verification.

Tokens are HS256 JWTs issued by the identity provider.  The subject is
read from ``user_id`` and falls back to the standard ``sub`` claim.
"""

import logging
import os
import time
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import HTTPException, status

from auth.models import TokenPayload

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32
CLOCK_SKEW_LEEWAY_SECONDS = 10


class JWTError(Exception):
    """Custom exception for JWT configuration errors."""

    pass


_secret_logged = False


def get_jwt_secret() -> str:
    """Get JWT secret key from environment."""
    global _secret_logged
    secret = os.getenv("JWT_SECRET_KEY")
    if not secret:
        raise JWTError(
            "JWT_SECRET_KEY environment variable not set. "
            "Generate one with: openssl rand -hex 32"
        )
    if len(secret) < MIN_SECRET_LENGTH:
        raise JWTError(
            f"JWT_SECRET_KEY is too short (minimum {MIN_SECRET_LENGTH} characters). "
            "Generate a new one with: openssl rand -hex 32"
        )
    if not _secret_logged:
        logger.info("JWT secret key loaded (length=%d)", len(secret))
        _secret_logged = True
    return secret


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token, for local tooling and tests.

    Args:
        user_id: Subject of the token
        email: Optional email claim
        expires_delta: Token lifetime (default: 1 day)

    Returns:
        Encoded JWT token string

    Raises:
        JWTError: If JWT_SECRET_KEY is not configured
    """
    if expires_delta is None:
        expires_delta = timedelta(days=1)

    # time.time() gives UTC epoch seconds; naive datetime.timestamp() would not
    now_epoch = int(time.time())
    payload = {
        "user_id": user_id,
        "exp": now_epoch + int(expires_delta.total_seconds()),
        "iat": now_epoch,
    }
    if email:
        payload["email"] = email

    try:
        return jwt.encode(payload, get_jwt_secret(), algorithm=JWT_ALGORITHM)
    except JWTError:
        raise
    except Exception as e:
        raise JWTError(f"Failed to create JWT token: {str(e)}") from e


def verify_access_token(token: str) -> TokenPayload:
    """
    Verify and decode a bearer token.

    Checks the signature, requires ``exp`` and ``iat``, and allows
    ``CLOCK_SKEW_LEEWAY_SECONDS`` of clock skew.

    Raises:
        HTTPException: 401 if the token is invalid or expired, 500 if the
            secret is not configured
    """
    try:
        payload = jwt.decode(
            token,
            get_jwt_secret(),
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "iat"]},
            leeway=CLOCK_SKEW_LEEWAY_SECONDS,
        )

    except jwt.ExpiredSignatureError:
        logger.warning("JWT verify failed: token expired (prefix=%s…)", token[:8])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired. Please log in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    except jwt.InvalidTokenError as e:
        logger.warning("JWT verify failed: invalid token (prefix=%s…): %s", token[:8], e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    except JWTError as e:
        logger.error("JWT verify failed: config error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )

    user_id = payload.get("user_id") or payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing subject",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenPayload(
        user_id=str(user_id),
        email=payload.get("email"),
        exp=payload["exp"],
        iat=payload["iat"],
    )
