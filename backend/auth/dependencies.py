"""FastAPI authentication dependencies."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt_manager import verify_access_token
from auth.models import TokenPayload


# HTTP Bearer token security scheme; auto_error is off so a missing
# header yields 401 rather than FastAPI's default 403
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TokenPayload:
    """
    FastAPI dependency to extract and verify the current user from the bearer token.

    Usage:
        @router.get("/active")
        async def active(user: TokenPayload = Depends(get_current_user)):
            return {"user_id": user.user_id}

    Raises:
        HTTPException 401: If token is missing, invalid, or expired
    """
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return verify_access_token(credentials.credentials)


async def require_user_id(
    user: TokenPayload = Depends(get_current_user),
) -> str:
    """Dependency that returns just the user_id string."""
    return user.user_id
