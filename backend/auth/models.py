"""Pydantic models for authentication."""

from typing import Optional

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    """Verified bearer token claims."""

    user_id: str = Field(..., description="Owner identifier")
    email: Optional[str] = Field(None, description="User email, when the issuer includes it")
    exp: int = Field(..., description="Expiration timestamp")
    iat: int = Field(..., description="Issued at timestamp")
