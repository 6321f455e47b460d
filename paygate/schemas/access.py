"""
Access verification and session API schemas.
"""
from pydantic import BaseModel, Field


class VerifyAccessIn(BaseModel):
    email: str | None = None


class VerifyAccessOut(BaseModel):
    hasValidPayment: bool
    email: str | None = None
    message: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    user_id: str | None = None


class RefreshIn(BaseModel):
    refresh_token: str = Field(min_length=1)


class TokenPairOut(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"
