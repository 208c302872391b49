"""Session schemas"""

from pydantic import BaseModel
from typing import Optional


class LoginRequest(BaseModel):
    """Login body; presence is checked by the service so missing fields map to 400"""
    username: Optional[str] = None
    password: Optional[str] = None


class RefreshTokenRequest(BaseModel):
    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class SessionUser(BaseModel):
    email: str
    name: str
    subscription: str


class TokenPairResponse(BaseModel):
    """Token pair returned by refresh"""
    success: bool = True
    access_token: str
    refresh_token: str
    expires_in: int


class LoginResponse(TokenPairResponse):
    """Token pair plus the authenticated user's summary"""
    user: SessionUser


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Logged out successfully"
