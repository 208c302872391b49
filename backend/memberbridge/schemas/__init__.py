"""Pydantic schemas for API validation"""

from memberbridge.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshTokenRequest,
    SessionUser,
    TokenPairResponse,
)
from memberbridge.schemas.device import DeviceCodeRequest, DeviceCodeResponse, DeviceStatusResponse
from memberbridge.schemas.response import ErrorResponse, HealthResponse

__all__ = [
    "LoginRequest", "LoginResponse", "LogoutRequest", "LogoutResponse",
    "RefreshTokenRequest", "SessionUser", "TokenPairResponse",
    "DeviceCodeRequest", "DeviceCodeResponse", "DeviceStatusResponse",
    "ErrorResponse", "HealthResponse",
]
