"""Authentication routes"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session
from typing import Optional

from memberbridge.core.database import get_db
from memberbridge.config import settings
from memberbridge.schemas.auth import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshTokenRequest,
    SessionUser,
    TokenPairResponse,
)
from memberbridge.services.audit_service import audit_service
from memberbridge.services.auth_service import AuthService
from memberbridge.services.rate_limiter import RateLimiter
from memberbridge.api.deps import client_ip, get_auth_service, get_rate_limiter
from memberbridge.core.exceptions import AuthenticationError, RateLimitExceededError
from memberbridge.metrics import LOGIN_ATTEMPTS, TOKEN_REFRESHES

router = APIRouter()


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: LoginRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Login endpoint - verify WordPress credentials and return a token pair

    Args:
        credentials: Username and password
        db: Database session

    Returns:
        Access/refresh tokens and user summary
    """
    ip = client_ip(request)
    limiter.enforce(
        f"login:min:{ip}", settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60,
        "Too many login attempts. Please wait a minute.",
    )
    limiter.enforce(
        f"login:hour:{ip}", settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600,
        "Too many login attempts. Please try again later.",
    )

    try:
        result = auth.login(db, credentials.username, credentials.password)
    except RateLimitExceededError:
        LOGIN_ATTEMPTS.labels("locked").inc()
        raise
    except AuthenticationError:
        LOGIN_ATTEMPTS.labels("rejected").inc()
        raise
    LOGIN_ATTEMPTS.labels("success").inc()

    audit_service.dispatch(
        background_tasks,
        user_id=result.user.id,
        action="auth.login",
        target_type="user",
        target_id=str(result.user.id),
        ip_address=ip,
        metadata={"refresh_persisted": result.refresh_persisted},
    )

    return LoginResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=settings.ACCESS_TOKEN_LIFETIME,
        user=SessionUser(
            email=result.user.email,
            name=result.user.display_name,
            subscription=result.subscription,
        ),
    )


@router.post("/refresh", response_model=TokenPairResponse)
def refresh_token(
    req: RefreshTokenRequest,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Rotate a refresh token into a new token pair

    The presented token is revoked; presenting it again fails.
    """
    ip = client_ip(request)
    limiter.enforce(
        f"refresh:min:{ip}", settings.RATE_LIMIT_PER_MINUTE, 60,
        "Too many refresh attempts. Slow down.",
    )

    try:
        result = auth.refresh(db, req.refresh_token)
    except AuthenticationError:
        TOKEN_REFRESHES.labels("rejected").inc()
        raise
    TOKEN_REFRESHES.labels("rotated").inc()

    return TokenPairResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=settings.ACCESS_TOKEN_LIFETIME,
    )


@router.post("/logout", response_model=LogoutResponse, status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[LogoutRequest] = None,
    db: Session = Depends(get_db),
):
    """
    Logout endpoint - revoke the refresh token if one is presented

    Always succeeds, whether or not the token was known.
    """
    if body and body.refresh_token:
        revoked = AuthService.logout(db, body.refresh_token)
        audit_service.dispatch(
            background_tasks,
            user_id=None,
            action="auth.logout",
            target_type="refresh_token",
            ip_address=client_ip(request),
            metadata={"known_token": revoked},
        )

    return LogoutResponse()
