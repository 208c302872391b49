"""API dependencies - service singletons and bearer authentication"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from memberbridge.config import settings
from memberbridge.core.exceptions import TokenInvalidError
from memberbridge.core.security import ACCESS_TOKEN_TYPE, TokenPayload, TokenSigner, get_token_signer
from memberbridge.services.auth_service import AuthService
from memberbridge.services.ephemeral_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)
from memberbridge.services.identity_gateway import WordPressIdentityGateway
from memberbridge.services.login_guard import LoginGuard
from memberbridge.services.rate_limiter import RateLimiter
import logging

logger = logging.getLogger(__name__)

# auto_error=False: a missing header must produce our uniform 401, not 403
security = HTTPBearer(auto_error=False)


@lru_cache()
def get_fallback_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@lru_cache()
def get_ephemeral_store() -> KeyValueStore:
    """Shared Redis store when REDIS_URL is set, otherwise the in-process one"""
    if settings.REDIS_URL:
        logger.info("Using Redis for login guard and rate limits")
        return RedisKeyValueStore.from_url(settings.REDIS_URL, settings.REDIS_SOCKET_TIMEOUT)
    logger.warning("REDIS_URL not set; lockout and rate limits are per instance")
    return get_fallback_store()


@lru_cache()
def get_login_guard() -> LoginGuard:
    return LoginGuard(get_ephemeral_store(), fallback=get_fallback_store())


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_ephemeral_store(), fallback=get_fallback_store())


@lru_cache()
def get_identity_gateway() -> WordPressIdentityGateway:
    return WordPressIdentityGateway(
        base_url=settings.WORDPRESS_BASE_URL,
        api_key=settings.WORDPRESS_API_KEY,
        timeout=settings.IDENTITY_TIMEOUT_SECONDS,
        max_retries=settings.IDENTITY_MAX_RETRIES,
        backoff_seconds=settings.IDENTITY_RETRY_BACKOFF_SECONDS,
    )


def get_signer() -> TokenSigner:
    return get_token_signer()


def get_auth_service(
    signer: TokenSigner = Depends(get_signer),
    gateway: WordPressIdentityGateway = Depends(get_identity_gateway),
    guard: LoginGuard = Depends(get_login_guard),
) -> AuthService:
    return AuthService(signer=signer, gateway=gateway, guard=guard)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    signer: TokenSigner = Depends(get_signer),
) -> TokenPayload:
    """
    Resolve the caller from a bearer access token

    Raises:
        TokenInvalidError: Missing, invalid, expired or refresh-typed token
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise TokenInvalidError("No token provided")
    claims = signer.verify(credentials.credentials, expected_type=ACCESS_TOKEN_TYPE)
    return TokenPayload.from_claims(claims)


async def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    signer: TokenSigner = Depends(get_signer),
) -> Optional[TokenPayload]:
    """Current principal if a valid access token is presented, None otherwise"""
    if credentials is None:
        return None
    try:
        claims = signer.verify(credentials.credentials, expected_type=ACCESS_TOKEN_TYPE)
        return TokenPayload.from_claims(claims)
    except TokenInvalidError:
        return None
