"""Login, refresh and logout orchestration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memberbridge.config import settings
from memberbridge.core.exceptions import (
    AccountLockedError,
    InvalidCredentialsError,
    TokenInvalidError,
    UpstreamUnavailableError,
    ValidationError,
)
from memberbridge.core.security import REFRESH_TOKEN_TYPE, TokenPair, TokenPayload, TokenSigner
from memberbridge.services.identity_gateway import IdentityUser, WordPressIdentityGateway
from memberbridge.services.login_guard import LoginGuard
from memberbridge.services.token_service import token_service
from memberbridge.services.user_service import subscription_label, user_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    tokens: TokenPair
    user: IdentityUser
    has_active_membership: bool
    refresh_persisted: bool

    @property
    def subscription(self) -> str:
        return subscription_label(self.has_active_membership)


@dataclass(frozen=True)
class RefreshResult:
    tokens: TokenPair
    user_id: int


class AuthService:
    """Exchange WordPress credentials for first-party sessions."""

    def __init__(
        self,
        signer: TokenSigner,
        gateway: WordPressIdentityGateway,
        guard: LoginGuard,
    ) -> None:
        self.signer = signer
        self.gateway = gateway
        self.guard = guard

    def login(self, db: Session, username: Optional[str], password: Optional[str]) -> LoginResult:
        """
        Authenticate with WordPress and mint a token pair.

        The lock check runs before the credential check, so a locked
        username is refused even with the right password.

        Raises:
            ValidationError: Missing username or password
            AccountLockedError: Too many recent failures
            InvalidCredentialsError: WordPress rejected the credentials
            UpstreamUnavailableError: WordPress unreachable
        """
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username and password are required")

        status = self.guard.is_locked(username, settings.LOGIN_MAX_ATTEMPTS)
        if status.locked:
            logger.warning("Login refused for locked username %s", username.lower())
            raise AccountLockedError(status.retry_after)

        identity = self.gateway.authenticate(username, password)
        if identity is None:
            self.guard.record_failure(username, settings.LOGIN_LOCKOUT_WINDOW_SECONDS)
            raise InvalidCredentialsError()

        has_membership = self.gateway.has_active_membership(identity.id)
        self.guard.reset(username)

        tokens = self.signer.issue_pair(
            TokenPayload(
                user_id=identity.id,
                username=identity.username,
                email=identity.email,
                has_active_membership=has_membership,
            )
        )
        persisted = self._persist_login_refresh(db, identity, has_membership, tokens.refresh_token)
        logger.info("User authenticated: %s", identity.id)
        return LoginResult(
            tokens=tokens,
            user=identity,
            has_active_membership=has_membership,
            refresh_persisted=persisted,
        )

    @staticmethod
    def _persist_login_refresh(
        db: Session, identity: IdentityUser, has_membership: bool, refresh_token: str
    ) -> bool:
        # Best effort: the caller still gets a working access token when the
        # ledger write fails; only refresh rotation is degraded.
        try:
            user_service.sync_user(
                db,
                user_id=identity.id,
                email=identity.email,
                display_name=identity.display_name,
                has_active_membership=has_membership,
            )
            token_service.persist(db, identity.id, refresh_token)
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to persist refresh token for user %s", identity.id)
            return False

    def refresh(self, db: Session, refresh_token: Optional[str]) -> RefreshResult:
        """
        Rotate a refresh token.

        Signature validity alone is not enough: the token must also be live
        in the ledger. The new record is persisted and the old revoked in
        one commit before the new pair is returned.

        Raises:
            ValidationError: Missing token
            TokenInvalidError: Bad signature, wrong type, revoked, expired or replayed
            UpstreamUnavailableError: WordPress or the store is unreachable
        """
        if not refresh_token:
            raise ValidationError("Refresh token is required")

        claims = self.signer.verify(refresh_token, expected_type=REFRESH_TOKEN_TYPE)
        valid, record = token_service.validate(db, refresh_token)
        if not valid:
            raise TokenInvalidError("Refresh token not recognized, revoked or expired")

        payload = TokenPayload.from_claims(claims)
        if record.user_id != payload.user_id:
            raise TokenInvalidError("Refresh token owner mismatch")

        has_membership = self.gateway.has_active_membership(payload.user_id)
        tokens = self.signer.issue_pair(
            TokenPayload(
                user_id=payload.user_id,
                username=payload.username,
                email=payload.email,
                has_active_membership=has_membership,
            )
        )
        try:
            token_service.rotate(db, refresh_token, tokens.refresh_token, payload.user_id)
        except SQLAlchemyError as exc:
            logger.exception("Refresh rotation failed for user %s", payload.user_id)
            raise UpstreamUnavailableError("credential store", "Unable to refresh session") from exc

        try:
            user_service.sync_user(
                db,
                user_id=payload.user_id,
                email=payload.email,
                has_active_membership=has_membership,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.warning("User mirror update failed for %s", payload.user_id)

        logger.info("Refresh token rotated for user %s", payload.user_id)
        return RefreshResult(tokens=tokens, user_id=payload.user_id)

    @staticmethod
    def logout(db: Session, refresh_token: Optional[str]) -> bool:
        """
        Revoke the presented refresh token, if any.

        The caller always reports success so logout is not an oracle on
        token validity.
        """
        if not refresh_token:
            return False
        revoked = token_service.revoke_refresh_token(db, refresh_token)
        logger.info("Logout processed (known token: %s)", revoked)
        return revoked
