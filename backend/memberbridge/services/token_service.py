"""Refresh token ledger: fingerprint persistence, rotation and revocation."""

from __future__ import annotations

import hashlib
import logging
from typing import Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from memberbridge.core.exceptions import TokenInvalidError
from memberbridge.core.security import TokenSigner, utcnow
from memberbridge.models.security import RefreshToken

logger = logging.getLogger(__name__)


class TokenService:
    """Track issued refresh tokens by fingerprint; raw tokens are never stored."""

    @staticmethod
    def fingerprint(raw_token: str) -> str:
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

    @staticmethod
    def _new_record(user_id: int, raw_token: str) -> RefreshToken:
        expires_at = TokenSigner.expiration_of(raw_token)
        if expires_at is None:
            raise TokenInvalidError("Refresh token has no expiry")
        return RefreshToken(
            user_id=user_id,
            token_fingerprint=TokenService.fingerprint(raw_token),
            expires_at=expires_at,
            revoked=False,
            created_at=utcnow(),
        )

    @staticmethod
    def purge_expired(db: Session) -> int:
        result = db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @staticmethod
    def persist(db: Session, user_id: int, raw_token: str) -> RefreshToken:
        """
        Record a freshly issued refresh token.

        Commits before returning, so the caller may hand the token out.
        """
        TokenService.purge_expired(db)
        record = TokenService._new_record(user_id, raw_token)
        db.add(record)
        db.commit()
        return record

    @staticmethod
    def validate(db: Session, raw_token: str) -> Tuple[bool, Optional[RefreshToken]]:
        """Look up a non-revoked, unexpired record for ``raw_token``."""
        record = db.execute(
            select(RefreshToken).where(
                RefreshToken.token_fingerprint == TokenService.fingerprint(raw_token)
            )
        ).scalars().first()
        if record is None or record.revoked or record.expires_at <= utcnow():
            return False, record
        return True, record

    @staticmethod
    def revoke(db: Session, fingerprint: str) -> bool:
        """Mark a record revoked. Idempotent; returns True if a record exists."""
        now = utcnow()
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_fingerprint == fingerprint, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount:
            return True
        exists = db.execute(
            select(RefreshToken.id).where(RefreshToken.token_fingerprint == fingerprint)
        ).first()
        return exists is not None

    @staticmethod
    def revoke_refresh_token(db: Session, raw_token: str) -> bool:
        return TokenService.revoke(db, TokenService.fingerprint(raw_token))

    @staticmethod
    def rotate(db: Session, old_raw_token: str, new_raw_token: str, user_id: int) -> RefreshToken:
        """
        Persist the new record, then revoke the old one, in one commit.

        The revoke is conditional on the old record still being live. If a
        concurrent rotation already consumed it, everything is rolled back
        and the replay is rejected.

        Raises:
            TokenInvalidError: The old token was consumed concurrently
        """
        old_fp = TokenService.fingerprint(old_raw_token)
        new_record = TokenService._new_record(user_id, new_raw_token)
        try:
            db.add(new_record)
            db.flush()
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.token_fingerprint == old_fp, RefreshToken.revoked.is_(False))
                .values(
                    revoked=True,
                    revoked_at=utcnow(),
                    replaced_by_fingerprint=new_record.token_fingerprint,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                logger.warning("Refresh token replay rejected for user %s", user_id)
                raise TokenInvalidError("Refresh token already used")
            db.commit()
        except TokenInvalidError:
            raise
        except Exception:
            db.rollback()
            raise
        return new_record


token_service = TokenService()
