"""Device-code pairing state machine.

A code moves CREATED(unlinked) -> LINKED once. EXPIRED is never stored; it is
derived from ``expires_at`` at read time, and expired rows are swept lazily
before every operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from memberbridge.config import settings
from memberbridge.core.exceptions import DeviceCodeNotFoundError, GenerationExhaustedError
from memberbridge.core.security import utcnow
from memberbridge.models.device import DeviceLinkCode
from memberbridge.services.code_generator import generate_device_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceCodeGrant:
    code: str
    expires_in: int


@dataclass(frozen=True)
class DeviceLinkStatus:
    activated: bool
    user_id: Optional[int] = None


class DeviceLinkService:
    """Create, poll and confirm device pairing codes."""

    @staticmethod
    def normalize_code(code: str) -> str:
        return (code or "").strip().upper()

    @staticmethod
    def sweep_expired(db: Session) -> int:
        """
        Delete codes whose window has passed.

        Linked rows are kept for DEVICE_CODE_LINKED_RETENTION_SECONDS past
        their window so a slow poller still observes the terminal state.
        """
        now = utcnow()
        linked_cutoff = now - timedelta(seconds=settings.DEVICE_CODE_LINKED_RETENTION_SECONDS)
        result = db.execute(
            delete(DeviceLinkCode)
            .where(
                or_(
                    and_(DeviceLinkCode.linked.is_(False), DeviceLinkCode.expires_at < now),
                    and_(DeviceLinkCode.linked.is_(True), DeviceLinkCode.expires_at < linked_cutoff),
                )
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount:
            logger.debug("Swept %s expired device codes", result.rowcount)
        return result.rowcount or 0

    @staticmethod
    def _is_active(db: Session, code: str) -> bool:
        now = utcnow()
        found = db.execute(
            select(DeviceLinkCode.id).where(
                DeviceLinkCode.code == code,
                DeviceLinkCode.linked.is_(False),
                DeviceLinkCode.expires_at > now,
            )
        ).first()
        return found is not None

    @staticmethod
    def create_code(db: Session) -> DeviceCodeGrant:
        """
        Persist a fresh unlinked code.

        Raises:
            GenerationExhaustedError: If every candidate collided
        """
        DeviceLinkService.sweep_expired(db)

        ttl = settings.DEVICE_CODE_TTL_SECONDS
        attempts = settings.DEVICE_CODE_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            candidate = generate_device_code(settings.DEVICE_CODE_LENGTH)
            if DeviceLinkService._is_active(db, candidate):
                logger.info("Device code collision on attempt %s", attempt)
                continue

            now = utcnow()
            record = DeviceLinkCode(
                code=candidate,
                user_id=None,
                linked=False,
                expires_at=now + timedelta(seconds=ttl),
                created_at=now,
                updated_at=now,
            )
            db.add(record)
            try:
                db.commit()
            except IntegrityError:
                # A concurrent request inserted the same code, or an expired
                # row with it has not been swept yet.
                db.rollback()
                logger.info("Device code insert collision on attempt %s", attempt)
                continue

            logger.info("Device code created: %s (expires in %ss)", candidate, ttl)
            return DeviceCodeGrant(code=candidate, expires_in=ttl)

        logger.error("Device code generation exhausted after %s attempts", attempts)
        raise GenerationExhaustedError(attempts)

    @staticmethod
    def _find_visible(db: Session, code: str) -> Optional[DeviceLinkCode]:
        """Linked rows are always visible; unlinked rows only inside their window."""
        now = utcnow()
        return db.execute(
            select(DeviceLinkCode).where(
                DeviceLinkCode.code == code,
                or_(DeviceLinkCode.linked.is_(True), DeviceLinkCode.expires_at > now),
            )
        ).scalars().first()

    @staticmethod
    def poll(db: Session, code: str) -> DeviceLinkStatus:
        """
        Report whether a code has been confirmed.

        Unknown and expired codes both read as not activated.
        """
        DeviceLinkService.sweep_expired(db)
        record = DeviceLinkService._find_visible(db, DeviceLinkService.normalize_code(code))
        if record is None or not record.linked:
            return DeviceLinkStatus(activated=False)
        return DeviceLinkStatus(activated=True, user_id=record.user_id)

    @staticmethod
    def confirm(db: Session, code: str, user_id: int) -> DeviceLinkStatus:
        """
        Link a code to an authenticated user.

        The transition is a single conditional UPDATE, so of two concurrent
        confirms only one flips the row; the other re-reads the linked row
        and returns the same success.

        Raises:
            DeviceCodeNotFoundError: Code unknown, or expired before linking
        """
        DeviceLinkService.sweep_expired(db)
        code = DeviceLinkService.normalize_code(code)

        now = utcnow()
        result = db.execute(
            update(DeviceLinkCode)
            .where(
                DeviceLinkCode.code == code,
                DeviceLinkCode.linked.is_(False),
                DeviceLinkCode.expires_at > now,
            )
            .values(linked=True, user_id=user_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount == 1:
            logger.info("Device code confirmed: %s by user %s", code, user_id)
            return DeviceLinkStatus(activated=True, user_id=user_id)

        record = db.execute(
            select(DeviceLinkCode).where(
                DeviceLinkCode.code == code,
                DeviceLinkCode.linked.is_(True),
            )
        ).scalars().first()
        if record is None:
            raise DeviceCodeNotFoundError()

        logger.info("Device code %s already linked to user %s", code, record.user_id)
        return DeviceLinkStatus(activated=True, user_id=record.user_id)


device_link_service = DeviceLinkService()
