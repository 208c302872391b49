"""Audit trail for session and device-link events."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from memberbridge.core import database
from memberbridge.models.audit import AuditEvent

logger = logging.getLogger(__name__)


class AuditService:
    """Persist immutable audit trail entries."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        user_id: Optional[int],
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            user_id=user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            ip_address=ip_address,
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False),
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    @staticmethod
    def _write_detached(**kwargs: Any) -> None:
        db = database.SessionLocal()
        try:
            AuditService.log_event(db, **kwargs)
        except Exception:
            db.rollback()
            logger.exception("Audit event %s could not be written", kwargs.get("action"))
        finally:
            db.close()

    @staticmethod
    def dispatch(background_tasks: BackgroundTasks, **kwargs: Any) -> None:
        """
        Queue an audit write to run after the response is sent.

        Uses its own session; failures are logged and never reach the client.
        """
        background_tasks.add_task(AuditService._write_detached, **kwargs)


audit_service = AuditService()
