"""Audit event model for session and device-link actions."""

from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.sql import func

from memberbridge.core.database import Base


class AuditEvent(Base):
    """Immutable audit events."""

    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    # No FK: events may reference identities that were never mirrored locally
    user_id = Column(Integer, nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    target_type = Column(String(64), nullable=True, index=True)
    target_id = Column(String(128), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_audit_events_created_at", "created_at"),
    )
