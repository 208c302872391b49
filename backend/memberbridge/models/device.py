"""Device linking model"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from memberbridge.core.database import Base


class DeviceLinkCode(Base):
    """
    One TV/device pairing attempt.

    Created unlinked with no owner; ``linked`` flips to true exactly once,
    together with ``user_id``, and never reverts.
    """

    __tablename__ = "device_link_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(16), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    linked = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="device_links")

    __table_args__ = (
        Index("idx_device_link_codes_code", "code"),
        Index("idx_device_link_codes_expires_at", "expires_at"),
        Index("idx_device_link_codes_user", "user_id"),
    )

    def __repr__(self):
        return f"<DeviceLinkCode(code='{self.code}', linked={self.linked}, user_id={self.user_id})>"
