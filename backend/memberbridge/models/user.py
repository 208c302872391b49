"""User model"""

from sqlalchemy import Column, Integer, String, DateTime, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from memberbridge.core.database import Base


class User(Base):
    """Local mirror of a WordPress identity; WordPress stays the source of truth"""

    __tablename__ = "users"

    # WordPress user id, not generated locally
    id = Column(Integer, primary_key=True, autoincrement=False)
    # Not unique: WordPress may omit or reuse emails, the id is the identity
    email = Column(String(255), nullable=False, default="")
    display_name = Column(String(255), nullable=True)
    subscription_level = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    # Relationships
    device_links = relationship("DeviceLinkCode", back_populates="user")
    refresh_tokens = relationship("RefreshToken", back_populates="user")

    __table_args__ = (
        Index("idx_users_email", "email"),
        Index("idx_users_subscription_level", "subscription_level"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', subscription='{self.subscription_level}')>"

