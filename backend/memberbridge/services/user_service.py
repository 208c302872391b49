"""User service - keeps the local identity mirror in step with WordPress"""

from sqlalchemy.orm import Session
from typing import Optional
from memberbridge.models.user import User
from memberbridge.core.security import utcnow
import logging

logger = logging.getLogger(__name__)

SUBSCRIPTION_PREMIUM = "premium"
SUBSCRIPTION_FREE = "free"


def subscription_label(has_active_membership: bool) -> str:
    return SUBSCRIPTION_PREMIUM if has_active_membership else SUBSCRIPTION_FREE


class UserService:
    """Service for the user mirror"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def ensure_user(db: Session, *, user_id: int, email: str, has_active_membership: bool) -> User:
        """Mirror a user first seen through a token, leaving existing rows untouched"""
        user = UserService.get_user_by_id(db, user_id)
        if user is not None:
            return user
        return UserService.sync_user(
            db,
            user_id=user_id,
            email=email,
            has_active_membership=has_active_membership,
        )

    @staticmethod
    def sync_user(
        db: Session,
        *,
        user_id: int,
        email: str,
        display_name: Optional[str] = None,
        has_active_membership: Optional[bool] = None,
    ) -> User:
        """
        Create or refresh the mirror row for a WordPress user

        Args:
            db: Database session
            user_id: WordPress user id
            email: Current email
            display_name: Current display name, kept when None
            has_active_membership: Entitlement, kept when None

        Returns:
            The mirrored user
        """
        user = db.query(User).filter(User.id == user_id).first()
        now = utcnow()
        if user is None:
            user = User(id=user_id, email=email, created_at=now)
            db.add(user)
            logger.info(f"Mirrored new user: {user_id}")

        user.email = email or user.email
        if display_name is not None:
            user.display_name = display_name
        if has_active_membership is not None:
            user.subscription_level = subscription_label(has_active_membership)
        user.updated_at = now

        db.commit()
        db.refresh(user)
        return user


# Singleton instance
user_service = UserService()
