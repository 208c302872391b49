"""Database models"""

from memberbridge.models.user import User
from memberbridge.models.device import DeviceLinkCode
from memberbridge.models.security import RefreshToken
from memberbridge.models.audit import AuditEvent

__all__ = ["User", "DeviceLinkCode", "RefreshToken", "AuditEvent"]
