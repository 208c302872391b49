"""Custom exception classes for the application

Components raise these; only the HTTP layer (``memberbridge.main``) maps
them to status codes.
"""

from typing import Optional, Dict, Any


class ServiceError(Exception):
    """Base exception for all service-level errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# Client input errors
class ValidationError(ServiceError):
    """Client input missing or malformed"""


# Authentication Errors
class AuthenticationError(ServiceError):
    """
    Base authentication error.

    Every subclass renders the same public message so callers cannot tell
    which check failed.
    """
    PUBLIC_MESSAGE = "Invalid or expired credentials"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class InvalidCredentialsError(AuthenticationError):
    """Invalid username or password"""
    def __init__(self):
        super().__init__("Invalid username or password")


class TokenInvalidError(AuthenticationError):
    """JWT token is missing, invalid, expired, revoked or of the wrong type"""
    def __init__(self, reason: str = "Invalid token"):
        super().__init__(reason)


# Throttling errors
class RateLimitExceededError(ServiceError):
    """Rate limit exceeded"""
    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: int = 1,
    ):
        self.retry_after = max(1, int(retry_after))
        super().__init__(message, details={"retryAfter": self.retry_after})


class AccountLockedError(RateLimitExceededError):
    """Too many failed logins for this username"""
    def __init__(self, retry_after: int):
        super().__init__(
            "Too many failed login attempts. Please try again later.",
            retry_after=retry_after,
        )


# Resource Errors
class ResourceNotFoundError(ServiceError):
    """Resource not found"""
    def __init__(self, resource: str, message: Optional[str] = None):
        super().__init__(message or f"{resource} not found")


class DeviceCodeNotFoundError(ResourceNotFoundError):
    """Unknown or expired device code; the two cases are never distinguished"""
    def __init__(self):
        super().__init__("Device code", "Device code not found or expired")


# Dependency errors
class UpstreamUnavailableError(ServiceError):
    """Identity gateway or store timed out or refused the connection"""
    def __init__(self, service: str, message: Optional[str] = None):
        self.service = service
        super().__init__(message or f"{service} is temporarily unavailable", details={"service": service})


# System Errors
class InternalServiceError(ServiceError):
    """Unexpected internal failure"""
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


class GenerationExhaustedError(InternalServiceError):
    """Every device code candidate collided with an active code"""
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique device code after {attempts} attempts")


class SigningKeyError(InternalServiceError):
    """Signing or verification keys could not be loaded"""
