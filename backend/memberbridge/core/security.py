"""Security utilities - asymmetric JWT issuance and verification"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Optional, Dict, Any, Tuple
from jose import JWTError, jwt
from memberbridge.config import settings
from memberbridge.core.exceptions import SigningKeyError, TokenInvalidError
import logging
import secrets

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
TOKEN_TYPES = (ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE)


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation used by every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class TokenPayload:
    """Identity claims shared by access and refresh tokens"""
    user_id: int
    username: str
    email: str
    has_active_membership: bool

    def to_claims(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "email": self.email,
            "hasActiveMembership": self.has_active_membership,
        }

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "TokenPayload":
        try:
            return cls(
                user_id=int(claims["userId"]),
                username=str(claims.get("username") or ""),
                email=str(claims.get("email") or ""),
                has_active_membership=bool(claims.get("hasActiveMembership", False)),
            )
        except (KeyError, TypeError, ValueError):
            raise TokenInvalidError("Malformed token payload")


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def _normalize_pem(value: str) -> str:
    # Keys passed through env vars often carry literal "\n" sequences
    return value.replace("\\n", "\n").strip() + "\n"


def load_signing_keys() -> Tuple[Optional[str], str]:
    """
    Load the PEM key pair from env values, falling back to key files.

    Returns:
        Tuple[Optional[str], str]: (private key or None, public key)

    Raises:
        SigningKeyError: If no public key can be loaded
    """
    private_key: Optional[str] = None
    public_key: Optional[str] = None

    if settings.JWT_PUBLIC_KEY:
        public_key = _normalize_pem(settings.JWT_PUBLIC_KEY)
        if settings.JWT_PRIVATE_KEY:
            private_key = _normalize_pem(settings.JWT_PRIVATE_KEY)
    else:
        try:
            if settings.JWT_PUBLIC_KEY_PATH:
                public_key = Path(settings.JWT_PUBLIC_KEY_PATH).read_text(encoding="utf-8")
            if settings.JWT_PRIVATE_KEY_PATH:
                private_key = Path(settings.JWT_PRIVATE_KEY_PATH).read_text(encoding="utf-8")
        except OSError as exc:
            raise SigningKeyError(f"Failed to read signing keys: {exc}") from exc

    if not public_key:
        raise SigningKeyError(
            "JWT keys not found. Set JWT_PRIVATE_KEY and JWT_PUBLIC_KEY or the *_PATH variants."
        )
    if private_key and "PRIVATE KEY" not in private_key:
        raise SigningKeyError("JWT private key is not a PEM private key")
    if "PUBLIC KEY" not in public_key:
        raise SigningKeyError("JWT public key is not a PEM public key")
    return private_key, public_key


class TokenSigner:
    """
    Issue and verify session tokens with an asymmetric key pair.

    A signer built without a private key can only verify.
    """

    def __init__(
        self,
        public_key: str,
        private_key: Optional[str] = None,
        algorithm: str = "RS256",
        access_lifetime: int = 3600,
        refresh_lifetime: int = 7776000,
    ) -> None:
        self._public_key = public_key
        self._private_key = private_key
        self.algorithm = algorithm
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime

    @property
    def can_issue(self) -> bool:
        return self._private_key is not None

    def create_token(self, payload: TokenPayload, token_type: str) -> str:
        """
        Sign a token of the given type

        Args:
            payload: Identity claims
            token_type: "access" or "refresh"

        Returns:
            str: Encoded JWT
        """
        if token_type not in TOKEN_TYPES:
            raise ValueError(f"Unknown token type: {token_type}")
        if not self.can_issue:
            raise SigningKeyError("This signer has no private key and cannot issue tokens")

        lifetime = self.access_lifetime if token_type == ACCESS_TOKEN_TYPE else self.refresh_lifetime
        now = datetime.now(timezone.utc)
        to_encode = payload.to_claims()
        to_encode.update({
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=lifetime),
            "jti": secrets.token_urlsafe(16),  # Unique token ID
        })
        try:
            return jwt.encode(to_encode, self._private_key, algorithm=self.algorithm)
        except JWTError as exc:
            raise SigningKeyError(f"Failed to sign token: {exc}") from exc

    def issue_pair(self, payload: TokenPayload) -> TokenPair:
        return TokenPair(
            access_token=self.create_token(payload, ACCESS_TOKEN_TYPE),
            refresh_token=self.create_token(payload, REFRESH_TOKEN_TYPE),
        )

    def verify(self, token: str, expected_type: Optional[str] = None) -> Dict[str, Any]:
        """
        Decode and verify a token

        Args:
            token: JWT token string
            expected_type: Reject tokens whose "type" claim differs

        Returns:
            Dict: Verified claims

        Raises:
            TokenInvalidError: Bad signature, malformed, expired or wrong type
        """
        if not token:
            raise TokenInvalidError("Missing token")
        try:
            claims = jwt.decode(token, self._public_key, algorithms=[self.algorithm])
        except JWTError:
            raise TokenInvalidError("Invalid or expired token")

        if not isinstance(claims, dict) or claims.get("type") not in TOKEN_TYPES:
            raise TokenInvalidError("Malformed token")
        if expected_type and claims["type"] != expected_type:
            raise TokenInvalidError(f"Token type {claims['type']!r} where {expected_type!r} was expected")
        if claims.get("userId") is None:
            raise TokenInvalidError("Malformed token payload")
        return claims

    @staticmethod
    def expiration_of(token: str) -> Optional[datetime]:
        """
        Read the exp claim WITHOUT verifying the signature.

        Only for computing persistence expiry; never for trust decisions.
        """
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return None
        exp = claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(int(exp), tz=timezone.utc).replace(tzinfo=None)


@lru_cache()
def get_token_signer() -> TokenSigner:
    """
    Build the process-wide signer from configured keys.

    Called at startup so a missing or malformed key stops the service.
    """
    private_key, public_key = load_signing_keys()
    if private_key is None:
        logger.warning("No JWT private key configured; running in verify-only mode")
    return TokenSigner(
        public_key=public_key,
        private_key=private_key,
        algorithm=settings.JWT_ALGORITHM,
        access_lifetime=settings.ACCESS_TOKEN_LIFETIME,
        refresh_lifetime=settings.REFRESH_TOKEN_LIFETIME,
    )
