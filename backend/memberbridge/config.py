"""Application configuration management"""

import json
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent


class DatabaseBackend(str, Enum):
    """Supported credential store drivers, selected explicitly at startup."""
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "MemberBridge API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    API_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 4000
    WORKERS: int = 4

    # Database
    DATABASE_BACKEND: DatabaseBackend = DatabaseBackend.POSTGRESQL
    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "memberbridge"
    DB_USER: str = "memberbridge"
    DB_PASSWORD: str = "memberbridge"
    DB_SQLITE_PATH: str = ""
    DB_SSL: bool = False
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 10
    STORE_TIMEOUT_SECONDS: int = 5

    # Token signing (RS256 key pair, inline PEM or file paths)
    JWT_ALGORITHM: str = "RS256"
    JWT_PRIVATE_KEY: str = ""
    JWT_PUBLIC_KEY: str = ""
    JWT_PRIVATE_KEY_PATH: str = ""
    JWT_PUBLIC_KEY_PATH: str = ""
    ACCESS_TOKEN_LIFETIME: int = 3600
    REFRESH_TOKEN_LIFETIME: int = 7776000

    # Device linking
    DEVICE_CODE_LENGTH: int = 8
    DEVICE_CODE_TTL_SECONDS: int = 900
    DEVICE_CODE_MAX_ATTEMPTS: int = 5
    DEVICE_CODE_LINKED_RETENTION_SECONDS: int = 900
    DEVICE_CODE_RATE_LIMIT_PER_HOUR: int = 7

    # Login lockout
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_LOCKOUT_WINDOW_SECONDS: int = 1800

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_PER_HOUR: int = 1000
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50

    # Ephemeral store (login guard, rate limits); empty URL keeps state in-process
    REDIS_URL: str = ""
    REDIS_SOCKET_TIMEOUT: float = 2.0

    # Identity gateway (WordPress + PMPro)
    WORDPRESS_BASE_URL: str = "http://localhost:8080"
    WORDPRESS_API_KEY: str = ""
    IDENTITY_TIMEOUT_SECONDS: float = 5.0
    IDENTITY_MAX_RETRIES: int = 2
    IDENTITY_RETRY_BACKOFF_SECONDS: float = 0.5

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated origins from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            CORS_ORIGINS=http://localhost:3000,http://example.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(origin).strip() for origin in parsed if str(origin).strip()]

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @field_validator("WORDPRESS_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from DB_* parts for the configured DATABASE_BACKEND
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.DATABASE_BACKEND == DatabaseBackend.SQLITE:
            path = self.DB_SQLITE_PATH or str(_BASE_DIR.parent / "data" / "memberbridge.db")
            return f"sqlite:///{path}"

        user = quote_plus(self.DB_USER)
        password = quote_plus(self.DB_PASSWORD)
        driver = (
            "postgresql+psycopg2"
            if self.DATABASE_BACKEND == DatabaseBackend.POSTGRESQL
            else "mysql+pymysql"
        )
        return f"{driver}://{user}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        if not self.JWT_ALGORITHM.upper().startswith(("RS", "ES", "PS")):
            raise ValueError(
                "JWT_ALGORITHM must be an asymmetric algorithm in production (e.g. RS256)."
            )

        has_inline = bool(self.JWT_PRIVATE_KEY and self.JWT_PUBLIC_KEY)
        has_paths = bool(self.JWT_PRIVATE_KEY_PATH and self.JWT_PUBLIC_KEY_PATH)
        if not (has_inline or has_paths):
            raise ValueError(
                "Signing keys are not configured. Set JWT_PRIVATE_KEY/JWT_PUBLIC_KEY "
                "or JWT_PRIVATE_KEY_PATH/JWT_PUBLIC_KEY_PATH."
            )

        if self.DATABASE_BACKEND == DatabaseBackend.SQLITE:
            raise ValueError("SQLite is not supported in production. Use postgresql or mysql.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
