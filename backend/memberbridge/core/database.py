"""Database configuration and session management"""

from typing import Any, Dict, Generator

from sqlalchemy import create_engine, text, inspect
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from memberbridge.config import settings, DatabaseBackend
import logging

logger = logging.getLogger(__name__)


def _engine_options() -> Dict[str, Any]:
    """
    Build driver-specific engine options for the configured backend.

    Every store call is bounded: pool checkout waits at most
    STORE_TIMEOUT_SECONDS and the driver enforces connect/statement limits.
    """
    timeout = settings.STORE_TIMEOUT_SECONDS
    backend = settings.DATABASE_BACKEND

    if backend == DatabaseBackend.SQLITE:
        options: Dict[str, Any] = {
            "connect_args": {"check_same_thread": False, "timeout": timeout},
        }
        if ":memory:" in settings.get_database_url():
            options["poolclass"] = StaticPool
        return options

    options = {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": timeout,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }
    if backend == DatabaseBackend.POSTGRESQL:
        connect_args: Dict[str, Any] = {
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        }
        if settings.DB_SSL:
            connect_args["sslmode"] = "require"
    else:
        connect_args = {
            "connect_timeout": timeout,
            "read_timeout": timeout,
            "write_timeout": timeout,
            "charset": "utf8mb4",
        }
    options["connect_args"] = connect_args
    return options


engine = create_engine(
    settings.get_database_url(),
    echo=settings.DEBUG,
    **_engine_options(),
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create base class for models
Base = declarative_base()

# Import models after Base is defined so metadata is populated.
from memberbridge import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session

    Yields:
        Session: Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Initialize database according to configured strategy.

    DB_INIT_MODE:
      - migrate: require alembic_version table (migration-first discipline)
      - create_all: legacy behavior for local/dev bootstrap
      - off: skip initialization check
    """
    mode = settings.DB_INIT_MODE.lower().strip()
    if mode == "off":
        logger.info("DB initialization check skipped (DB_INIT_MODE=off)")
        return

    if mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Using create_all database initialization (recommended only for local development).")
        return

    if mode == "migrate":
        with engine.connect() as conn:
            if engine.dialect.name == "postgresql":
                version_table_exists = conn.execute(
                    text("SELECT to_regclass('public.alembic_version')")
                ).scalar()
                exists = bool(version_table_exists)
            elif engine.dialect.name == "sqlite":
                version_table_exists = conn.execute(
                    text(
                        "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
                    )
                ).fetchone()
                exists = bool(version_table_exists)
            else:
                exists = "alembic_version" in inspect(conn).get_table_names()
            if settings.DB_REQUIRE_HEAD and not exists:
                raise RuntimeError(
                    "Migration table missing. Run Alembic migrations before starting the API."
                )
        logger.info("Migration metadata detected.")
        return

    raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")
