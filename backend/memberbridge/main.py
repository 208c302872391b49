"""Main FastAPI application"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy import text
from datetime import datetime
from pathlib import Path
import logging
import traceback
import time
import uuid

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response

from memberbridge.config import settings
from memberbridge.core.database import init_db, SessionLocal
from memberbridge.core.exceptions import (
    AuthenticationError,
    InternalServiceError,
    RateLimitExceededError,
    ResourceNotFoundError,
    ServiceError,
    UpstreamUnavailableError,
    ValidationError,
)
from memberbridge.core.security import get_token_signer
from memberbridge.api.deps import get_ephemeral_store, get_identity_gateway
from memberbridge.api.v1 import auth, device
from memberbridge.metrics import REQUEST_COUNT, REQUEST_LATENCY
from memberbridge.schemas.response import ErrorResponse, HealthResponse
from memberbridge.services.ephemeral_store import RedisKeyValueStore

# Configure logging - ensure log directory exists
_log_dir = Path(settings.get_log_file()).parent
_log_dir.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.get_log_file()),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# Most specific class first
STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (ResourceNotFoundError, status.HTTP_404_NOT_FOUND),
    (RateLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (UpstreamUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InternalServiceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Our team has been notified."
UNAVAILABLE_MESSAGE = "A required service is temporarily unavailable. Please retry."

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None
)

# GZip compression for large responses
app.add_middleware(GZipMiddleware, minimum_size=500)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Security headers + request timing middleware
@app.middleware("http")
async def add_headers_and_timing(request: Request, call_next):
    """Add security headers and log slow requests"""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start = time.time()
    response = await call_next(request)
    duration = time.time() - start

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"
    response.headers["X-Request-ID"] = request_id

    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(request.method, path, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, path).observe(duration)

    if duration > 1.0:
        logger.warning(
            "Slow request: %s %s took %.2fs request_id=%s",
            request.method,
            request.url.path,
            duration,
            request_id,
        )

    return response


def _error_body(request: Request, message: str, details=None) -> dict:
    return {
        "success": False,
        "error": message,
        "details": details or {},
        "path": request.url.path,
        "timestamp": datetime.utcnow().isoformat()
    }


def _status_for(exc: ServiceError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# Exception handlers
@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError):
    """Map service errors to status codes"""
    status_code = _status_for(exc)
    extra = {
        "status_code": status_code,
        "details": exc.details,
        "path": request.url.path,
        "method": request.method
    }

    headers = {}
    body = _error_body(request, exc.message, exc.details)

    if isinstance(exc, AuthenticationError):
        # The reason stays in the log; clients see one message for every 401
        logger.warning(f"Authentication failed: {exc.message}", extra=extra)
        body = _error_body(request, AuthenticationError.PUBLIC_MESSAGE)
        headers["WWW-Authenticate"] = "Bearer"
    elif isinstance(exc, RateLimitExceededError):
        logger.warning(f"Rate limited: {exc.message}", extra=extra)
        body["retryAfter"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)
    elif status_code >= 500:
        logger.error(
            f"Service error: {exc.message}",
            extra={**extra, "traceback": traceback.format_exc()}
        )
        # Driver and connection text stays in the log
        if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
            body = _error_body(request, UNAVAILABLE_MESSAGE)
        else:
            body = _error_body(request, GENERIC_ERROR_MESSAGE)
    else:
        logger.info(f"Request rejected: {exc.message}", extra=extra)

    return JSONResponse(status_code=status_code, content=body, headers=headers or None)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(
        f"Validation error: {errors}",
        extra={"path": request.url.path, "method": request.method}
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(request, "Validation failed", {"errors": errors})
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors; connectivity and pool timeouts are retryable"""
    logger.error(
        f"Database error: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc()
        }
    )

    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_error_body(request, "The credential store is temporarily unavailable. Please retry.")
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "A database error occurred. Please try again later.")
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.critical(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, GENERIC_ERROR_MESSAGE)
    )


# Startup event
@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    settings.validate_security_settings()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Keys are loaded eagerly; a bad key must stop the process
    signer = get_token_signer()
    logger.info(f"Token signer ready (algorithm={signer.algorithm}, can_issue={signer.can_issue})")

    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    if not settings.REDIS_URL and settings.ENVIRONMENT.lower() == "production":
        logger.warning("Running in production without REDIS_URL; lockouts are not shared across instances")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    get_identity_gateway().close()
    logger.info(f"Shutting down {settings.APP_NAME}")


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    db_ok = True
    db_error = None
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db_ok = False
        db_error = str(exc)
    finally:
        db.close()

    store = get_ephemeral_store()
    if isinstance(store, RedisKeyValueStore):
        redis_status = {"configured": True, "ok": store.ping()}
    else:
        redis_status = {"configured": False, "ok": True}

    healthy = db_ok and redis_status["ok"]
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.APP_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "readiness": {
            "database": {"ok": db_ok, "error": db_error},
            "redis": redis_status,
        },
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/api/docs" if settings.DEBUG else "disabled"
    }


# Include routers
ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 401, 404, 429, 500, 503)}
app.include_router(auth.router, prefix=f"{settings.API_PREFIX}/auth", tags=["Authentication"], responses=ERROR_RESPONSES)
app.include_router(device.router, prefix=f"{settings.API_PREFIX}/device", tags=["Device Linking"], responses=ERROR_RESPONSES)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "memberbridge.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )
