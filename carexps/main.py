"""
Main FastAPI Application

Entry point for the CareXPS auth service. Configures middleware, routes,
error handlers and startup/shutdown.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import time
import uuid
from contextlib import asynccontextmanager

from carexps import __version__
from carexps.config import get_settings
from carexps.database import engine, init_db
from carexps.middleware.tenant import TenantMiddleware
from carexps.middleware.rate_limit import RateLimitMiddleware
from carexps.utils.logging import setup_logging, get_logger, log_security_event
from carexps.core.encryption import EncryptionError
from carexps.core.exceptions import (
    AccountLockedError,
    AuthenticationError,
    InvalidInputError,
    InvalidMfaCode,
    InvalidMfaTransition,
    MfaRequiredError,
    NoteNotFoundError,
    PermissionDenied,
    TenantIsolationError,
    UserNotFoundError,
)

from carexps.api.endpoints import audit, auth, mfa, notes, users

settings = get_settings()

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=(settings.ENVIRONMENT == "production")
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    if settings.ENVIRONMENT in ("development", "test"):
        logger.warning("Initializing database tables (dev mode)")
        init_db()

    if not settings.ENCRYPTION_KEY:
        logger.error("ENCRYPTION_KEY is not set - MFA enrollment will fail")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    engine.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="CareXPS Auth Service",
    description="Tenant-isolated authentication with TOTP MFA for the CareXPS CRM",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================

allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "development" else allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_context(request: Request, call_next):
    """Add X-Request-ID and X-Process-Time headers."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# The last middleware added runs first: tenant resolution must wrap the
# rate limiter, which buckets by tenant.
app.add_middleware(RateLimitMiddleware)
app.add_middleware(TenantMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _error_response(exc: HTTPException, error_type: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": error_type, **extra},
        headers=exc.headers or {}
    )


@app.exception_handler(TenantIsolationError)
async def tenant_isolation_error_handler(request: Request, exc: TenantIsolationError):
    """Cross-tenant attempts are security events."""
    log_security_event(
        "tenant_isolation_violation",
        {
            "detail": exc.detail,
            "path": request.url.path,
            "method": request.method,
            "tenant_id": getattr(request.state, "tenant_id", None)
        },
        logger
    )
    return _error_response(exc, "tenant_isolation_error")


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return _error_response(exc, "authentication_error")


@app.exception_handler(AccountLockedError)
async def account_locked_error_handler(request: Request, exc: AccountLockedError):
    return _error_response(exc, "account_locked", locked_until=exc.locked_until.isoformat())


@app.exception_handler(MfaRequiredError)
async def mfa_required_error_handler(request: Request, exc: MfaRequiredError):
    return _error_response(exc, "mfa_required")


@app.exception_handler(InvalidMfaCode)
async def invalid_mfa_code_handler(request: Request, exc: InvalidMfaCode):
    return _error_response(exc, "invalid_mfa_code", remaining_attempts=exc.remaining_attempts)


@app.exception_handler(InvalidMfaTransition)
async def invalid_mfa_transition_handler(request: Request, exc: InvalidMfaTransition):
    return _error_response(exc, "invalid_mfa_state", state=exc.current_state)


@app.exception_handler(UserNotFoundError)
@app.exception_handler(NoteNotFoundError)
async def not_found_error_handler(request: Request, exc: HTTPException):
    return _error_response(exc, "not_found")


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return _error_response(exc, "permission_denied")


@app.exception_handler(InvalidInputError)
async def invalid_input_error_handler(request: Request, exc: InvalidInputError):
    return _error_response(exc, "invalid_input")


@app.exception_handler(EncryptionError)
async def encryption_error_handler(request: Request, exc: EncryptionError):
    """Corrupt secret or missing key: never fall back to plaintext."""
    logger.error(
        f"Encryption failure: {exc}",
        extra={"tenant_id": getattr(request.state, "tenant_id", None)}
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "MFA secret unavailable. Contact an administrator to reset MFA.",
            "type": "encryption_error"
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler.

    Full details go to the log; clients get a generic error unless DEBUG.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "tenant_id": getattr(request.state, "tenant_id", None),
            "request_id": getattr(request.state, "request_id", None)
        }
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__}
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"}
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": __version__
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "CareXPS Auth Service API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(auth.router, prefix="/api/v1")
app.include_router(mfa.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(notes.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    uvicorn.run(
        "carexps.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
