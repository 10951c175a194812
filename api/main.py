"""
api/main.py -- FastAPI application entry point for Authenticator.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for the configured browser origin
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds every long-lived component once, from one Settings object,
and hangs it on app.state:
  settings, user_store, activity_store, directory, provisioner, authenticator
Route handlers only ever reach these through request.app.state. Shutdown
closes the stores symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from activity.store import ActivityStore
from api.limiter import limiter
from api.models import DatabaseHealthResponse, ErrorDetail, ErrorResponse, HealthResponse, InfoResponse
from api.routes.activity import router as activity_router
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.users import router as users_router
from auth.authenticator import HybridAuthenticator
from auth.errors import AuthorizationDenied, InvalidCredentials
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import Settings, get_settings
from directory import DirectoryAuthority, build_directory
from directory.provisioner import DirectoryProvisioner

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authenticator.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def _seed_superadmin(settings: Settings, user_store: UserStore) -> None:
    """Create the ADMIN_EMAIL superadmin if it does not exist yet."""
    if not settings.admin_password:
        logger.info("ADMIN_PASSWORD not set; skipping superadmin seeding")
        return
    created = user_store.ensure_superadmin(
        settings.admin_name,
        settings.admin_email,
        hash_password(settings.admin_password, settings.bcrypt_salt_rounds),
    )
    if created:
        logger.info("Seeded superadmin account %s", settings.admin_email)


def init_components(app: FastAPI, settings: Settings, directory: DirectoryAuthority | None) -> None:
    """Wire the directory / provisioner / authenticator graph onto app.state.

    app.state.user_store must already be set. Separate from lifespan so tests
    can wire their own Settings, stores and directory.
    """
    app.state.settings = settings
    app.state.directory = directory
    app.state.provisioner = DirectoryProvisioner(settings, directory)
    app.state.authenticator = HybridAuthenticator(settings, app.state.user_store, directory)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- a bad SECRET_KEY or AUTH_METHOD fails here, before
         anything touches the database.
      2. Stores second -- the authenticator needs the user store.
      3. Directory, provisioner and authenticator last.
    """
    settings = get_settings()
    logger.info("Authenticator API starting up (auth_method=%s)", settings.auth_method)
    app.state.user_store = UserStore(settings.database_url)
    app.state.activity_store = ActivityStore(settings.database_url)
    _seed_superadmin(settings, app.state.user_store)
    init_components(app, settings, build_directory(settings))
    logger.info(
        "Auth initialized (directory=%s, provisioning=%s)",
        getattr(app.state.directory, "name", None),
        app.state.provisioner.enabled,
    )

    yield

    app.state.activity_store.close()
    app.state.user_store.close()
    logger.info("Authenticator API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Authenticator API",
    description="Local, directory and hybrid authentication with directory account provisioning.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them: CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().cors_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])
app.include_router(activity_router, prefix="/api", tags=["Activity"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(InvalidCredentials)
async def invalid_credentials_handler(request: Request, exc: InvalidCredentials) -> JSONResponse:
    """Every rejected login looks the same: no hint of which check failed."""
    response = JSONResponse(
        status_code=401,
        content=ErrorResponse(
            error=ErrorDetail(code="invalid_credentials", message="Invalid credentials.")
        ).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(AuthorizationDenied)
async def authorization_denied_handler(request: Request, exc: AuthorizationDenied) -> JSONResponse:
    """Identified but not permitted: 403, distinct from the 401 for no identity."""
    logger.info("Denied %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=403,
        content=ErrorResponse(
            error=ErrorDetail(code="forbidden", message="Insufficient permissions.")
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Password inputs are stripped from the echoed errors.
    """
    errors = [{k: v for k, v in err.items() if k not in ("input", "ctx")} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(errors),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health and info
#
# Defined directly in main.py (not in a router) so they are always reachable.
# No rate limit applied -- load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)


@app.get("/api/health/db", tags=["Health"], response_model=DatabaseHealthResponse)
async def health_db(request: Request) -> JSONResponse:
    """Round-trip the database. 503 if it cannot be reached."""
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        return JSONResponse(
            status_code=503,
            content=DatabaseHealthResponse(
                status="error", message="Database connection failed", timestamp=timestamp
            ).model_dump(),
        )
    return JSONResponse(
        content=DatabaseHealthResponse(
            status="ok", message="Database connection is healthy", timestamp=timestamp
        ).model_dump()
    )


@app.get("/api/info", tags=["Health"])
async def info(request: Request) -> InfoResponse:
    """Describe this deployment's authentication configuration."""
    settings = request.app.state.settings
    return InfoResponse(
        name="Authenticator API",
        version=VERSION,
        description="Authentication API for user management",
        auth_method=settings.auth_method,
        directory_provisioning=request.app.state.provisioner.enabled,
        self_registration=settings.self_registration_enabled,
    )
