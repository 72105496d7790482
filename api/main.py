"""
api/main.py -- FastAPI application entry point for permitauth.

Exposes the authentication, session and device-trust services over HTTP.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
                              (credentials allowed: sessions ride on cookies)

Lifespan handles startup (ephemeral store, user DB, mailer, task pool, service
graph, first-run admin seed) and shutdown (drain task pool, close store and
DB) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.devices import router as devices_router
from api.services import wire_services
from auth.dependencies import get_current_user
from auth.models import User
from auth.passwords import hash_password, password_policy_error
from auth.store import UserStore
from auth.tokens import set_session_cookies
from core.config import Settings, get_settings
from core.errors import AuthError, DependencyError
from ephemeral.store import EphemeralStore
from notify.email import build_sender
from notify.tasks import TaskPool

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("permitauth.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# First-run admin seed
# ---------------------------------------------------------------------------


def seed_initial_admin(user_store: UserStore, settings: Settings) -> bool:
    """Create the first admin from INITIAL_ADMIN_EMAIL / INITIAL_ADMIN_PASSWORD.

    Only runs against an empty users table. Returns True if an admin was created.
    """
    if not settings.initial_admin_email or not settings.initial_admin_password:
        return False
    if user_store.has_users():
        return False
    policy_error = password_policy_error(settings.initial_admin_password)
    if policy_error:
        logger.error("INITIAL_ADMIN_PASSWORD rejected: %s -- no admin created", policy_error)
        return False
    try:
        user_store.create_user(
            User(
                email=settings.initial_admin_email,
                role="admin",
                hashed_password=hash_password(settings.initial_admin_password),
            )
        )
    except IntegrityError:
        # Another worker seeded the same admin first.
        return False
    logger.info("Initial admin %s created", settings.initial_admin_email)
    return True


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters:
      1. Store and user DB first -- every service depends on them.
      2. Mailer and task pool -- the login flow schedules emails on the pool.
      3. Service graph last -- wire_services() takes all of the above.
    """
    settings = get_settings()
    logger.info("permitauth API starting up")
    store = EphemeralStore.from_url(
        settings.redis_url,
        timeout=settings.store_timeout_seconds,
        scan_count=settings.store_scan_count,
    )
    user_store = UserStore(settings.database_url)
    tasks = TaskPool(workers=settings.task_workers, queue_limit=settings.task_queue_limit)
    wire_services(app.state, settings, store, user_store, build_sender(settings), tasks)
    seed_initial_admin(user_store, settings)
    logger.info("Auth services initialized (store=%s)", settings.redis_url.split("@")[-1])

    yield

    tasks.shutdown(wait=True)
    store.close()
    user_store.close()
    logger.info("permitauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="permitauth API",
    description="Authentication, session and device-trust service.",
    version=__version__,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives the latency.
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(devices_router, prefix="/api/v1", tags=["Devices"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="permitauth API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="permitauth API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
#
# A silent refresh in auth/dependencies.py may already have rotated the
# refresh token before the route failed. The dependency's Response is
# discarded on error, so the handlers re-apply the rotated pair here.
# ---------------------------------------------------------------------------


def _error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=content)
    pair = getattr(request.state, "rotated_pair", None)
    if pair is not None:
        set_session_cookies(response, pair)
    return response


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a service-layer AuthError with its generic public message.

    str(exc) may carry token prefixes, user ids or store keys; it goes to the
    log only, never to the response body.
    """
    level = logging.ERROR if isinstance(exc, DependencyError) else logging.INFO
    logger.log(level, "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    response = _error_response(
        request,
        exc.status_code,
        ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.public_message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(
        request,
        422,
        ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return _error_response(request, exc.status_code, {"error": exc.detail})
    return _error_response(
        request,
        exc.status_code,
        ErrorResponse(
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
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and backing-service status."""
    components = {"app": "ok"}
    try:
        components["store"] = "ok" if request.app.state.store.ping() else "error"
    except DependencyError:
        components["store"] = "error"
    try:
        request.app.state.user_store.has_users()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: user database unavailable")
        components["database"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
