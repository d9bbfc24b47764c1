"""
api/main.py -- FastAPI application entry point for Turnstile.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (engine, stores, default roles, session sweep task)
and shutdown (cancel sweep task, dispose engine) symmetrically.

Every API response is an envelope: SuccessResponse from the routes, ErrorResponse
from the exception handlers below. Nothing leaves as a bare FastAPI error.
The one exception is GET /api/v1/health, which returns a bare HealthResponse
for load balancers and monitors.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, FieldError, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.sessions import router as sessions_router
from api.routes.v1.users import router as users_router
from auth.db import create_db_engine, ping
from auth.errors import AuthError, ErrorCode, default_message
from auth.roles import RoleStore
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.tokens import Credentials
from auth.users import UserStore
from core.config import Settings, get_settings

API_VERSION = "1.0.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("turnstile.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, engine: Engine, settings: Settings) -> None:
    """Build stores and the auth service on top of an engine and attach them to app.state.

    Shared by the real lifespan and the test fixtures so both wire the
    application identically. Seeds the default roles.
    """
    app.state.settings = settings
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.role_store = RoleStore(engine)
    app.state.session_store = SessionStore(engine)
    app.state.role_store.ensure_default_roles()
    app.state.auth_service = AuthService(
        app.state.user_store,
        app.state.role_store,
        app.state.session_store,
        Credentials(settings),
        settings,
    )


# ---------------------------------------------------------------------------
# Background session sweep
# ---------------------------------------------------------------------------


async def _session_sweep_loop(app: FastAPI, interval: int) -> None:
    """Deactivate expired sessions every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A database hiccup only
    costs one iteration.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            app.state.auth_service.clean_expired_sessions()
        except SQLAlchemyError:
            logger.exception("Expired-session sweep failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the engine must exist before the stores, the role
    catalog must be seeded before the first registration, and the sweep task
    references app.state.auth_service.
    """
    logger.info("Turnstile API starting up")
    engine = create_db_engine(settings.database_url)
    init_state(app, engine, settings)
    sweep_task = None
    if settings.session_cleanup_interval_seconds:
        sweep_task = asyncio.create_task(_session_sweep_loop(app, settings.session_cleanup_interval_seconds))

    yield

    if sweep_task is not None:
        sweep_task.cancel()
    engine.dispose()
    logger.info("Turnstile API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Turnstile API",
    description="Email/password authentication with refresh-token sessions and role-based access.",
    version=API_VERSION,
    lifespan=lifespan,
    # Schema browsing only in development.
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly: branch on `code`, never on the message text.
# ---------------------------------------------------------------------------


def error_response(
    status_code: int,
    code: ErrorCode,
    message: str | None = None,
    errors: list[FieldError] | None = None,
) -> JSONResponse:
    body = ErrorResponse(message=message or default_message(code), code=code.value, errors=errors or None)
    content = body.model_dump(mode="json")
    if content["errors"] is None:
        del content["errors"]
    return JSONResponse(status_code=status_code, content=content)


def _is_debug(request: Request) -> bool:
    return getattr(request.app.state, "settings", settings).debug


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    errors = [FieldError(**d) for d in exc.details] if exc.details else None
    return error_response(exc.status_code, exc.code, exc.message, errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with every violated rule, not just the first.

    Password values are never echoed back.
    """
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        value = None if "password" in field else err.get("input")
        errors.append(FieldError(field=field, message=err.get("msg", ""), value=jsonable_encoder(value)))
    return error_response(400, ErrorCode.VALIDATION_ERROR, errors=errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (unknown route, wrong method) in the same envelope."""
    if exc.status_code in (404, 405):
        code = ErrorCode.NOT_FOUND
    elif exc.status_code >= 500:
        code = ErrorCode.INTERNAL_ERROR
    else:
        code = ErrorCode.VALIDATION_ERROR
    message = exc.detail if isinstance(exc.detail, str) else None
    return error_response(exc.status_code, code, message)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a Retry-After header when a rate limit is exceeded.

    Must stay synchronous: SlowAPIMiddleware calls this handler directly and
    returns its result without awaiting it.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = error_response(429, ErrorCode.RATE_LIMIT_EXCEEDED, f"Too many requests. Limit: {exc.detail}.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. In production the client receives a
    generic message; the code stays INTERNAL_ERROR either way.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    message = str(exc) if _is_debug(request) else None
    return error_response(500, ErrorCode.INTERNAL_ERROR, message)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        ping(request.app.state.engine)
        database = "ok"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
