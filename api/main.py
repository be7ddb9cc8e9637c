"""
api/main.py -- FastAPI application entry point for Storefront.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. security_headers      -- frame, sniffing, XSS, HSTS, referrer headers
  4. log_requests          -- method, path, status, latency, client

Rate limits are route dependencies from api.limiter, not middleware.

Lifespan builds every service once and hangs it on app.state:
  settings, user_store, vendor_store, provider, token_cache, authenticator,
  audit, monitor, email, workflow
and starts the purge task that sweeps the Token Cache and Auth Monitor.
Shutdown cancels the task and closes the stores.
"""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.super_admin import router as super_admin_router
from api.routes.users import router as users_router
from api.routes.vendor import router as vendor_router
from audit.monitor import AuthMonitor
from audit.store import AuditLogger
from auth.provider import build_identity_provider
from auth.store import UserStore
from auth.verifier import TokenAuthenticator, build_verifier
from cache.store import TokenCache
from core.config import Settings, get_settings
from core.email import EmailService
from core.errors import AppError, RateLimitedError
from vendors.store import VendorStore
from vendors.workflow import VendorWorkflow

__version__ = "0.3.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storefront.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Sweep expired tokens and stale failure counters once per monitor window.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(app.state.monitor.time_window)
        evicted = app.state.token_cache.cleanup()
        dropped = app.state.monitor.cleanup()
        logger.debug("Purge: %d cached tokens evicted, %d failure counters dropped", evicted, dropped)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_services(app: FastAPI, config: Settings) -> None:
    """Construct every shared service from config and attach it to app.state."""
    app.state.settings = config
    app.state.user_store = UserStore(config.user_db_url)
    app.state.vendor_store = VendorStore(config.vendor_db_url)
    app.state.provider = build_identity_provider(config)
    app.state.token_cache = TokenCache(
        ttl=config.token_cache_ttl_seconds,
        max_entries=config.token_cache_max_entries,
    )
    app.state.authenticator = TokenAuthenticator(build_verifier(config), app.state.token_cache)
    app.state.audit = AuditLogger(
        config.audit_log_path,
        max_bytes=config.audit_max_bytes,
        max_files=config.audit_max_files,
    )
    app.state.monitor = AuthMonitor(
        app.state.audit,
        brute_force_threshold=config.brute_force_threshold,
        suspicious_threshold=config.suspicious_threshold,
        time_window=config.monitor_window_seconds,
        suspicious_activity_alert_threshold=config.suspicious_activity_alert_threshold,
    )
    app.state.email = EmailService(
        smtp_host=config.smtp_host or None,
        smtp_port=config.smtp_port,
        smtp_user=config.smtp_username or None,
        smtp_password=config.smtp_password or None,
        smtp_use_tls=config.smtp_use_tls,
        from_email=config.email_from,
        from_name=config.email_from_name,
        base_url=config.frontend_url,
        log_body=config.is_development,
    )
    app.state.workflow = VendorWorkflow(app.state.user_store, app.state.vendor_store, app.state.provider)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Storefront API starting up (environment=%s)", settings.environment)
    build_services(app, settings)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    app.state.vendor_store.close()
    logger.info("Storefront API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Storefront API",
    description="Authentication, authorization, and vendor onboarding for the Storefront marketplace.",
    version=__version__,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() calls are applied outermost-first from the caller's
# perspective: TrustedHost -> CORS -> function middleware below.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    max_age=3600,
)

app.state.limiter = limiter

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    level = logging.WARNING if response.status_code >= 400 else logging.INFO
    logger.log(
        level,
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])
app.include_router(super_admin_router, prefix="/api/super-admin", tags=["SuperAdmin"])
app.include_router(vendor_router, prefix="/api/vendor", tags=["Vendor"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _include_stack(request: Request) -> bool:
    config = getattr(request.app.state, "settings", None) or settings
    return not config.is_production


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    details: dict | None = None,
    stack: str | None = None,
    extra: dict | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        message=message,
        error=ErrorDetail(code=code, stack=stack, **(details or {})),
        timestamp=datetime.now(timezone.utc).isoformat(),
        path=request.url.path,
        **(extra or {}),
    ).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render any AppError; RateLimitedError also gets retryAfter and Retry-After."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "%s %s -> %d %s (ip=%s ua=%s)",
        request.method,
        request.url,
        exc.status_code,
        exc.message,
        request.client.host if request.client else "unknown",
        request.headers.get("User-Agent", ""),
        exc_info=exc.status_code >= 500,
    )
    stack = "".join(traceback.format_exception(exc)) if _include_stack(request) else None
    extra = None
    if isinstance(exc, RateLimitedError):
        extra = {"retryAfter": exc.retry_after}
    response = _error_response(request, exc.status_code, exc.message, exc.code, exc.details, stack, extra)
    if isinstance(exc, RateLimitedError):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


def _validation_message(error: dict) -> str:
    field = str(error["loc"][-1]) if error.get("loc") else "request"
    if error.get("type") == "missing":
        return f"{field} is required"
    return error.get("msg", "Invalid value").removeprefix("Value error, ")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first failure as message and every failure in error.errors."""
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": _validation_message(e)}
        for e in exc.errors()
    ]
    message = errors[0]["message"] if errors else "Validation failed"
    return _error_response(request, 400, message, "validation_error", {"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Not found - {request.url.path}"
    else:
        message = str(exc.detail)
    return _error_response(request, exc.status_code, message, f"http_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback always goes to the log; it reaches the response body only
    outside production.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    stack = "".join(traceback.format_exception(exc)) if _include_stack(request) else None
    return _error_response(request, 500, "An unexpected error occurred", "internal_error", stack=stack)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and environment."""
    config = getattr(request.app.state, "settings", None) or settings
    return HealthResponse(version=__version__, environment=config.environment)
