"""
api/main.py -- FastAPI application entry point for RecordVault.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- the vault UI is same-origin; only APP_URL is allowed
  3. log_requests          -- one line per request with latency

Rate limits are enforced inside the route handlers through
app.state.rate_limiter (see api/limiter.py), because several keys include the
email from the request body.

Lifespan handles startup (engine, schema, stores, Drive client, mailer,
rate limiter) and shutdown (close Drive session, dispose engine)
symmetrically.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import build_rate_limiter, retry_after_seconds
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.media import router as media_router
from api.routes.v1.provision import router as provision_router
from api.routes.v1.vault import router as vault_router
from auth.mailer import SmtpMailer
from auth.store import CredentialStore
from core.config import get_settings
from core.errors import PayloadValidationError, PreconditionFailed, RateLimited, VaultError
from db.schema import create_db_engine, init_schema
from storage.drive import DriveClient
from vault.store import VaultStore

__version__ = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("recordvault.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every shared collaborator once and hang it on app.state.

    Startup order matters:
      1. Engine + schema first -- every store needs the tables.
      2. Credential store before the Drive client -- the Drive client reads
         the connected refresh token from app_settings.
      3. Rate limiter last -- a single instance shared by every route, or
         limits would never trigger.
    """
    logger.info("RecordVault API starting up")
    engine = create_db_engine(_settings.database_url)
    init_schema(engine)
    app.state.engine = engine
    app.state.credential_store = CredentialStore(engine)
    app.state.vault_store = VaultStore(engine)
    app.state.drive = DriveClient(_settings, app.state.credential_store)
    app.state.mailer = SmtpMailer(_settings)
    app.state.rate_limiter = build_rate_limiter(_settings.rate_limit_storage_uri)
    logger.info(
        "Stores initialized (smtp=%s, rate_limit_storage=%s)",
        "configured" if _settings.smtp_configured else "not configured",
        _settings.rate_limit_storage_uri.split("://", 1)[0],
    )

    yield

    app.state.drive.close()
    engine.dispose()
    logger.info("RecordVault API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="RecordVault API",
    description="Private class recordings and materials, provisioned by webhook and streamed through a proxy.",
    version=__version__,
    lifespan=lifespan,
    # Interactive docs only in development.
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
    openapi_url="/openapi.json" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

_app_host = urlparse(_settings.app_url).hostname or "localhost"

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=sorted({_app_host, "localhost", "127.0.0.1"}),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.app_url.rstrip("/")],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Range", "X-Signature", "X-Timestamp"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    # Logs the path only: query strings carry stream tokens.
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
app.include_router(vault_router, prefix="/api/v1", tags=["Vault"])
app.include_router(media_router, prefix="/api/v1", tags=["Media"])
app.include_router(provision_router, prefix="/api/v1", tags=["Provisioning"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as {"error": {code, message, detail?}}, whatever raised it.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    """Render a domain error with its own status, code, and message.

    Only PayloadValidationError carries field detail and only PreconditionFailed
    lists missing ids. Every other error renders its message alone, so a
    failed auth check never explains itself.
    """
    detail = None
    if isinstance(exc, PayloadValidationError):
        detail = exc.details
    elif isinstance(exc, PreconditionFailed):
        detail = {"missingVideoIds": exc.missing_video_ids}

    response = _error_response(exc.status_code, exc.code, exc.message, detail)
    if isinstance(exc, RateLimited):
        response.headers["Retry-After"] = str(retry_after_seconds(exc.reset_at))
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return response


# Field-level validation detail is for the operator console only. Customer
# routes get a bare message and never see field names or patterns.
_OPERATOR_PATH_PREFIX = "/api/v1/admin/"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422. Admin routes add one {path, message} entry per failing field."""
    if not request.url.path.startswith(_OPERATOR_PATH_PREFIX):
        return _error_response(422, "validation_error", "Invalid request.")
    detail = [
        {"path": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")} for err in exc.errors()
    ]
    return _error_response(422, "validation_error", "Request validation failed.", detail)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured envelope for framework-raised errors (unknown route, wrong method)."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything not mapped above becomes a 500.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Lives on the app itself, outside the versioned routers, and is never rate
# limited: load balancers poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    """Return API liveness, version, and whether the database answers."""
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="degraded", version=__version__, database="unavailable").model_dump(),
        )
    return JSONResponse(content=HealthResponse(version=__version__).model_dump())
