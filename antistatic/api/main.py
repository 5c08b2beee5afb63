"""Antistatic API - Main FastAPI Application.

This module provides the FastAPI application behind the Antistatic web app.
It includes:
- CORS middleware configuration
- Optional API key middleware
- Health check endpoints
- Onboarding, reputation, competitor, Instagram and Social Studio endpoints
- Meta webhook receiver
- Background scheduler startup and shutdown

Usage:
    # Run with uvicorn
    uvicorn antistatic.api.main:app --reload

    # Or run directly
    python -m antistatic.api.main
"""

import hmac
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from antistatic import __version__
from antistatic.api.dependencies import get_supabase, reset_dependencies, set_scheduler
from antistatic.api.models import ValidationErrorDetail
from antistatic.api.routes import (
    business_router,
    competitors_router,
    gbp_router,
    health_router,
    instagram_router,
    places_router,
    reputation_router,
    social_studio_router,
    webhooks_router,
)
from antistatic.api.routes.health import set_server_start_time
from antistatic.config.settings import get_settings
from antistatic.core.exceptions import AntistaticError
from antistatic.core.logging import configure_logging
from antistatic.scheduler.scheduler import Scheduler

logger = structlog.get_logger(__name__)

# API metadata for OpenAPI documentation
API_TITLE = "Antistatic API"
API_DESCRIPTION = """
## Marketing back office for local businesses

Antistatic connects a business's Google Business Profile and Instagram account
and keeps its online presence tidy from one place.

### Features

- **Onboarding**: Pick your business from Google Places and choose the tools you need
- **Reputation**: Sync Google reviews, reply with AI drafts, send review requests
- **Competitors**: Discover nearby competitors and track search rankings
- **Instagram**: Connect an account, reply to comments and direct messages
- **Social Studio**: Plan posts on a calendar and publish them on schedule

### Authentication

Every endpoint except health, OAuth callbacks, cron and webhooks expects a
Supabase access token in `Authorization: Bearer <token>`.
Set `API_KEY_ENABLED=true` and `API_KEY=your-secret-key` to additionally
require an X-API-Key header.
"""


# =============================================================================
# API Key Authentication Middleware
# =============================================================================


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Middleware to validate API key for all requests except public endpoints.

    Enable by setting API_KEY_ENABLED=true and API_KEY=<secret> in environment.
    """

    # Endpoints that don't require authentication
    PUBLIC_PATHS = {"/", "/health", "/health/live", "/health/ready", "/docs", "/redoc", "/openapi.json"}

    # Called by third parties that cannot send our key
    PUBLIC_PREFIXES = (
        "/api/webhooks/",
        "/api/cron/",
        "/api/integrations/instagram/callback",
        "/api/gbp/oauth/callback",
    )

    async def dispatch(self, request: Request, call_next):
        settings = get_settings()

        # Skip auth if disabled
        if not settings.api_key_enabled:
            return await call_next(request)

        path = request.url.path
        if path in self.PUBLIC_PATHS or path.startswith(self.PUBLIC_PREFIXES):
            return await call_next(request)

        # Validate API key
        api_key = request.headers.get("X-API-Key")
        expected_key = settings.api_key.get_secret_value() if settings.api_key else None

        if not expected_key:
            logger.error("api_key_enabled_but_not_set")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Server misconfiguration: API key authentication enabled but no key configured"},
            )

        if not api_key:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Missing X-API-Key header"},
            )

        if not hmac.compare_digest(api_key, expected_key):
            logger.warning("invalid_api_key_attempt", path=path)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Invalid API key"},
            )

        return await call_next(request)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: configure logging, start the scheduler
    - Shutdown: stop the scheduler, drop cached clients
    """
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=not settings.is_development)

    logger.info("application_starting", app_env=settings.app_env)
    set_server_start_time()

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = Scheduler(get_supabase())
        try:
            await scheduler.start()
            logger.info("scheduler_initialized")
        except Exception as e:
            logger.error("scheduler_initialization_failed", error=str(e))
        set_scheduler(scheduler)
    else:
        logger.info("scheduler_disabled")

    logger.info("application_started")

    yield

    # Shutdown
    logger.info("application_stopping")

    try:
        if scheduler is not None and scheduler.is_running:
            await scheduler.stop()
    except Exception as e:
        logger.error("scheduler_shutdown_error", error=str(e))

    reset_dependencies()
    logger.info("application_stopped")


# Create FastAPI application
app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    openapi_tags=[
        {"name": "Health", "description": "System health and status endpoints"},
        {"name": "Onboarding", "description": "Business selection, tool choice and prescriptions"},
        {"name": "Reputation", "description": "Google reviews, AI replies and review requests"},
        {"name": "Competitors", "description": "Competitor discovery and search rankings"},
        {"name": "Instagram", "description": "Instagram connection, comments and messages"},
        {"name": "Social Studio", "description": "Post calendar, scheduling and AI captions"},
        {"name": "Webhooks", "description": "Callbacks from Meta"},
    ],
)

# Configure CORS middleware (from settings)
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allowed_origins,
    allow_credentials=_settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key", "Accept"],
)

# Add API Key authentication middleware
app.add_middleware(APIKeyMiddleware)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(AntistaticError)
async def antistatic_exception_handler(request: Request, exc: AntistaticError) -> JSONResponse:
    """Map domain errors to their HTTP status and ``{"error": ...}`` body."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with detailed response."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append(ValidationErrorDetail(field=field, message=error["msg"]).model_dump())

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request data", "details": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render ``HTTPException`` with the same ``{"error": ...}`` shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
    )

    content = {"error": "Internal server error"}
    if get_settings().debug:
        content["detail"] = str(exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
    )


# =============================================================================
# Root Endpoints
# =============================================================================


@app.get("/", include_in_schema=False)
async def root() -> dict:
    """Root endpoint - points at API documentation."""
    return {
        "name": API_TITLE,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# =============================================================================
# Include Routers
# =============================================================================

# Health endpoints at root level
app.include_router(health_router)

app.include_router(places_router)
app.include_router(business_router)
app.include_router(reputation_router)
app.include_router(competitors_router)
app.include_router(gbp_router)
app.include_router(instagram_router)
app.include_router(social_studio_router)
app.include_router(webhooks_router)


# =============================================================================
# Development Server
# =============================================================================


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "antistatic.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
