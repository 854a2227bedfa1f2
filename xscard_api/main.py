"""XS Card API - Main Application.

FastAPI application for event bulk registration, iOS version gating,
subscription plan changes and RevenueCat subscription sync.

Security: Firebase Auth tokens are required for every endpoint except
/api/health, the iOS version checks and the signed RevenueCat webhook.

Usage:
    uvicorn xscard_api.main:app --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .dependencies import get_firebase_app, get_firestore
from .errors import AppError, SystemError, app_error_response, error_response
from .middleware import setup_rate_limiting
from .routers import bulk_registrations, health, ios_versions, plans, revenuecat

# Logging setup
logging.basicConfig(
    level=logging.DEBUG if config.DEBUG_MODE else logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("api.main")


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    logger.info("Starting XS Card API v%s", config.API_VERSION)
    logger.info("Debug mode: %s", config.DEBUG_MODE)

    try:
        get_firebase_app()
        logger.info("Firebase initialized")

        get_firestore()
        logger.info("Firestore connected")
    except Exception as e:
        logger.error("Startup failed: %s", e)
        raise

    yield

    logger.info("Shutting down XS Card API")


# =============================================================================
# APPLICATION
# =============================================================================

if config.DEBUG_MODE:
    app = FastAPI(
        title="XS Card API",
        version=config.API_VERSION,
        lifespan=lifespan,
    )
else:
    # Production: disable docs endpoints
    app = FastAPI(
        title="XS Card API",
        version=config.API_VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )


# =============================================================================
# MIDDLEWARE
# =============================================================================

setup_rate_limiting(app)

# CORS - strict origins only
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    # Remove headers that reveal implementation
    if "server" in response.headers:
        del response.headers["server"]
    if "x-powered-by" in response.headers:
        del response.headers["x-powered-by"]

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration (never headers or bodies)."""
    start = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s -> %s (%.0fms)",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )

    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Render AppError subclasses as the standard error envelope."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s %s", exc.code, request.url.path, exc.message, exc.details)
    else:
        logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)

    # SystemError internals stay server-side outside debug mode
    expose = config.DEBUG_MODE or not isinstance(exc, SystemError)
    return app_error_response(exc, expose_details=expose)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    return error_response(
        400,
        error="Invalid request",
        code="VALIDATION_ERROR",
        details={"errors": errors},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions with generic error response."""
    logger.exception("Unhandled exception on %s", request.url.path)

    if config.DEBUG_MODE:
        return error_response(
            500,
            error=str(exc),
            code="SYSTEM_ERROR",
            details={"type": type(exc).__name__},
        )
    return error_response(500, error="Internal server error", code="SYSTEM_ERROR")


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(health.router, prefix="/api")
app.include_router(bulk_registrations.router, prefix="/api")
app.include_router(ios_versions.router, prefix="/api")
app.include_router(plans.router, prefix="/api")
app.include_router(revenuecat.router, prefix="/api")


# =============================================================================
# ROOT ENDPOINT
# =============================================================================

@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": "XS Card API",
        "version": config.API_VERSION,
        "status": "running"
    }
