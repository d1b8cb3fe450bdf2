"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
Landmark Face Authentication API.

The application provides:
- REST endpoints for face enrollment and landmark analysis
- REST endpoints for authentication and its statistics
- REST endpoints for user management
- Health check endpoint

Every error leaves as {"error": ..., "code": ...} with the status of the
FaceAuthError it came from, and every response carries the standard
security headers.

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import authentication_router, enrollment_router, management_router
from api.schemas import HealthResponse
from core.abuse_guard import now_ms
from core.config import get_api_config, get_config, get_logging_config
from core.errors import FaceAuthError, RateLimitExceeded, UnexpectedError
from core.gallery_store import get_gallery_store
from core.matching import AUTH_THRESHOLD
from core.quality import MIN_QUALITY_FOR_ENROLLMENT


# Configure logging
_logging_config = get_logging_config()
logging.basicConfig(
    level=getattr(logging, str(_logging_config.get("level", "INFO")).upper(), logging.INFO),
    format=_logging_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Open the gallery database and report its size

    Runs on shutdown:
    - Close the database connection
    """
    logger.info("=" * 60)
    logger.info("Starting Landmark Face Authentication API")
    logger.info("=" * 60)

    logger.info("Initializing gallery store...")
    store = get_gallery_store()
    stats = store.get_stats()
    logger.info(f"Gallery store ready: {stats['total_users']} users, "
                f"{stats['enrolled_users']} enrolled")

    logger.info("API startup complete!")
    logger.info("=" * 60)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down API...")
    store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Landmark Face Authentication API",
    description="""
API for face authentication using facial landmark embeddings.

## Features
- **Enrollment**: Register a user's face embedding (rate limited per client)
- **Authentication**: Identify a face against every enrolled user
- **Analysis**: Compute embedding and quality from raw face-mesh landmarks
- **User Management**: Create, list, view, update and delete users
    """,
    version=API_VERSION,
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_api_config().get("cors_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(FaceAuthError)
async def face_auth_error_handler(request: Request, exc: FaceAuthError):
    """Render a FaceAuthError with its own status code and body."""
    headers = None

    if isinstance(exc, RateLimitExceeded):
        retry_after = max(0, math.ceil((exc.reset_time - now_ms()) / 1000))
        headers = {"Retry-After": str(retry_after)}

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} ({exc.message})")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Report schema violations as VALIDATION_ERROR naming the first bad field."""
    errors = exc.errors()
    field = None
    message = "Invalid request"

    if errors:
        first = errors[0]
        names = [part for part in first.get("loc", ()) if isinstance(part, str) and part not in ("body", "query", "path")]
        field = names[0] if names else None
        message = f"Invalid value for {field}: {first.get('msg')}" if field else first.get("msg", message)

    body = {"error": message, "code": "VALIDATION_ERROR"}
    if field:
        body["field"] = field
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=UnexpectedError().to_dict(), headers=SECURITY_HEADERS)


# Include routers
app.include_router(enrollment_router)
app.include_router(authentication_router)
app.include_router(management_router)


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check():
    """
    Check the health of the API and its database.

    Returns:
    - Database reachability
    - Number of users and enrolled users
    - Thresholds in use
    """
    config = get_config()
    database_ok = True
    stats = {"total_users": 0, "enrolled_users": 0}

    try:
        stats = get_gallery_store().get_stats()
    except Exception as e:
        logger.error(f"Health check: database unavailable: {e}")
        database_ok = False

    return HealthResponse(
        status="healthy" if database_ok else "unhealthy",
        database=database_ok,
        total_users=stats["total_users"],
        enrolled_users=stats["enrolled_users"],
        auth_threshold=config.get("matching", {}).get("auth_threshold", AUTH_THRESHOLD),
        min_quality=config.get("quality", {}).get("min_quality_for_enrollment", MIN_QUALITY_FOR_ENROLLMENT),
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Landmark Face Authentication API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    from core.config import get_server_config

    server_config = get_server_config()
    host = server_config["host"]
    port = server_config["port"]

    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(
        "api.app:app",
        host=host,
        port=port,
        reload=server_config.get("reload", False),
        log_level="info",
    )
