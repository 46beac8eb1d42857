"""FastAPI main application for the electoral backend."""

import time
from contextlib import asynccontextmanager

import asyncpg
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from electoral.api.routes import (
    access,
    commissions,
    corrections,
    documents,
    participation,
    results,
    territorial,
)
from electoral.core import database
from electoral.core.config import get_settings, settings
from electoral.core.database import close_db_pool, get_db_connection, init_db_pool
from electoral.core.exceptions import ElectoralError
from electoral.core.logging_config import get_logger, setup_logging
from electoral.core.responses import error_body, error_response_dict, success_response
from electoral.services.territory import load_hierarchy, set_hierarchy
from electoral.utils.storage import ensure_bucket_exists, get_s3_client

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    # Startup
    logger.info("Starting electoral backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Storage configured: {settings.SPACES_BUCKET} at {settings.SPACES_ENDPOINT}")

    # Pool and reference data (skipped in test environment)
    if settings.ENVIRONMENT != "test":
        await init_db_pool(settings)
        async with get_db_connection() as conn:
            set_hierarchy(await load_hierarchy(conn))

    try:
        ensure_bucket_exists()
    except (BotoCoreError, ClientError) as e:
        logger.warning(f"Could not initialize storage bucket: {e}")

    yield

    # Shutdown
    if settings.ENVIRONMENT != "test":
        await close_db_pool()
        set_hierarchy(None)
    logger.info("Shutting down electoral backend...")


# Create FastAPI app
app = FastAPI(
    title="Electoral Backend",
    description="""
    **Electoral Backend** - territorial access control, participation and result tabulation

    Features:
    - Territorial hierarchy (region, department, arrondissement, polling station)
    - Read/edit grants inherited down the hierarchy
    - Participation and party results per department, arrondissement and polling station
    - Corrections (redressements) with a full audit trail
    - Department and national aggregation
    - PV uploads via S3 / MinIO

    ## Authentication

    Every endpoint except `/health` requires a bearer token issued by the identity provider:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    ## API Versioning

    - `/v1/*` - Version 1 (current stable)
    - `/*` - Latest version (may change)
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "User-Agent"],
    )


# Exception handlers
@app.exception_handler(ElectoralError)
async def electoral_exception_handler(request: Request, exc: ElectoralError):
    """Domain errors raised by the services."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return error_response_dict(error_body(exc.message, exc.errors), exc.status_code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    if isinstance(exc.detail, dict):
        return error_response_dict(exc.detail, exc.status_code)
    return error_response_dict(error_body(str(exc.detail)), exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are reported like any other invalid payload."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(error_body("Invalid payload", errors), 422)


@app.exception_handler(asyncpg.exceptions.UniqueViolationError)
async def conflict_exception_handler(
    request: Request, exc: asyncpg.exceptions.UniqueViolationError
):
    logger.warning(f"Uniqueness conflict: {exc}")
    return error_response_dict(
        error_body("The record was modified concurrently; resubmit the request"), 409
    )


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(request: Request, exc: asyncpg.exceptions.PostgresError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(error_body("Storage is unavailable"), 503)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(error_body("An unexpected error occurred"), 500)


ROUTERS = [
    territorial.router,
    access.router,
    participation.router,
    corrections.router,
    results.router,
    commissions.router,
    documents.router,
]

# Create versioned API router
v1_router = APIRouter(prefix="/v1")
for router in ROUTERS:
    v1_router.include_router(router)

app.include_router(v1_router)

# Also include routers at root level (latest version)
for router in ROUTERS:
    app.include_router(router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Checks:
    - Database connectivity through the pool
    - Territorial hierarchy loaded
    - Storage (MinIO) connectivity

    Returns 200 if the database is reachable, 503 otherwise. Storage
    failures only mark the service as degraded.
    """
    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}
    all_healthy = True

    # Check database
    if database._pool is None:
        all_healthy = False
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": "Database pool not initialized",
        }
    else:
        try:
            async with get_db_connection() as conn:
                await conn.fetchval("SELECT 1")
            pool_size = database._pool.get_size()
            pool_idle = database._pool.get_idle_size()
            health_status["checks"]["database"] = {
                "status": "healthy",
                "message": "Database is accessible",
                "pool": {
                    "size": pool_size,
                    "max": database._pool.get_max_size(),
                    "idle": pool_idle,
                    "active": pool_size - pool_idle,
                },
            }
        except (asyncpg.PostgresError, OSError) as e:
            all_healthy = False
            health_status["checks"]["database"] = {
                "status": "unhealthy",
                "message": f"Database check failed: {e!s}",
            }

    # Check storage
    current_settings = get_settings()
    try:
        get_s3_client().head_bucket(Bucket=current_settings.SPACES_BUCKET)
        health_status["checks"]["storage"] = {
            "status": "healthy",
            "message": "Storage is accessible",
            "endpoint": current_settings.SPACES_ENDPOINT,
            "bucket": current_settings.SPACES_BUCKET,
        }
    except (BotoCoreError, ClientError) as e:
        health_status["checks"]["storage"] = {
            "status": "degraded",
            "message": f"Storage check warning: {e!s}",
        }

    if not all_healthy:
        health_status["status"] = "unhealthy"
        return error_response_dict(
            {**error_body("Health check failed"), "data": health_status}, 503
        )

    return success_response(data=health_status)
