"""FastAPI main application for the tally verification backend."""

from contextlib import asynccontextmanager

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import ballot_candidates, polling_stations, results, submissions
from app.core.config import settings
from app.core.database import close_db_pool, get_pool, init_db_pool
from app.core.logging_config import get_logger, setup_logging
from app.core.responses import error_response, error_response_dict, success_response
from app.services.submissions import ReferenceNotFound, SubmissionConflict

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting tally backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Initialize async database pool (skip in test environment)
    if settings.ENVIRONMENT != "test":
        await init_db_pool(settings)

    yield

    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down tally backend...")


app = FastAPI(
    title="Tally Backend",
    description="""
    **Tally Backend** - Polling station result verification and aggregation

    Features:
    - Field submissions with GPS verification and photo evidence
    - Vote arithmetic validation and statistical anomaly flags
    - Confidence scoring to prioritise review
    - Review workflow (approve, reject, request revision)
    - Results aggregation by county, constituency, ward or station
    - Electoral scope restrictions for candidate accounts

    ## Authentication

    Include the JWT token in the Authorization header:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    Results aggregation also accepts anonymous callers.
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "User-Agent"],
    )


# Exception handlers
def _error(message: str, status_code: int, errors: dict | None = None):
    return error_response_dict(
        {"success": False, "message": message, "data": None, "errors": errors},
        status_code,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    # If the detail is already a dict (from our error_response), use it directly
    if isinstance(exc.detail, dict):
        return error_response_dict(exc.detail, exc.status_code)
    return _error(exc.detail, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return _error("Validation failed", status.HTTP_422_UNPROCESSABLE_ENTITY, errors)


@app.exception_handler(SubmissionConflict)
async def conflict_exception_handler(request: Request, exc: SubmissionConflict):
    """Business conflicts: duplicate submissions, final statuses."""
    return _error(str(exc), status.HTTP_409_CONFLICT, {"conflict": exc.code})


@app.exception_handler(ReferenceNotFound)
async def not_found_exception_handler(request: Request, exc: ReferenceNotFound):
    return _error(str(exc), status.HTTP_404_NOT_FOUND)


@app.exception_handler(PermissionError)
async def permission_exception_handler(request: Request, exc: PermissionError):
    return _error(str(exc), status.HTTP_403_FORBIDDEN)


@app.exception_handler(ValueError)
async def value_exception_handler(request: Request, exc: ValueError):
    """Input rejected by a service."""
    return _error(str(exc), status.HTTP_400_BAD_REQUEST)


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(
    request: Request, exc: asyncpg.exceptions.PostgresError
):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return _error("Database error occurred", status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return _error("An unexpected error occurred", status.HTTP_500_INTERNAL_SERVER_ERROR)


# Create versioned API router
v1_router = APIRouter(prefix="/v1")

v1_router.include_router(submissions.router)
v1_router.include_router(results.router)
v1_router.include_router(polling_stations.router)
v1_router.include_router(ballot_candidates.router)

app.include_router(v1_router)

# Also include routers at root level (latest version)
app.include_router(submissions.router)
app.include_router(results.router)
app.include_router(polling_stations.router)
app.include_router(ballot_candidates.router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 when the database answers, 503 otherwise.
    """
    import time

    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}
    health_status["checks"]["api"] = {"status": "healthy", "message": "API is running"}

    pool = get_pool()
    if pool is None:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": "Database pool not initialized",
        }
        return error_response(
            message="Health check failed", data=health_status, status_code=503
        )

    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except (OSError, asyncpg.PostgresError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database check failed: {e!s}",
        }
        return error_response(
            message="Health check failed", data=health_status, status_code=503
        )

    pool_size = pool.get_size()
    pool_idle = pool.get_idle_size()
    health_status["checks"]["database"] = {
        "status": "healthy",
        "message": "Database is accessible",
        "pool": {
            "size": pool_size,
            "max": pool.get_max_size(),
            "idle": pool_idle,
            "active": pool_size - pool_idle,
        },
    }

    return success_response(data=health_status)
