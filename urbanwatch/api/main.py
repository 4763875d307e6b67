"""
UrbanWatch API - FastAPI Application Entry Point

Municipal concern and incident workflow.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from urbanwatch.api.routes import auth, concerns, operator, purok_leader, yolo
from urbanwatch.api.schemas import ApiResponse, ErrorDetail
from urbanwatch.config import configure_logging, get_logger, get_settings
from urbanwatch.db import close_db, init_db
from urbanwatch.db import health_check as db_health_check
from urbanwatch.errors import (
    NotFoundOrUnauthorized,
    PersistenceError,
    UpstreamIntegrationError,
    UrbanWatchError,
    ValidationError,
)
from urbanwatch.services.classifier import AnthropicEmergencyClassifier
from urbanwatch.services.event_stream import RedisEventPublisher
from urbanwatch.services.storage import LocalMediaStorage

settings = get_settings()
logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."

# Redis client (initialized in lifespan)
redis_client: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    global redis_client

    # Startup
    configure_logging(
        json_format=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )
    logger.info(
        "Starting UrbanWatch API",
        environment=settings.environment,
        version=settings.app_version,
    )

    # Initialize database
    await init_db(
        pool_size=5,
        max_overflow=10,
        echo=settings.debug,
    )
    logger.info("Database connection established")

    # Initialize Redis
    redis_client = aioredis.from_url(
        settings.redis_url.get_secret_value(),
        encoding="utf-8",
        decode_responses=True,
    )
    logger.info("Redis connection established")

    # Store in app state for access in dependencies
    app.state.redis = redis_client
    app.state.publisher = RedisEventPublisher(redis_client)
    app.state.storage = LocalMediaStorage(settings.media_root, settings.media_base_url)
    app.state.classifier = AnthropicEmergencyClassifier()

    yield

    # Shutdown
    if redis_client:
        await redis_client.aclose()
        logger.info("Redis connection closed")

    await close_db()
    logger.info("Shutting down UrbanWatch API")


app = FastAPI(
    title=settings.app_name,
    description="UrbanWatch - Municipal concern and incident workflow",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error envelope
# =============================================================================


def error_response(
    status_code: int,
    message: str,
    error_type: str,
    *,
    field: str | None = None,
    details=None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render a failure in the standard response envelope."""
    body = ApiResponse(
        success=False,
        message=message,
        error=ErrorDetail(type=error_type, field=field, details=details),
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body, by_alias=True),
        headers=headers,
    )


_DOMAIN_STATUS: dict[type[UrbanWatchError], int] = {
    NotFoundOrUnauthorized: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    UpstreamIntegrationError: status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(UrbanWatchError)
async def domain_error_handler(request: Request, exc: UrbanWatchError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _DOMAIN_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )

    if status_code >= 500:
        logger.error(
            "Request failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
        )

    # Persistence failures never leak internals
    message = exc.message
    details = exc.details or None
    if isinstance(exc, PersistenceError):
        message = GENERIC_ERROR_MESSAGE
        details = None

    return error_response(
        status_code,
        message,
        type(exc).__name__,
        field=getattr(exc, "field", None),
        details=details,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        "ValidationError",
        details=jsonable_encoder(exc.errors()),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        exc.status_code,
        str(exc.detail),
        "HTTPError",
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path, error=str(exc))
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        GENERIC_ERROR_MESSAGE,
        "InternalError",
    )


# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(concerns.router, prefix="/api/concerns", tags=["Concerns"])
app.include_router(purok_leader.router, prefix="/api/purok-leader", tags=["Purok Leader"])
app.include_router(yolo.router, prefix="/api/yolo", tags=["Detections"])
app.include_router(operator.router, prefix="/api/operator", tags=["Operator"])


@app.get("/health")
async def health_check() -> dict[str, str | bool]:
    """Health check endpoint for Docker and load balancers."""
    db_ok = await db_health_check()

    # Check Redis
    redis_ok = False
    try:
        redis = getattr(app.state, "redis", None)
        if redis is not None:
            await redis.ping()
            redis_ok = True
    except Exception as e:
        logger.warning("Redis health check failed", error=str(e))

    all_ok = db_ok and redis_ok
    return {
        "status": "healthy" if all_ok else "degraded",
        "version": settings.app_version,
        "database": db_ok,
        "redis": redis_ok,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "urbanwatch.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        workers=1 if settings.is_development else settings.workers,
    )


if __name__ == "__main__":
    run()
