"""
Fulfillment FastAPI Main Application
Entry point for the order fulfillment REST API
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fulfillment.api.v1.api_router import api_router
from fulfillment.core.config import settings
from fulfillment.core.database import check_db_connection, init_db
from fulfillment.core.exceptions import (
    ConcurrencyConflictError, FulfillmentError, InvalidStateError, NotFoundError, ValidationError
)
from fulfillment.core.logging import get_logger, setup_logging

logger = get_logger("api")

# Most specific first
ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT, "concurrency_conflict"),
    (InvalidStateError, status.HTTP_409_CONFLICT, "invalid_state"),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application startup and shutdown

    Configures logging, verifies the database and creates missing tables
    """
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if not check_db_connection():
        logger.error("Failed to connect to database on startup")
        raise RuntimeError("Database connection failed")

    logger.info("Database connection established")
    init_db()
    logger.info("Application startup completed successfully")

    yield

    logger.info("Shutting down application")


async def fulfillment_exception_handler(request: Request, exc: FulfillmentError):
    """Map domain errors to HTTP responses"""
    status_code, error = status.HTTP_500_INTERNAL_SERVER_ERROR, "fulfillment_error"
    for exc_type, code, name in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code, error = code, name
            break

    if status_code >= 500:
        logger.error(f"Unmapped fulfillment error: {exc}", exc_info=True)
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "detail": exc.message,
            "type": type(exc).__name__,
            "retryable": getattr(exc, "retryable", False),
            "context": exc.context or None,
        }
    )


async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors

    Returns:
        JSON error response
    """
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "type": "server_error"
        }
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
    ## Order Fulfillment Engine API

    Reserves warehouse stock against sales orders, batches allocated orders
    into pick waves, sequences pick tasks and recovers from short picks.

    ### Modules:
    - **Orders**: confirmation with automatic allocation, cancellation
    - **Allocations**: FIFO / FEFO / LIFO reservation and release
    - **Waves**: eligibility, creation, release, cancellation
    - **Pick Tasks**: assignment, claiming, start, completion with reallocation
    """,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(FulfillmentError, fulfillment_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/health", tags=["System"])
    async def health_check():
        """
        Health check endpoint for monitoring and load balancers

        Returns system status and database connectivity
        """
        try:
            db_status = check_db_connection()

            return {
                "status": "healthy" if db_status else "degraded",
                "version": settings.APP_VERSION,
                "database": "connected" if db_status else "disconnected",
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=503, detail="Service unavailable")

    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fulfillment.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
