"""Ensemble: Main FastAPI Application.

Team operations hub: monthly scorecards with a publish workflow, shift
turnover fed from the ITSM system, and a shared link manager.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api import api_router
from .core import (
    ConflictError,
    EnsembleError,
    ExternalSyncError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    close_db,
    get_settings,
    init_db,
)
from .schemas import ErrorResponse

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Exception class -> (status code, error slug)
ERROR_STATUS: dict[type[EnsembleError], tuple[int, str]] = {
    NotFoundError: (status.HTTP_404_NOT_FOUND, "not_found"),
    ConflictError: (status.HTTP_409_CONFLICT, "conflict"),
    PermissionDeniedError: (status.HTTP_403_FORBIDDEN, "permission_denied"),
    ValidationError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    ExternalSyncError: (status.HTTP_502_BAD_GATEWAY, "external_sync_error"),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables are managed by migrations)
    if settings.environment != "production":
        try:
            await init_db()
        except (OSError, SQLAlchemyError) as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Ensemble API

    ### Key Features

    - **Scorecards**: monthly availability and volume per application. The
      enterprise view only shows months that are published, and hides any
      record edited after its month was published.
    - **Turnover**: shift handover entries, finalized into immutable snapshots.
    - **ITSM review queue**: changes and incidents pulled from the ITSM
      system, matched to applications and imported automatically or after
      review.
    - **Link manager**: private and public team bookmarks.

    ### Authentication

    All endpoints require a valid JWT token in the `Authorization: Bearer <token>` header.
    Team permissions are read from the token's `permissions` claim.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

# CORS middleware with explicit origins (credentials require explicit origins, not "*")
cors_origins = ["http://localhost:3000", "http://localhost:8000"]
for origin in settings.allowed_origins:
    if origin and origin not in cors_origins:
        cors_origins.append(origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(EnsembleError)
async def ensemble_exception_handler(request: Request, exc: EnsembleError):
    """Domain errors carry a display message; map the class to a status code."""
    status_code, error = ERROR_STATUS.get(
        type(exc), (status.HTTP_400_BAD_REQUEST, "bad_request")
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=exc.message,
            details=exc.details,
        ).model_dump(),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    logger.debug(traceback.format_exc())

    message = "An unexpected error occurred"
    if settings.debug:
        message = f"{message}: {str(exc)[:200]}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="internal_error", message=message).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ensemble.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
