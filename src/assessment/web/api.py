"""FastAPI application factory.

A thin HTTP surface over the engine operations. Engine errors map to
status codes: NotFound -> 404, InvalidTransition -> 409,
ExternalUnavailable -> 503.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment import __version__
from assessment.core.errors import (
    AssessmentError,
    ExternalUnavailableError,
    InvalidTransitionError,
    NotFoundError,
)
from assessment.web.routes import (
    assignments_router,
    health_router,
    makeups_router,
    sweeps_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    logger.info("api_startup", version=__version__)
    yield


def _status_for(error: AssessmentError) -> int:
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, InvalidTransitionError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, ExternalUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    """Render engine errors as JSON with a matching status code."""
    status_code = _status_for(exc)
    logger.warning("api_error", path=request.url.path, status=status_code, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Assessment Engine API",
        description="Grading, makeup exams and deadline sweeps",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AssessmentError, assessment_error_handler)

    app.include_router(health_router)
    app.include_router(assignments_router)
    app.include_router(makeups_router)
    app.include_router(sweeps_router)

    return app


# Default app instance for uvicorn
app = create_app()
