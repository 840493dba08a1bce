"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from exam_engine.api.v1.api import api_router
from exam_engine.core.config import settings
from exam_engine.core.error_responses import (
    ErrorCode,
    ErrorMessages,
    ExamSessionError,
)
from exam_engine.core.logging_config import setup_logging
from exam_engine.middleware import RequestLoggingMiddleware
from exam_engine.observability import observability

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)

# HTTP statuses Starlette raises itself, mapped onto engine codes
_HTTP_STATUS_CODES = {
    status.HTTP_401_UNAUTHORIZED: ErrorCode.UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: ErrorCode.UNAUTHORIZED,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ErrorCode.VALIDATION_ERROR,
}


def _failure(
    status_code: int, code: ErrorCode, message: str, **details
) -> JSONResponse:
    error = {"code": code.value, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": error}
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    - On startup: initializes error tracking (no-op without a Sentry DSN)
    - On shutdown: flushes pending error reports
    """
    observability.init()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting ({settings.ENV})")

    yield

    observability.shutdown()
    logger.info("Application shutting down")


# OpenAPI tags metadata
tags_metadata = [
    {
        "name": "health",
        "description": "Health check endpoints for monitoring application status",
    },
    {
        "name": "exam-sessions",
        "description": (
            "Exam eligibility, session lifecycle, answer submission, proctoring "
            "violations and results"
        ),
    },
]


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "**Exam Session Engine** - server-side lifecycle for timed, proctored "
            "exam attempts.\n\n"
            "This API provides:\n"
            "* Eligibility checks and pre-exam instructions\n"
            "* Session start, resume, abandon and completion\n"
            "* One-time answer submission with server-side grading\n"
            "* Proctoring violation tracking with automatic completion\n"
            "* Results, practice review and leaderboard position\n\n"
            "## Authentication\n\n"
            "Every exam endpoint requires a JWT Bearer access token.\n\n"
            "## Responses\n\n"
            'Every exam endpoint returns `{"success": true, "data": ...}` or '
            '`{"success": false, "error": {"code": ..., "message": ...}}`.'
        ),
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    # Configure Request Logging
    app.add_middleware(RequestLoggingMiddleware)

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.exception_handler(ExamSessionError)
    async def engine_error_handler(request: Request, exc: ExamSessionError):
        """
        Turn an engine refusal into the failure envelope.
        """
        log_level = (
            logging.ERROR
            if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
            else logging.INFO
        )
        logger.log(
            log_level,
            f"Engine refused {request.method} {request.url.path}: {exc.code.value}",
            extra={"error_code": exc.code.value, "path": str(request.url.path)},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Wrap framework HTTP errors (unknown route, wrong method) in the envelope.
        """
        code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.VALIDATION_ERROR)
        return _failure(exc.status_code, code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Handle request validation errors.
        """
        # Convert errors to serializable format
        errors = []
        for error in exc.errors():
            errors.append(
                {
                    "loc": list(error.get("loc", [])),
                    "msg": str(error.get("msg", "")),
                    "type": str(error.get("type", "")),
                }
            )

        logger.info(
            f"Validation failed for {request.method} {request.url.path}: {errors}",
            extra={"error_code": ErrorCode.VALIDATION_ERROR.value},
        )
        return _failure(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorCode.VALIDATION_ERROR,
            ErrorMessages.VALIDATION_ERROR,
            errors=errors,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions and track them.

        Generates a unique error_id (UUID) for each exception to enable
        support teams to trace specific errors in logs. The error_id is
        included in the response body and logged with the full exception.
        """
        error_id = str(uuid.uuid4())

        logger.exception(
            f"Unhandled exception [error_id={error_id}]: {exc}",
            extra={"error_id": error_id},
        )

        observability.capture_error(
            exc,
            context={
                "path": str(request.url.path),
                "method": request.method,
                "error_id": error_id,
            },
            tags={"error_type": exc.__class__.__name__},
        )

        # Don't leak internal details
        return _failure(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorCode.INTERNAL_ERROR,
            ErrorMessages.INTERNAL_ERROR,
            error_id=error_id,
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
