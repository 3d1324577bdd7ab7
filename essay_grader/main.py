"""
FastAPI application for the essay grader.

    uvicorn essay_grader.main:app --port 8000

Routes live under /api/v1 (see essay_grader/api). Every response carries
X-Request-Id; every error body uses the envelope from `build_error_payload`.
"""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from essay_grader.api import routes
from essay_grader.utils.errors import (
    ErrorCode,
    build_error_payload,
    error_code_for_http_status,
)
from essay_grader.utils.logging_setup import (
    parse_level,
    setup_file_logging,
    silence_noisy_loggers,
)
from essay_grader.utils.observability import get_request_id_from_headers, log_event
from essay_grader.utils.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _request_id(request: Request):
    return getattr(request.state, "request_id", None) or get_request_id_from_headers(
        request.headers
    )


def _check_cors(settings: Settings) -> None:
    """Production must list its web origins explicitly."""
    if settings.app_env.strip().lower() not in {"prod", "production"}:
        return
    origins = [o.strip() for o in settings.allow_origins if o and o.strip()]
    if not origins or "*" in origins:
        raise RuntimeError("ALLOW_ORIGINS must be an explicit allowlist (no '*') in production")


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        # Routing-level failures (404/405) and any explicit HTTPException.
        detail = exc.detail
        message = str(detail.get("error") or detail.get("message")) if isinstance(detail, dict) else str(detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=build_error_payload(
                code=error_code_for_http_status(exc.status_code),
                message=message,
                details=detail if isinstance(detail, dict) else None,
                request_id=_request_id(request),
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=build_error_payload(
                code=ErrorCode.SERVICE_ERROR,
                message="Internal server error",
                request_id=_request_id(request),
            ),
        )


def create_app() -> FastAPI:
    settings = get_settings()
    _check_cors(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001
        silence_noisy_loggers()
        if settings.log_to_file:
            path = setup_file_logging(
                log_file_path=settings.log_file_path, level=parse_level(settings.log_level)
            )
            log_event(logger, "file_logging_enabled", path=str(path))
        yield

    app = FastAPI(title="Essay Grader", version="1.0.0", lifespan=lifespan)

    @app.middleware("http")
    async def _request_id_middleware(request: Request, call_next):
        request_id = get_request_id_from_headers(request.headers) or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    _install_error_handlers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )
    app.include_router(routes.router, prefix="/api/v1")
    return app


app = create_app()
