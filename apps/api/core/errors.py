"""RFC 7807 Problem Details for the ingestion API.

Every failure leaves the API as::

    {
        "type": "about:blank",
        "title": "Service Unavailable",
        "status": 503,
        "detail": "Message read permission not granted",
        "instance": "/api/v1/ingest/sms/catchup"
    }

``IngestionError`` from the SMS library is translated here, so routes can
let source and gateway failures propagate.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from packages.sms_ingestion.errors import IngestionError, PersistenceFailed, SourceUnavailable

logger = structlog.get_logger()


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str, status_code: int = 500, error_type: str = "about:blank"):
        self.detail = detail
        self.status_code = status_code
        self.error_type = error_type
        super().__init__(detail)


class NotFoundError(AppError):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail=detail, status_code=404)


class ValidationError(AppError):
    def __init__(self, detail: str = "Validation failed"):
        super().__init__(detail=detail, status_code=422)


class AuthenticationError(AppError):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(detail=detail, status_code=401)


class ServiceUnavailableError(AppError):
    """A message source or the remote store cannot be reached."""

    def __init__(self, detail: str = "Service unavailable"):
        super().__init__(detail=detail, status_code=503)


_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def problem_response(
    request: Request,
    status: int,
    detail: str,
    error_type: str = "about:blank",
) -> JSONResponse:
    """Build the Problem Details response for ``request``."""
    body = {
        "type": error_type,
        "title": _TITLES.get(status, "Error"),
        "status": status,
        "detail": detail,
        "instance": request.url.path,
    }
    request_id = getattr(request.state, "request_id", "")
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=status, content=body)


def ingestion_status(exc: IngestionError) -> int:
    """Unreadable sources are 503, remote store failures 502."""
    if isinstance(exc, SourceUnavailable):
        return 503
    if isinstance(exc, PersistenceFailed):
        return 502
    return 500


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return problem_response(request, exc.status_code, exc.detail, exc.error_type)

    @app.exception_handler(IngestionError)
    async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
        status = ingestion_status(exc)
        logger.warning("ingestion_request_failed", path=request.url.path, status=status, error=exc.detail)
        return problem_response(request, status, exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return problem_response(request, exc.status_code, detail)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_request_error", path=request.url.path, error=str(exc))
        return problem_response(request, 500, "An unexpected error occurred")
