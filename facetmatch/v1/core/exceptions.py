import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from facetmatch.config.logging import get_logger

logger = get_logger(__name__)


class FacetMatchException(Exception):
    """Base exception for FacetMatch.

    Every subclass carries a machine-readable ``kind`` and a ``retryable``
    flag that the retry predicate consults.
    """

    kind: str = "INTERNAL"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(FacetMatchException):
    """Raised when caller input validation fails."""

    kind = "VALIDATION"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class NotFoundError(FacetMatchException):
    """Raised when a local resource (item, job) is not found."""

    kind = "NOT_FOUND"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


# Catalog fetch errors


class FetchError(FacetMatchException):
    """Base for catalog API failures."""

    kind = "FETCH"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, details)


class FetchNotFound(FetchError):
    kind = "NOT_FOUND"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class FetchRateLimited(FetchError):
    kind = "RATE_LIMITED"
    retryable = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS, details)


class FetchNetworkError(FetchError):
    kind = "NETWORK"
    retryable = True


class FetchTimeout(FetchError):
    kind = "TIMEOUT"
    retryable = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_504_GATEWAY_TIMEOUT, details)


class FetchMalformed(FetchError):
    kind = "MALFORMED"


class SecondaryListingError(FetchError):
    """The catalog entry is a DLC, demo or other non-primary listing."""

    kind = "SECONDARY_LISTING"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


# Inference errors


class InferenceError(FacetMatchException):
    """Base for external model call failures."""

    kind = "INFERENCE"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, details)


class InferenceRateLimited(InferenceError):
    kind = "RATE_LIMITED"
    retryable = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS, details)


class InferenceServerError(InferenceError):
    kind = "SERVER_ERROR"
    retryable = True


class InferenceTimeout(InferenceError):
    kind = "TIMEOUT"
    retryable = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_504_GATEWAY_TIMEOUT, details)


class EmptyResponseError(InferenceError):
    kind = "EMPTY_RESPONSE"


# Persistence errors


class PersistenceError(FacetMatchException):
    """Base for storage failures."""

    kind = "PERSISTENCE"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


class PersistenceConnectionError(PersistenceError):
    kind = "CONNECTION"
    retryable = True


class PersistenceConflict(PersistenceError):
    kind = "CONFLICT"
    retryable = True


class PersistenceUnavailable(PersistenceError):
    kind = "SERVICE_UNAVAILABLE"
    retryable = True


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
    kind: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    error: dict[str, Any] = {
        "message": message,
        "code": status_code,
        "details": details or {},
    }
    if kind:
        error["kind"] = kind
    return {
        "ok": False,
        "error": error,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def facetmatch_exception_handler(
    request: Request, exc: FacetMatchException
) -> JSONResponse:
    """Handle FacetMatch specific exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Application exception",
        exception=exc.__class__.__name__,
        kind=exc.kind,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
            kind=exc.kind,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        from facetmatch.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response
