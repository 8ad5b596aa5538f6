"""
RFC-7807 compliant error handling for the PAL portal backend.
Provides structured error responses with trace correlation.
"""
import traceback
from typing import Any, Dict, List, Optional
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.obs.logging import get_logger, log_error
from app.obs.tracing import get_current_trace_id

logger = get_logger(__name__)


class ProblemDetail:
    """RFC-7807 Problem Details for HTTP APIs."""

    def __init__(
        self,
        type: str,
        title: str,
        detail: str,
        status: int,
        instance: Optional[str] = None,
        trace_id: Optional[str] = None,
        **kwargs
    ):
        self.type = type
        self.title = title
        self.detail = detail
        self.status = status
        self.instance = instance
        self.trace_id = trace_id
        self.extensions = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result = {
            "type": self.type,
            "title": self.title,
            "detail": self.detail,
            "status": self.status,
        }

        if self.instance:
            result["instance"] = self.instance

        if self.trace_id:
            result["trace_id"] = self.trace_id

        result.update(self.extensions)

        return result


# Custom exception classes for specific error types
class PortalError(Exception):
    """Base class for errors that map onto a problem response."""

    def __init__(self, message: str, **extensions):
        super().__init__(message)
        self.message = message
        self.extensions = extensions


class AuthenticationError(PortalError):
    """Missing or invalid bearer credential."""


class AuthorizationError(PortalError):
    """Authenticated caller is not an admin."""


class ValidationFailed(PortalError):
    """One or more input rules were violated; every violation is listed."""

    def __init__(self, errors: List[str], message: str = "Validation failed"):
        super().__init__(message, errors=list(errors))
        self.errors = list(errors)


class SecurityCheckFailed(PortalError):
    """CAPTCHA token missing or rejected."""


class BlacklistedError(PortalError):
    """Client identifier is on the temporary blacklist."""


class RateLimitExceeded(PortalError):
    def __init__(self, retry_after: int, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, retry_after=retry_after)
        self.retry_after = retry_after


class DuplicateRequestError(PortalError):
    """Same (course, email) submitted inside the duplicate window."""


class NotFoundError(PortalError):
    pass


class StorageError(PortalError):
    """The storage collaborator (database or object store) failed."""


class ExternalServiceError(PortalError):
    """Raised when external service calls fail."""


class ConfigurationError(PortalError):
    """A collaborator required by the request is not configured."""


# Error type mappings for consistent error responses
ERROR_TYPE_MAPPINGS = {
    AuthenticationError: {
        "type": "https://tools.ietf.org/html/rfc7235#section-3.1",
        "title": "Unauthorized",
        "status": 401,
    },
    AuthorizationError: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.5.3",
        "title": "Forbidden",
        "status": 403,
    },
    ValidationFailed: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.5.1",
        "title": "Validation Error",
        "status": 400,
    },
    SecurityCheckFailed: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.5.1",
        "title": "Security Check Failed",
        "status": 400,
    },
    BlacklistedError: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.5.3",
        "title": "Security Check Failed",
        "status": 403,
    },
    RateLimitExceeded: {
        "type": "https://tools.ietf.org/html/rfc6585#section-4",
        "title": "Too Many Requests",
        "status": 429,
    },
    DuplicateRequestError: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.5.8",
        "title": "Duplicate Request",
        "status": 409,
    },
    NotFoundError: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.5.4",
        "title": "Not Found",
        "status": 404,
    },
    StorageError: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.6.1",
        "title": "Storage Error",
        "status": 500,
    },
    ExternalServiceError: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.6.3",
        "title": "External Service Error",
        "status": 502,
    },
    ConfigurationError: {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.6.1",
        "title": "Server Configuration Error",
        "status": 500,
    },
}


def mapping_for(exc: PortalError) -> Dict[str, Any]:
    for cls in type(exc).__mro__:
        if cls in ERROR_TYPE_MAPPINGS:
            return ERROR_TYPE_MAPPINGS[cls]
    return {
        "type": "https://tools.ietf.org/html/rfc7231#section-6.6.1",
        "title": "Internal Server Error",
        "status": 500,
    }


def create_problem_detail(
    error: Exception,
    request: Request,
    status_code: int = 500,
    error_type: str = "about:blank",
    title: str = "Internal Server Error",
    detail: Optional[str] = None
) -> ProblemDetail:
    """Create a ProblemDetail from an exception."""
    trace_id = getattr(request.state, 'trace_id', None) or get_current_trace_id()

    if detail is None:
        detail = str(error)

    return ProblemDetail(
        type=error_type,
        title=title,
        detail=detail,
        status=status_code,
        instance=request.url.path,
        trace_id=trace_id,
    )


def _problem_headers(problem: ProblemDetail) -> Dict[str, str]:
    headers = {}
    if problem.trace_id:
        headers["X-Trace-Id"] = problem.trace_id
    if "retry_after" in problem.extensions:
        headers["Retry-After"] = str(problem.extensions["retry_after"])
    return headers


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Render domain errors using ERROR_TYPE_MAPPINGS."""
    mapping = mapping_for(exc)
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=mapping["status"],
        error_type=mapping["type"],
        title=mapping["title"],
        detail=exc.message,
    )
    problem.extensions.update(exc.extensions)

    extra = {
        'trace_id': problem.trace_id,
        'route': request.url.path,
        'method': request.method,
        'status': mapping["status"],
        'error_type': type(exc).__name__,
        'user_id': getattr(request.state, 'user_id', None),
    }
    if mapping["status"] >= 500:
        logger.error(f"Request failed: {exc.message}", extra=extra)
    else:
        logger.warning(f"Request rejected: {exc.message}", extra=extra)

    return JSONResponse(
        status_code=mapping["status"],
        content=jsonable_encoder(problem.to_dict()),
        headers=_problem_headers(problem),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle FastAPI and Starlette HTTP exceptions with RFC-7807 format."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=exc.status_code,
        error_type="https://tools.ietf.org/html/rfc7231#section-6.5",
        title="HTTP Error",
        detail=exc.detail
    )

    logger.warning(
        f"HTTP error: {exc.detail}",
        extra={
            'trace_id': problem.trace_id,
            'route': request.url.path,
            'method': request.method,
            'status': exc.status_code,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(problem.to_dict()),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with RFC-7807 format."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=422,
        error_type="https://tools.ietf.org/html/rfc4918#section-11.2",
        title="Validation Error",
        detail="Request validation failed"
    )

    problem.extensions["validation_errors"] = exc.errors()

    logger.warning(
        "Request validation failed",
        extra={
            'trace_id': problem.trace_id,
            'route': request.url.path,
            'method': request.method,
            'status': 422,
        },
    )

    return JSONResponse(
        status_code=422,
        content=jsonable_encoder(problem.to_dict())
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with RFC-7807 format."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=500,
        error_type="https://tools.ietf.org/html/rfc7231#section-6.6.1",
        title="Internal Server Error",
        detail="An unexpected error occurred"
    )

    log_error(
        logger=logger,
        error=exc,
        trace_id=problem.trace_id,
        user_id=getattr(request.state, 'user_id', None),
        route=request.url.path,
        method=request.method,
        status=500,
        stack_trace=traceback.format_exc(),
    )

    return JSONResponse(
        status_code=500,
        content=jsonable_encoder(problem.to_dict())
    )


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(PortalError, portal_error_handler)

    # HTTPException subclasses StarletteHTTPException, one handler covers both
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # General exceptions (catch-all)
    app.add_exception_handler(Exception, general_exception_handler)

    return app
