"""Centralized error handling for the application"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback

logger = logging.getLogger(__name__)


class InvalidRequestError(Exception):
    """Raised when a request is missing required input (question, contact id, ...)"""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(Exception):
    """Raised when a contact, session or other record does not exist"""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class CompletionAPIError(Exception):
    """Custom exception for completion API errors (non-2xx or network failure)"""
    def __init__(self, message: str, status_code: int = None, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class DatabaseError(Exception):
    """Custom exception for database errors"""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class RateLimitExceeded(Exception):
    """Raised when a caller exceeds the request budget of an endpoint"""
    def __init__(self, endpoint: str, retry_after: int):
        self.endpoint = endpoint
        self.retry_after = retry_after
        self.message = f"Rate limit exceeded for {endpoint}"
        super().__init__(self.message)


async def invalid_request_error_handler(request: Request, exc: InvalidRequestError):
    """Handle missing or malformed input"""
    logger.warning(
        f"Invalid request: {exc.message}",
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "invalid_request",
            "message": exc.message,
            "details": exc.details
        }
    )


async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle missing records"""
    logger.warning(
        f"Not found: {exc.message}",
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "not_found",
            "message": exc.message
        }
    )


async def completion_api_error_handler(request: Request, exc: CompletionAPIError):
    """Handle completion API errors"""
    logger.error(
        f"Completion API Error: {exc.message}",
        extra={
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path
        }
    )

    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={
            "error": "completion_api_error",
            "message": exc.message,
            "upstream_status": exc.status_code,
            "details": exc.details
        }
    )


async def database_error_handler(request: Request, exc: DatabaseError):
    """Handle database errors"""
    logger.error(
        f"Database Error: {exc.message}",
        extra={
            "details": exc.details,
            "path": request.url.path
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "database_error",
            "message": "Database operation failed",
            "details": exc.details
        }
    )


async def rate_limit_error_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit rejections"""
    logger.warning(
        f"Rate limit exceeded: {exc.endpoint}",
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        headers={"Retry-After": str(exc.retry_after)},
        content={
            "error": "rate_limit_exceeded",
            "message": exc.message,
            "retryAfter": exc.retry_after
        }
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors"""
    logger.warning(
        f"Validation Error: {exc.errors()}",
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "message": "Invalid request data",
            "details": exc.errors()
        }
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        f"HTTP Exception: {exc.detail}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "message": exc.detail
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.error(
        f"Unexpected Error: {str(exc)}",
        extra={
            "path": request.url.path,
            "traceback": traceback.format_exc()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred"
        }
    )


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app"""
    app.add_exception_handler(InvalidRequestError, invalid_request_error_handler)
    app.add_exception_handler(NotFoundError, not_found_error_handler)
    app.add_exception_handler(CompletionAPIError, completion_api_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
