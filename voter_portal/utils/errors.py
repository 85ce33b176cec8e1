from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from pydantic import ValidationError
import traceback
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class DatabaseError(Exception):
    """Custom exception for database-related errors."""

    def __init__(self, message: str, error_code: str = "DB_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class PoolClosedError(DatabaseError):
    """Raised when the connection pool is used after shutdown."""

    def __init__(
        self,
        message: str = "Database connection pool is closed",
        error_code: str = "POOL_CLOSED",
    ):
        super().__init__(message, error_code)


class BusinessLogicError(Exception):
    """Custom exception for business logic errors."""

    def __init__(self, message: str, error_code: str = "BLOC_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class DataValidationError(BusinessLogicError):
    """Malformed or missing fields; carries one entry per offending field."""

    def __init__(
        self,
        errors: List[Dict[str, str]],
        message: str = "Validation failed",
        error_code: str = "VALIDATION_ERROR",
    ):
        super().__init__(message, error_code)
        self.errors = errors

    @property
    def fields(self) -> List[str]:
        return [error["field"] for error in self.errors]


class DuplicateSubmissionError(BusinessLogicError):
    """Mobile or Aadhaar number already used by a live submission."""

    def __init__(
        self,
        message: str = "A submission with this mobile or Aadhaar number already exists",
        error_code: str = "DUPLICATE_SUBMISSION",
        field: Optional[str] = None,
    ):
        super().__init__(message, error_code)
        self.field = field


class UserAlreadyExistsError(BusinessLogicError):
    def __init__(
        self,
        message: str = "User with this email already exists",
        error_code: str = "USER_ALREADY_EXISTS",
    ):
        super().__init__(message, error_code)


class NoFieldsToUpdateError(BusinessLogicError):
    def __init__(
        self,
        message: str = "No fields to update",
        error_code: str = "NO_FIELDS_TO_UPDATE",
    ):
        super().__init__(message, error_code)


class AuthenticationError(Exception):
    """Custom exception for authentication errors."""

    def __init__(
        self, message: str = "Authentication failed", error_code: str = "AUTH_ERROR"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class AuthorizationError(Exception):
    """Custom exception for authorization errors."""

    def __init__(self, message: str = "Access denied", error_code: str = "AUTHZ_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotFoundError(Exception):
    """Custom exception for resource not found errors."""

    def __init__(
        self, message: str = "Resource not found", error_code: str = "NOT_FOUND"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotificationError(Exception):
    """External messaging failure. Logged by callers, never fatal."""

    def __init__(self, message: str, error_code: str = "NOTIFICATION_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class FileStorageError(Exception):
    def __init__(self, message: str, error_code: str = "FILE_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class RateLimitExceededError(Exception):
    """Too many requests from one client inside the current window."""

    def __init__(
        self,
        limit: int,
        retry_after: int,
        reset_at: int,
        message: str = "Too many requests, please try again later",
        error_code: str = "RATE_LIMIT_EXCEEDED",
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.limit = limit
        self.retry_after = retry_after
        self.reset_at = reset_at

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(self.reset_at),
        }


def _format_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    formatted_errors = []
    for error in errors:
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        formatted_errors.append(
            {
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            }
        )
    return formatted_errors


def setup_error_handlers(app: FastAPI):
    """Setup custom error handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
        response = ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    """
    RequestValidationError is a sub-class of Pydantic's ValidationError.
    """

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.error(f"Request Validation Error: {exc.errors()}")

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=_format_validation_errors(exc.errors()),
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(ValidationError)
    async def pydantic_validation_exception_handler(
        request: Request, exc: ValidationError
    ):
        logger.error(f"Pydantic Validation Error: {exc.errors()}")

        return ResponseBuilder.error(
            request=request,
            message="Data validation failed",
            errors=_format_validation_errors(exc.errors()),
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(DataValidationError)
    async def data_validation_exception_handler(
        request: Request, exc: DataValidationError
    ):
        logger.warning(f"Data Validation Error: {exc.fields}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            errors=exc.errors,
            error_code=exc.error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            meta={"error_type": "VALIDATION_ERROR"},
        )

    @app.exception_handler(DuplicateSubmissionError)
    async def duplicate_submission_exception_handler(
        request: Request, exc: DuplicateSubmissionError
    ):
        logger.warning(f"Duplicate Submission: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_409_CONFLICT,
            meta={"error_type": "CONFLICT", "field": exc.field},
        )

    @app.exception_handler(UserAlreadyExistsError)
    async def user_exists_exception_handler(
        request: Request, exc: UserAlreadyExistsError
    ):
        logger.warning(f"User Conflict: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_409_CONFLICT,
            meta={"error_type": "CONFLICT"},
        )

    @app.exception_handler(PoolClosedError)
    async def pool_closed_exception_handler(request: Request, exc: PoolClosedError):
        logger.error(f"Pool Closed: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message="Service is shutting down",
            error_code=exc.error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            meta={"error_type": "DATABASE_ERROR"},
        )

    @app.exception_handler(DatabaseError)
    async def database_exception_handler(request: Request, exc: DatabaseError):
        logger.error(f"Database Error: {exc.message}")

        # Don't expose internal database errors to users
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code=exc.error_code,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "DATABASE_ERROR"},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(BusinessLogicError)
    async def business_logic_exception_handler(
        request: Request, exc: BusinessLogicError
    ):
        logger.error(f"Business Logic Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            meta={"error_type": "BUSINESS_ERROR"},
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_exception_handler(
        request: Request, exc: AuthenticationError
    ):
        logger.error(f"Authentication Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_401_UNAUTHORIZED,
            meta={"error_type": "AUTHENTICATION_ERROR"},
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_exception_handler(
        request: Request, exc: AuthorizationError
    ):
        logger.error(f"Authorization Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_403_FORBIDDEN,
            meta={"error_type": "AUTHORIZATION_ERROR"},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_exception_handler(request: Request, exc: NotFoundError):
        logger.error(f"Not Found Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            meta={"error_type": "NOT_FOUND_ERROR"},
        )

    @app.exception_handler(FileStorageError)
    async def file_storage_exception_handler(request: Request, exc: FileStorageError):
        logger.error(f"File Storage Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message="File storage is unavailable",
            error_code=exc.error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            meta={"error_type": "FILE_STORAGE_ERROR"},
        )

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_exception_handler(
        request: Request, exc: RateLimitExceededError
    ):
        logger.warning(f"Rate limit exceeded for {request.url.path}")

        response = ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            meta={"error_type": "RATE_LIMIT", "retry_after": exc.retry_after},
        )
        response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled Exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
