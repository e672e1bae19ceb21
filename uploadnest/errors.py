import enum
from typing import Optional

class ErrorCode(str, enum.Enum):
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    ACCESS_UNAUTHORIZED = "ACCESS_UNAUTHORIZED"
    AUTH_TOKEN_NOT_FOUND = "AUTH_TOKEN_NOT_FOUND"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_INVALID_API_KEY = "AUTH_INVALID_API_KEY"
    AUTH_USER_NOT_FOUND = "AUTH_USER_NOT_FOUND"
    AUTH_EMAIL_ALREADY_EXISTS = "AUTH_EMAIL_ALREADY_EXISTS"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INSUFFICIENT_STORAGE = "INSUFFICIENT_STORAGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

class AppError(Exception):
    """Base class for errors that map onto an HTTP error response."""

    status_code: int = 500
    error_code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR
    default_message: str = "Internal Server Error"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "message": self.message,
            "errorCode": self.error_code.value,
            "success": False,
        }

class BadRequestException(AppError):
    status_code = 400
    error_code = ErrorCode.BAD_REQUEST
    default_message = "Bad Request"

class InvalidInputError(AppError):
    status_code = 400
    error_code = ErrorCode.INVALID_INPUT
    default_message = "Invalid input"

class UnauthorizedException(AppError):
    status_code = 401
    error_code = ErrorCode.ACCESS_UNAUTHORIZED
    default_message = "Unauthorized access"

class NotFoundError(AppError):
    status_code = 404
    error_code = ErrorCode.RESOURCE_NOT_FOUND
    default_message = "Resource not found"

class ConflictError(AppError):
    status_code = 409
    error_code = ErrorCode.BAD_REQUEST
    default_message = "Conflict"

class InsufficientStorageError(AppError):
    status_code = 400
    error_code = ErrorCode.INSUFFICIENT_STORAGE

    def __init__(self, message: str, shortfall: int):
        super().__init__(message)
        self.shortfall = shortfall

class InternalServerError(AppError):
    pass
