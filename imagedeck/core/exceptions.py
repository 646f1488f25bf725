"""
Custom exceptions and global exception handlers.
"""
from dataclasses import dataclass
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import logging

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = None,
    ):
        self.message = message
        self.status_code = status_code
        self.detail = detail or message
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class BadRequestError(AppException):
    """Invalid request, rejected before any I/O or provider call."""

    def __init__(self, message: str = "Invalid request"):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class PromptValidationError(BadRequestError):
    """Assembled prompt is empty or too long."""


class ConflictError(AppException):
    """Resource already exists."""

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message, status.HTTP_409_CONFLICT)


class CorruptRecordError(AppException):
    """A record on disk could not be parsed. Never auto-repaired."""

    def __init__(self, message: str = "Stored record is corrupt"):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ImageProcessingError(AppException):
    """Generated or uploaded image failed validation/normalization."""

    def __init__(self, message: str = "Image processing failed"):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)


class ProviderError(AppException):
    """Image generation provider failure."""

    def __init__(
        self,
        message: str = "Image provider request failed",
        status_code: int = status.HTTP_502_BAD_GATEWAY,
    ):
        super().__init__(message, status_code)


class TransientProviderError(ProviderError):
    """Rate limit, timeout or network failure. Safe to retry."""

    def __init__(self, message: str = "Image provider is temporarily unavailable"):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class TerminalProviderError(ProviderError):
    """Failure that cannot succeed on retry."""


class InvalidCredentialsError(TerminalProviderError):
    """Provider rejected the configured API key."""

    def __init__(self, message: str = "API key invalid"):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class ContentPolicyError(TerminalProviderError):
    """Provider refused the prompt on content grounds."""

    def __init__(self, message: str = "Content policy violation"):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)


@dataclass
class ConsistencyDebt:
    """
    Leftover state from a failed multi-step write (e.g. an orphaned slide
    directory). Logged, never raised.
    """

    deck_id: str
    path: str
    reason: str

    def log(self) -> None:
        logger.warning(
            f"Consistency debt in deck {self.deck_id}: {self.reason} ({self.path})"
        )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "message": exc.message},
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle validation errors with user-friendly messages."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        msg = error["msg"]
        errors.append(f"{field}: {msg}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Request validation failed",
            "errors": errors,
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error. Please try again later.",
        },
    )
