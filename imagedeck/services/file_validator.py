"""
File validation utilities for image uploads (entity and theme images).

Checks:
- File extension
- Magic bytes matching the extension
- File size
"""

import logging
from pathlib import Path
from typing import Dict, List, Set, Tuple

from imagedeck.core.exceptions import BadRequestError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS: Set[str] = {"jpg", "jpeg", "png", "webp", "gif"}

# Format: { extension: [(magic_bytes, offset, description)] }
FILE_SIGNATURES: Dict[str, List[Tuple[bytes, int, str]]] = {
    "jpg": [(b"\xff\xd8\xff", 0, "JPEG image")],
    "jpeg": [(b"\xff\xd8\xff", 0, "JPEG image")],
    "png": [(b"\x89PNG\r\n\x1a\n", 0, "PNG image")],
    "webp": [(b"WEBP", 8, "WebP image")],
    "gif": [
        (b"GIF87a", 0, "GIF image (87a)"),
        (b"GIF89a", 0, "GIF image (89a)"),
    ],
}


class FileValidationError(BadRequestError):
    """Raised when an upload fails validation."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR"):
        self.error_code = error_code
        super().__init__(message)


def validate_file_extension(filename: str, allowed_extensions: Set[str]) -> str:
    """
    Validate and return the file extension.

    Args:
        filename: Original filename
        allowed_extensions: Set of allowed extensions (without dot)

    Returns:
        Lowercase file extension without dot

    Raises:
        FileValidationError: If extension is missing or not allowed
    """
    if not filename:
        raise FileValidationError("Filename is empty", error_code="EMPTY_FILENAME")

    extension = Path(filename).suffix.lower().lstrip(".")
    if extension not in allowed_extensions:
        raise FileValidationError(
            f"Unsupported file type: {extension or '(none)'}",
            error_code="UNSUPPORTED_TYPE",
        )
    return extension


def validate_magic_bytes(content: bytes, file_type: str) -> bool:
    """True if `content` starts with a known signature for `file_type`."""
    for magic_bytes, offset, description in FILE_SIGNATURES.get(file_type, []):
        if content[offset:offset + len(magic_bytes)] == magic_bytes:
            logger.debug(f"File matched signature: {description}")
            return True
    return False


def validate_file_size(content: bytes, max_size_mb: int) -> bool:
    """
    Validate file size.

    Raises:
        FileValidationError: If the file is empty or larger than max_size_mb
    """
    if not content:
        raise FileValidationError("Empty file", error_code="EMPTY_FILE")
    if len(content) > max_size_mb * 1024 * 1024:
        raise FileValidationError(
            f"File too large (max {max_size_mb}MB)",
            error_code="FILE_TOO_LARGE",
        )
    return True


def validate_uploaded_image(filename: str, content: bytes, max_size_mb: int) -> str:
    """
    Validate an uploaded image.

    Returns:
        Validated file extension ("jpeg" is reported as "jpg")
    """
    file_type = validate_file_extension(filename, ALLOWED_IMAGE_EXTENSIONS)
    validate_file_size(content, max_size_mb)

    if not validate_magic_bytes(content, file_type):
        logger.warning(f"File {filename} has invalid magic bytes for type {file_type}")
        raise FileValidationError(
            f"File content does not match its extension ({file_type})",
            error_code="INVALID_CONTENT",
        )

    return "jpg" if file_type == "jpeg" else file_type
