"""
Helpers shared by the routers: upload reading and image file responses.
"""
from pathlib import Path

from fastapi import UploadFile
from fastapi.responses import FileResponse

from imagedeck.core.config import settings
from imagedeck.core.exceptions import NotFoundError
from imagedeck.services.file_validator import validate_uploaded_image
from imagedeck.services.image_client import guess_mime_type


async def read_image_upload(file: UploadFile) -> tuple[bytes, str]:
    """
    Read and validate an uploaded image.

    Returns:
        Tuple of (content, extension)
    """
    content = await file.read()
    extension = validate_uploaded_image(file.filename or "", content, settings.MAX_UPLOAD_SIZE_MB)
    return content, extension


def image_file_response(path: Path) -> FileResponse:
    if not path.is_file():
        raise NotFoundError(f"Image file not found: {path.name}")
    return FileResponse(path=path, media_type=guess_mime_type(path.name), filename=path.name)
