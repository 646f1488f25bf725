"""
Image post-processing for generated slide images.

normalize() turns provider output into the stored format: a 16:9,
progressive JPEG no larger than 3840x2160.
"""
import io
import logging
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from imagedeck.core.exceptions import ImageProcessingError

logger = logging.getLogger(__name__)

TARGET_ASPECT_RATIO = 16 / 9
ASPECT_RATIO_TOLERANCE = 0.01
MIN_WIDTH, MIN_HEIGHT = 1280, 720
MAX_WIDTH, MAX_HEIGHT = 3840, 2160
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
JPEG_QUALITY = 90


def calculate_crop_box(width: int, height: int) -> Tuple[int, int, int, int]:
    """Centered (left, top, right, bottom) box with a 16:9 aspect ratio."""
    if width / height > TARGET_ASPECT_RATIO:
        crop_width = round(height * TARGET_ASPECT_RATIO)
        left = round((width - crop_width) / 2)
        return left, 0, left + crop_width, height

    crop_height = round(width / TARGET_ASPECT_RATIO)
    top = round((height - crop_height) / 2)
    return 0, top, width, top + crop_height


class ImageProcessor:
    """Validates and normalizes images with Pillow."""

    def normalize(self, image_bytes: bytes) -> bytes:
        """
        Validate and convert an image to the stored slide format.

        Args:
            image_bytes: Raw image in any format Pillow can read

        Returns:
            JPEG bytes (16:9, at most 3840x2160, quality 90, progressive)

        Raises:
            ImageProcessingError: Too large, too small, or unreadable
        """
        if len(image_bytes) > MAX_FILE_SIZE:
            raise ImageProcessingError(
                f"Image file size exceeds maximum of {MAX_FILE_SIZE // (1024 * 1024)} MB"
            )

        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageProcessingError(f"Image processing failed: {e}") from e

        width, height = image.size
        if width < MIN_WIDTH or height < MIN_HEIGHT:
            raise ImageProcessingError(
                f"Image dimensions too small ({width}x{height}). Minimum: {MIN_WIDTH}x{MIN_HEIGHT}"
            )

        if abs(width / height - TARGET_ASPECT_RATIO) > ASPECT_RATIO_TOLERANCE:
            box = calculate_crop_box(width, height)
            logger.debug(f"Cropping {width}x{height} image to 16:9 box {box}")
            image = image.crop(box)

        if image.width > MAX_WIDTH or image.height > MAX_HEIGHT:
            image.thumbnail((MAX_WIDTH, MAX_HEIGHT), Image.Resampling.LANCZOS)

        if image.mode != "RGB":
            image = image.convert("RGB")

        output = io.BytesIO()
        image.save(output, format="JPEG", quality=JPEG_QUALITY, progressive=True, optimize=True)
        return output.getvalue()
