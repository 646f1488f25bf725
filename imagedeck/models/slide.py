"""
Slide and GeneratedImage records, persisted as deck-{id}/{slideId}/slide.json.
"""
from datetime import datetime
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, Field

ImageService = Literal["gemini-flash", "gemini-pro", "openai-gpt-image"]
IMAGE_SERVICES = get_args(ImageService)

SLIDE_ID_PREFIX = "slide-"
IMAGE_FILENAME_PREFIX = "image-"


class GeneratedImage(BaseModel):
    """Metadata for one generated variant. The JPEG sits next to slide.json."""

    id: str
    filename: str
    created_at: datetime
    service: str
    prompt: str
    # Set only for tweak/edit results
    source_image_id: Optional[str] = None
    is_pinned: bool = False


class Slide(BaseModel):
    """
    A single slide.

    Invariants maintained by the store:
    - `order` values across a deck are a gap-free permutation of 0..n-1
    - `scene_start` implies `no_images`
    - at most one generated image is pinned
    """

    id: str
    order: int = Field(..., ge=0)
    speaker_notes: str = ""
    image_description: str = ""
    override_visual_style: Optional[str] = None
    no_images: bool = False
    scene_start: bool = False
    scene_visual_style: Optional[str] = None
    generated_images: List[GeneratedImage] = Field(default_factory=list)

    @property
    def pinned_image(self) -> Optional[GeneratedImage]:
        for image in self.generated_images:
            if image.is_pinned:
                return image
        return None

    def find_image(self, image_id: str) -> Optional[GeneratedImage]:
        for image in self.generated_images:
            if image.id == image_id:
                return image
        return None
