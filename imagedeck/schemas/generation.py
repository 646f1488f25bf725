"""
Request/response schemas for image generation and bulk jobs.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from imagedeck.models.slide import GeneratedImage, ImageService
from imagedeck.services.generation import GenerationResult


class GenerateRequest(BaseModel):
    count: Optional[int] = Field(None, ge=1, le=10, description="Variants (default from settings)")
    service: Optional[ImageService] = Field(None, description="Image service (default from settings)")


class TweakRequest(BaseModel):
    image_id: str
    prompt: str = Field(..., min_length=1, max_length=500)
    count: Optional[int] = Field(None, ge=1, le=10)


class FailedGenerationOut(BaseModel):
    index: int
    error: str


class GenerationOut(BaseModel):
    images: List[GeneratedImage]
    failed: List[FailedGenerationOut] = Field(default_factory=list)
    unknown_entities: List[str] = Field(default_factory=list)
    warning: Optional[str] = None

    @classmethod
    def from_result(cls, result: GenerationResult) -> "GenerationOut":
        return cls(
            images=result.images,
            failed=[FailedGenerationOut(index=f.index, error=f.error) for f in result.failed],
            unknown_entities=result.unknown_entities,
            warning=result.warning,
        )


class JobStartOut(BaseModel):
    job_id: str
    status: str
    total: int
    message: Optional[str] = None
