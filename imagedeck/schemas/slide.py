from typing import List, Optional

from pydantic import BaseModel, Field


class SlideCreate(BaseModel):
    speaker_notes: str = Field("", max_length=5000)
    image_description: str = Field("", max_length=2000)
    override_visual_style: Optional[str] = Field(None, max_length=1000)
    no_images: bool = False
    scene_start: bool = False
    scene_visual_style: Optional[str] = Field(None, max_length=1000)


class SlideUpdate(BaseModel):
    """Partial update; only fields that are sent are applied."""

    speaker_notes: Optional[str] = Field(None, max_length=5000)
    image_description: Optional[str] = Field(None, max_length=2000)
    override_visual_style: Optional[str] = Field(None, max_length=1000)
    no_images: Optional[bool] = None
    scene_start: Optional[bool] = None
    scene_visual_style: Optional[str] = Field(None, max_length=1000)


class SlideReorder(BaseModel):
    slide_ids: List[str] = Field(..., description="Every slide id of the deck, in the new order")


class EffectiveStyleOut(BaseModel):
    slide_id: str
    visual_style: str


class DescriptionOut(BaseModel):
    slide_id: str
    description: str
