"""
Deck and Entity records, persisted as deck-{id}/deck.json and
global-entities/entities.json.
"""
from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field

# Alphanumeric with internal hyphens, used verbatim as the @Name token
ENTITY_NAME_PATTERN = r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?$"
ENTITY_NAME_MAX_LENGTH = 50
MAX_THEME_IMAGES = 10


class Entity(BaseModel):
    """A named, image-backed reference usable as @Name in prompts."""

    name: str
    images: List[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name.replace("-", " ")


class Deck(BaseModel):
    """
    Deck metadata.

    The `slides` list is the authoritative slide order; every id in it has a
    matching {slideId}/slide.json under the deck directory.
    """

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    visual_style: str = ""
    entities: Dict[str, Entity] = Field(default_factory=dict)
    theme_images: List[str] = Field(default_factory=list)
    slides: List[str] = Field(default_factory=list)
