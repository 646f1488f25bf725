from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from imagedeck.models.deck import Deck
from imagedeck.models.slide import Slide


class DeckCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    visual_style: str = Field("", max_length=1000)


class DeckUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    visual_style: Optional[str] = Field(None, max_length=1000)


class DeckFromText(DeckCreate):
    """One slide per non-empty line of `text`."""

    text: str = Field(..., min_length=1, description="Slide descriptions, one per line")


class DeckSummary(BaseModel):
    """Deck list entry."""

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    visual_style: str
    slide_count: int
    entity_count: int
    theme_image_count: int

    @classmethod
    def from_deck(cls, deck: Deck) -> "DeckSummary":
        return cls(
            id=deck.id,
            name=deck.name,
            created_at=deck.created_at,
            updated_at=deck.updated_at,
            visual_style=deck.visual_style,
            slide_count=len(deck.slides),
            entity_count=len(deck.entities),
            theme_image_count=len(deck.theme_images),
        )


class DeckWithSlides(BaseModel):
    deck: Deck
    slides: List[Slide]
    # @names used in the text that match no deck or global entity
    unknown_entities: List[str] = Field(default_factory=list)


class ThemeImageOut(BaseModel):
    deck: Deck
    filename: str


class ReconcileOut(BaseModel):
    removed: List[str]
