"""
Slide endpoints: CRUD, reordering, visual style resolution and description drafts.
"""
from typing import List

from fastapi import APIRouter, Depends, status

from imagedeck.core.deps import get_describer, get_store
from imagedeck.core.exceptions import BadRequestError
from imagedeck.models.deck import Deck
from imagedeck.models.slide import Slide
from imagedeck.schemas.slide import DescriptionOut, EffectiveStyleOut, SlideCreate, SlideReorder, SlideUpdate
from imagedeck.services.description_generator import DescriptionGenerator
from imagedeck.services.storage import DocumentStore

router = APIRouter(prefix="/decks/{deck_id}/slides", tags=["slides"])

# Fields that cannot be cleared to null
_NON_NULLABLE_FIELDS = ("speaker_notes", "image_description", "no_images", "scene_start")


@router.get("", response_model=List[Slide])
async def list_slides(deck_id: str, store: DocumentStore = Depends(get_store)):
    """
    List slides of a deck in presentation order.
    """
    return store.list_slides(deck_id)


@router.post("", response_model=Slide, status_code=status.HTTP_201_CREATED)
async def create_slide(deck_id: str, data: SlideCreate, store: DocumentStore = Depends(get_store)):
    """
    Append a slide to the end of the deck.

    A scene start slide never carries images, so `no_images` is forced on.
    """
    return store.create_slide(
        deck_id,
        speaker_notes=data.speaker_notes,
        image_description=data.image_description,
        scene_start=data.scene_start,
        scene_visual_style=data.scene_visual_style,
        no_images=data.no_images,
        override_visual_style=data.override_visual_style,
    )


@router.post("/reorder", response_model=Deck)
async def reorder_slides(deck_id: str, data: SlideReorder, store: DocumentStore = Depends(get_store)):
    """
    Reorder slides. `slide_ids` must list every slide of the deck exactly once.
    """
    return store.reorder_slides(deck_id, data.slide_ids)


@router.get("/{slide_id}", response_model=Slide)
async def get_slide(deck_id: str, slide_id: str, store: DocumentStore = Depends(get_store)):
    return store.get_slide(deck_id, slide_id)


@router.put("/{slide_id}", response_model=Slide)
async def update_slide(
    deck_id: str,
    slide_id: str,
    data: SlideUpdate,
    store: DocumentStore = Depends(get_store),
):
    updates = data.model_dump(exclude_unset=True)
    for key in _NON_NULLABLE_FIELDS:
        if key in updates and updates[key] is None:
            del updates[key]
    return store.update_slide(deck_id, slide_id, updates)


@router.delete("/{slide_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slide(deck_id: str, slide_id: str, store: DocumentStore = Depends(get_store)):
    """
    Delete a slide and its images; remaining slides are renumbered.
    """
    store.delete_slide(deck_id, slide_id)


@router.get("/{slide_id}/effective-style", response_model=EffectiveStyleOut)
async def get_effective_style(deck_id: str, slide_id: str, store: DocumentStore = Depends(get_store)):
    """
    Visual style that generation would use: slide override, then scene, then deck.
    """
    return EffectiveStyleOut(
        slide_id=slide_id,
        visual_style=store.get_effective_visual_style(deck_id, slide_id),
    )


@router.post("/{slide_id}/generate-description", response_model=DescriptionOut)
async def generate_description(
    deck_id: str,
    slide_id: str,
    store: DocumentStore = Depends(get_store),
    describer: DescriptionGenerator = Depends(get_describer),
):
    """
    Draft an image description from the slide's speaker notes.

    The draft is returned, not saved; the client decides whether to keep it.
    """
    if not describer.is_configured():
        raise BadRequestError("OPENAI_API_KEY is not configured")

    slide = store.get_slide(deck_id, slide_id)
    deck = store.get_deck(deck_id)
    description = await describer.generate_description(
        slide.speaker_notes,
        store.get_effective_visual_style(deck_id, slide_id),
        store.get_merged_entities(deck_id),
        deck.theme_images,
    )
    return DescriptionOut(slide_id=slide_id, description=description)
