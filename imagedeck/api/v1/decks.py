"""
Deck endpoints, including creation from pasted text and theme images.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile, status

from imagedeck.api.v1.common import image_file_response, read_image_upload
from imagedeck.core.deps import get_store
from imagedeck.core.exceptions import BadRequestError
from imagedeck.models.deck import Deck
from imagedeck.schemas.deck import (
    DeckCreate,
    DeckFromText,
    DeckSummary,
    DeckUpdate,
    DeckWithSlides,
    ReconcileOut,
    ThemeImageOut,
)
from imagedeck.services.prompt_parser import validate_entity_references
from imagedeck.services.storage import DocumentStore
from imagedeck.services.text_parser import parse_text_to_slides

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/decks", tags=["decks"])


@router.get("", response_model=List[DeckSummary])
async def list_decks(store: DocumentStore = Depends(get_store)):
    """
    List all decks, most recently updated first.
    """
    return [DeckSummary.from_deck(deck) for deck in store.list_decks()]


@router.post("", response_model=Deck, status_code=status.HTTP_201_CREATED)
async def create_deck(data: DeckCreate, store: DocumentStore = Depends(get_store)):
    return store.create_deck(data.name, data.visual_style)


@router.post("/from-text", response_model=DeckWithSlides, status_code=status.HTTP_201_CREATED)
async def create_deck_from_text(data: DeckFromText, store: DocumentStore = Depends(get_store)):
    """
    Create a deck with one slide per line of text.

    Bullets and numbering are stripped and ~name becomes @name. The line is
    used as the slide's image description.
    """
    lines = parse_text_to_slides(data.text)
    if not lines:
        raise BadRequestError("Text contains no slide content")

    deck = store.create_deck(data.name, data.visual_style)
    slides = [store.create_slide(deck.id, image_description=line) for line in lines]

    entities = store.get_merged_entities(deck.id)
    unknown: List[str] = []
    for line in lines:
        for name in validate_entity_references(line, entities):
            if name not in unknown:
                unknown.append(name)

    logger.info(f"Created deck {deck.id} from text with {len(slides)} slide(s)")
    return DeckWithSlides(deck=store.get_deck(deck.id), slides=slides, unknown_entities=unknown)


@router.get("/{deck_id}", response_model=Deck)
async def get_deck(deck_id: str, store: DocumentStore = Depends(get_store)):
    return store.get_deck(deck_id)


@router.put("/{deck_id}", response_model=Deck)
async def update_deck(deck_id: str, data: DeckUpdate, store: DocumentStore = Depends(get_store)):
    return store.update_deck(deck_id, name=data.name, visual_style=data.visual_style)


@router.delete("/{deck_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_deck(deck_id: str, store: DocumentStore = Depends(get_store)):
    """
    Delete a deck with all of its slides, images and entities.
    """
    store.delete_deck(deck_id)


@router.post("/{deck_id}/reconcile", response_model=ReconcileOut)
async def reconcile_deck(deck_id: str, store: DocumentStore = Depends(get_store)):
    """
    Remove orphaned slide directories and stale temp files left by failed writes.
    """
    return ReconcileOut(removed=store.reconcile_deck(deck_id))


# ===== THEME IMAGES =====

@router.post(
    "/{deck_id}/theme-images",
    response_model=ThemeImageOut,
    status_code=status.HTTP_201_CREATED,
)
async def upload_theme_image(
    deck_id: str,
    file: UploadFile = File(...),
    store: DocumentStore = Depends(get_store),
):
    """
    Upload a theme reference image (max 10 per deck).
    """
    content, extension = await read_image_upload(file)
    deck, filename = store.add_theme_image(deck_id, content, extension)
    return ThemeImageOut(deck=deck, filename=filename)


@router.delete("/{deck_id}/theme-images/{filename}", response_model=Deck)
async def delete_theme_image(deck_id: str, filename: str, store: DocumentStore = Depends(get_store)):
    return store.remove_theme_image(deck_id, filename)


@router.get("/{deck_id}/theme-images/{filename}")
async def get_theme_image(deck_id: str, filename: str, store: DocumentStore = Depends(get_store)):
    store.get_deck(deck_id)
    return image_file_response(store.get_theme_image_path(deck_id, filename))
