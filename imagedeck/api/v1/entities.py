"""
Entity endpoints for deck-local and global entities.

Deck entities override global entities with the same name.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from imagedeck.api.v1.common import image_file_response, read_image_upload
from imagedeck.core.deps import get_store
from imagedeck.core.exceptions import NotFoundError
from imagedeck.models.deck import Deck, Entity
from imagedeck.schemas.entity import EntityOut, EntitySuggestion
from imagedeck.services.prompt_parser import suggest_entities
from imagedeck.services.storage import DocumentStore

router = APIRouter(tags=["entities"])


def _entity_out(entity: Entity, scope: str) -> EntityOut:
    return EntityOut(
        name=entity.name,
        display_name=entity.display_name,
        images=entity.images,
        scope=scope,
    )


# ===== DECK ENTITIES =====

@router.get("/decks/{deck_id}/entities", response_model=List[EntityOut])
async def list_deck_entities(deck_id: str, store: DocumentStore = Depends(get_store)):
    """
    Entities usable in this deck (global entities overlaid by deck entities).
    """
    deck = store.get_deck(deck_id)
    merged = store.get_merged_entities(deck_id)
    return [
        _entity_out(entity, "deck" if name in deck.entities else "global")
        for name, entity in sorted(merged.items())
    ]


@router.post("/decks/{deck_id}/entities", response_model=Deck, status_code=status.HTTP_201_CREATED)
async def add_deck_entity(
    deck_id: str,
    name: str = Form(...),
    file: UploadFile = File(...),
    store: DocumentStore = Depends(get_store),
):
    content, extension = await read_image_upload(file)
    return store.add_entity(deck_id, name, content, extension)


@router.get("/decks/{deck_id}/entities/suggest", response_model=List[EntitySuggestion])
async def suggest_deck_entities(
    deck_id: str,
    q: Optional[str] = Query(None, description="Partial entity name (without @)"),
    store: DocumentStore = Depends(get_store),
):
    """
    Autocomplete @Name references: exact match, then prefix, then substring.
    """
    return suggest_entities(q, store.get_merged_entities(deck_id))


@router.delete("/decks/{deck_id}/entities/{entity_name}", response_model=Deck)
async def remove_deck_entity(deck_id: str, entity_name: str, store: DocumentStore = Depends(get_store)):
    return store.remove_entity(deck_id, entity_name)


@router.get("/decks/{deck_id}/entities/{entity_name}/{filename}")
async def get_deck_entity_image(
    deck_id: str,
    entity_name: str,
    filename: str,
    store: DocumentStore = Depends(get_store),
):
    """
    Serve an entity image, falling back to the global entity of the same name.
    """
    entities = store.get_merged_entities(deck_id)
    entity = entities.get(entity_name)
    if entity is None or filename not in entity.images:
        raise NotFoundError(f"Entity image not found: {entity_name}/{filename}")

    deck = store.get_deck(deck_id)
    if entity_name in deck.entities:
        return image_file_response(store.get_entity_image_path(deck_id, filename))
    return image_file_response(store.get_global_entity_image_path(filename))


# ===== GLOBAL ENTITIES =====

@router.get("/global-entities", response_model=List[EntityOut])
async def list_global_entities(store: DocumentStore = Depends(get_store)):
    return [_entity_out(entity, "global") for _, entity in sorted(store.get_global_entities().items())]


@router.post("/global-entities", response_model=List[EntityOut], status_code=status.HTTP_201_CREATED)
async def add_global_entity(
    name: str = Form(...),
    file: UploadFile = File(...),
    store: DocumentStore = Depends(get_store),
):
    """
    Add an entity available to every deck.
    """
    content, extension = await read_image_upload(file)
    entities = store.add_global_entity(name, content, extension)
    return [_entity_out(entity, "global") for _, entity in sorted(entities.items())]


@router.delete("/global-entities/{entity_name}", response_model=List[EntityOut])
async def remove_global_entity(entity_name: str, store: DocumentStore = Depends(get_store)):
    entities = store.remove_global_entity(entity_name)
    return [_entity_out(entity, "global") for _, entity in sorted(entities.items())]


@router.get("/global-entities/{entity_name}/{filename}")
async def get_global_entity_image(entity_name: str, filename: str, store: DocumentStore = Depends(get_store)):
    entity = store.get_global_entities().get(entity_name)
    if entity is None or filename not in entity.images:
        raise NotFoundError(f"Entity image not found: {entity_name}/{filename}")
    return image_file_response(store.get_global_entity_image_path(filename))
