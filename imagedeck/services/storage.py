"""
Document store for decks, slides, entities and settings on local disk.

Every record is a JSON file written through `write_atomic` (temp file in the
same directory + os.replace), so readers observe either the previous or the
new version of a record, never a torn one. There is no locking: concurrent
edits to the same record are last-writer-wins.

Layout under the storage root:
    deck-{deckId}/deck.json
    deck-{deckId}/entities/{name}.{ext}
    deck-{deckId}/theme/theme-{uuid}.{ext}
    deck-{deckId}/{slideId}/slide.json
    deck-{deckId}/{slideId}/image-NNN.jpg
    global-entities/entities.json
    global-entities/{name}.{ext}
    settings.json
"""

import logging
import os
import re
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from imagedeck.core.config import settings
from imagedeck.core.exceptions import (
    BadRequestError,
    ConflictError,
    ConsistencyDebt,
    CorruptRecordError,
    NotFoundError,
)
from imagedeck.models.deck import (
    ENTITY_NAME_MAX_LENGTH,
    ENTITY_NAME_PATTERN,
    MAX_THEME_IMAGES,
    Deck,
    Entity,
)
from imagedeck.models.slide import IMAGE_FILENAME_PREFIX, SLIDE_ID_PREFIX, GeneratedImage, Slide
from imagedeck.models.user_settings import UserSettings

logger = logging.getLogger(__name__)

DECK_DIR_PREFIX = "deck-"
DECK_FILENAME = "deck.json"
SLIDE_FILENAME = "slide.json"
ENTITIES_DIRNAME = "entities"
THEME_DIRNAME = "theme"
GLOBAL_ENTITIES_DIRNAME = "global-entities"
GLOBAL_ENTITIES_FILENAME = "entities.json"
SETTINGS_FILENAME = "settings.json"
TEMP_SUFFIX = ".tmp"
SETTINGS_FILE_MODE = 0o600

SLIDE_ID_RE = re.compile(rf"^{SLIDE_ID_PREFIX}(\d+)$")
IMAGE_FILENAME_RE = re.compile(rf"^{IMAGE_FILENAME_PREFIX}(\d+)\.jpg$")
_ENTITY_NAME_RE = re.compile(ENTITY_NAME_PATTERN)
_SAFE_COMPONENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_ENTITY_MAP = TypeAdapter(Dict[str, Entity])

# Fields a client may change through update_slide. `order` is owned by
# create/delete/reorder so the gap-free invariant cannot be broken directly.
UPDATABLE_SLIDE_FIELDS = frozenset({
    "speaker_notes",
    "image_description",
    "override_visual_style",
    "no_images",
    "scene_start",
    "scene_visual_style",
})

RecordT = TypeVar("RecordT", bound=BaseModel)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def write_atomic(
    path: Union[str, Path],
    record: Union[BaseModel, bytes, str],
    mode: Optional[int] = None,
) -> None:
    """
    Write a record (or raw bytes) so that `path` is replaced in one step.

    The payload goes to a uniquely named `*.tmp` file in the same directory,
    is fsynced, and then renamed over `path`. On any failure the temp file is
    removed and the existing file is left untouched. Temp files never carry a
    record filename, so they cannot be mistaken for a real record after a crash.

    Args:
        path: Destination file
        record: Pydantic model (serialized as indented JSON), bytes or str
        mode: Optional file mode applied before the rename
    """
    path = Path(path)
    if isinstance(record, BaseModel):
        payload = record.model_dump_json(indent=2).encode("utf-8")
    elif isinstance(record, str):
        payload = record.encode("utf-8")
    else:
        payload = record

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=TEMP_SUFFIX, dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def read_record(path: Path, model: Type[RecordT], missing_message: str) -> RecordT:
    """
    Read and validate a JSON record.

    Raises:
        NotFoundError: If the file does not exist
        CorruptRecordError: If the file is not valid JSON for `model`
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise NotFoundError(missing_message)
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise CorruptRecordError(
            f"Corrupt record {path}: {e.error_count()} validation error(s)"
        ) from e


def validate_entity_name(name: str) -> str:
    """Reject names that cannot be used as an @Name token."""
    if not name or len(name) > ENTITY_NAME_MAX_LENGTH or not _ENTITY_NAME_RE.match(name):
        raise BadRequestError(
            "Entity name must contain only letters, numbers, and hyphens (no spaces), "
            f"at most {ENTITY_NAME_MAX_LENGTH} characters"
        )
    return name


def _find_name_clash(name: str, existing: Iterable[str]) -> Optional[str]:
    """Existing name equal to `name` ignoring case, if any."""
    lowered = name.lower()
    for other in existing:
        if other.lower() == lowered:
            return other
    return None


def normalize_extension(extension: Optional[str]) -> str:
    """Reduce an upload extension/mime subtype to a safe file suffix."""
    ext = (extension or "").lower().lstrip(".")
    if not ext.isalnum():
        return "jpg"
    return ext


def compute_scene_styles(slides: Sequence[Slide]) -> Dict[str, Optional[str]]:
    """
    Map each slide id to the scene style active *before* it.

    One forward pass in `order`: a slide flagged `scene_start` with a
    non-empty `scene_visual_style` sets the style for every later slide until
    the next such scene start. Scene starts without a style do not reset it.

    Args:
        slides: All slides of a deck, in any order

    Returns:
        Dict of slide id -> inherited scene style (None if no scene applies)
    """
    active: Optional[str] = None
    styles: Dict[str, Optional[str]] = {}
    for slide in sorted(slides, key=lambda s: s.order):
        styles[slide.id] = active
        if slide.scene_start and slide.scene_visual_style and slide.scene_visual_style.strip():
            active = slide.scene_visual_style.strip()
    return styles


def resolve_visual_style(slide: Slide, scene_style: Optional[str], deck_style: str) -> str:
    """Slide override, else inherited scene style, else deck style."""
    if slide.override_visual_style and slide.override_visual_style.strip():
        return slide.override_visual_style.strip()
    if scene_style:
        return scene_style
    return deck_style or ""


class DocumentStore:
    """File-backed store. The only reader/writer of on-disk state."""

    def __init__(self, base_dir: Union[str, Path]):
        """
        Initialize the store.

        Args:
            base_dir: Storage root, created (mode 0700) if missing
        """
        self.base_dir = Path(base_dir).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.base_dir, 0o700)
        except OSError as e:
            logger.warning(f"Could not restrict storage directory permissions: {e}")

    # ===== PATHS =====

    @staticmethod
    def _safe(value: str, what: str) -> str:
        """Reject ids/filenames that could escape the storage tree."""
        if not value or ".." in value or not _SAFE_COMPONENT_RE.match(value):
            raise NotFoundError(f"{what} not found: {value}")
        return value

    def _deck_dir(self, deck_id: str) -> Path:
        return self.base_dir / f"{DECK_DIR_PREFIX}{self._safe(deck_id, 'Deck')}"

    def _deck_path(self, deck_id: str) -> Path:
        return self._deck_dir(deck_id) / DECK_FILENAME

    def _slide_dir(self, deck_id: str, slide_id: str) -> Path:
        return self._deck_dir(deck_id) / self._safe(slide_id, "Slide")

    def _slide_path(self, deck_id: str, slide_id: str) -> Path:
        return self._slide_dir(deck_id, slide_id) / SLIDE_FILENAME

    def _global_dir(self) -> Path:
        return self.base_dir / GLOBAL_ENTITIES_DIRNAME

    def _settings_path(self) -> Path:
        return self.base_dir / SETTINGS_FILENAME

    def get_image_file_path(self, deck_id: str, slide_id: str, filename: str) -> Path:
        return self._slide_dir(deck_id, slide_id) / self._safe(filename, "Image")

    def get_entity_image_path(self, deck_id: str, filename: str) -> Path:
        return self._deck_dir(deck_id) / ENTITIES_DIRNAME / self._safe(filename, "Entity image")

    def get_global_entity_image_path(self, filename: str) -> Path:
        return self._global_dir() / self._safe(filename, "Entity image")

    def get_theme_image_path(self, deck_id: str, filename: str) -> Path:
        return self._deck_dir(deck_id) / THEME_DIRNAME / self._safe(filename, "Theme image")

    # ===== DECK OPERATIONS =====

    def list_decks(self) -> List[Deck]:
        """
        Return all decks, most recently updated first.

        Unreadable decks are logged and skipped so one bad record does not
        hide the rest.
        """
        decks: List[Deck] = []
        for entry in self.base_dir.iterdir():
            if not entry.is_dir() or not entry.name.startswith(DECK_DIR_PREFIX):
                continue
            deck_path = entry / DECK_FILENAME
            if not deck_path.exists():
                continue
            try:
                decks.append(read_record(deck_path, Deck, f"Deck not found: {entry.name}"))
            except CorruptRecordError as e:
                logger.error(f"Failed to read deck {entry.name}: {e.message}")

        decks.sort(key=lambda d: d.updated_at, reverse=True)
        return decks

    def get_deck(self, deck_id: str) -> Deck:
        return read_record(self._deck_path(deck_id), Deck, f"Deck not found: {deck_id}")

    def _save_deck(self, deck: Deck, touch: bool = True) -> Deck:
        if touch:
            deck.updated_at = _utcnow()
        write_atomic(self._deck_path(deck.id), deck)
        return deck

    def create_deck(self, name: str, visual_style: str = "") -> Deck:
        """
        Create a deck directory, its entities/ subdirectory and deck.json.

        All-or-nothing: if any step fails the whole directory is removed.
        """
        if not name or not name.strip():
            raise BadRequestError("Deck name is required")

        now = _utcnow()
        deck = Deck(
            id=str(uuid.uuid4()),
            name=name.strip(),
            created_at=now,
            updated_at=now,
            visual_style=visual_style or "",
        )

        deck_dir = self._deck_dir(deck.id)
        try:
            (deck_dir / ENTITIES_DIRNAME).mkdir(parents=True)
            self._save_deck(deck, touch=False)
        except Exception:
            shutil.rmtree(deck_dir, ignore_errors=True)
            raise

        logger.info(f"Created deck {deck.id} ({deck.name})")
        return deck

    def update_deck(
        self,
        deck_id: str,
        name: Optional[str] = None,
        visual_style: Optional[str] = None,
    ) -> Deck:
        deck = self.get_deck(deck_id)
        if name is not None:
            if not name.strip():
                raise BadRequestError("Deck name must not be empty")
            deck.name = name.strip()
        if visual_style is not None:
            deck.visual_style = visual_style
        return self._save_deck(deck)

    def delete_deck(self, deck_id: str) -> None:
        """Recursively delete a deck with its slides, images and entities."""
        deck_dir = self._deck_dir(deck_id)
        if not (deck_dir / DECK_FILENAME).exists():
            raise NotFoundError(f"Deck not found: {deck_id}")
        shutil.rmtree(deck_dir)
        logger.info(f"Deleted deck {deck_id}")

    # ===== DECK ENTITY OPERATIONS =====

    def add_entity(
        self,
        deck_id: str,
        entity_name: str,
        image_bytes: bytes,
        extension: str = "jpg",
    ) -> Deck:
        validate_entity_name(entity_name)
        deck = self.get_deck(deck_id)
        clash = _find_name_clash(entity_name, deck.entities)
        if clash is not None:
            raise ConflictError(f"Entity '{clash}' already exists")

        filename = f"{entity_name}.{normalize_extension(extension)}"
        entities_dir = self._deck_dir(deck_id) / ENTITIES_DIRNAME
        entities_dir.mkdir(parents=True, exist_ok=True)
        write_atomic(entities_dir / filename, image_bytes)

        deck.entities[entity_name] = Entity(name=entity_name, images=[filename])
        return self._save_deck(deck)

    def remove_entity(self, deck_id: str, entity_name: str) -> Deck:
        deck = self.get_deck(deck_id)
        entity = deck.entities.get(entity_name)
        if entity is None:
            raise NotFoundError(f"Entity '{entity_name}' not found")

        del deck.entities[entity_name]
        self._save_deck(deck)

        for filename in entity.images:
            self._unlink_quietly(self.get_entity_image_path(deck_id, filename))
        return deck

    # ===== GLOBAL ENTITY OPERATIONS =====

    def get_global_entities(self) -> Dict[str, Entity]:
        """Global entity map. An absent entities.json means no global entities yet."""
        path = self._global_dir() / GLOBAL_ENTITIES_FILENAME
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return {}
        try:
            return _ENTITY_MAP.validate_json(raw)
        except ValidationError as e:
            raise CorruptRecordError(
                f"Corrupt record {path}: {e.error_count()} validation error(s)"
            ) from e

    def _save_global_entities(self, entities: Dict[str, Entity]) -> None:
        global_dir = self._global_dir()
        global_dir.mkdir(parents=True, exist_ok=True)
        write_atomic(global_dir / GLOBAL_ENTITIES_FILENAME, _ENTITY_MAP.dump_json(entities, indent=2))

    def add_global_entity(self, entity_name: str, image_bytes: bytes, extension: str = "jpg") -> Dict[str, Entity]:
        validate_entity_name(entity_name)
        entities = self.get_global_entities()
        clash = _find_name_clash(entity_name, entities)
        if clash is not None:
            raise ConflictError(f"Global entity '{clash}' already exists")

        filename = f"{entity_name}.{normalize_extension(extension)}"
        global_dir = self._global_dir()
        global_dir.mkdir(parents=True, exist_ok=True)
        write_atomic(global_dir / filename, image_bytes)

        entities[entity_name] = Entity(name=entity_name, images=[filename])
        self._save_global_entities(entities)
        return entities

    def remove_global_entity(self, entity_name: str) -> Dict[str, Entity]:
        entities = self.get_global_entities()
        entity = entities.pop(entity_name, None)
        if entity is None:
            raise NotFoundError(f"Global entity '{entity_name}' not found")

        self._save_global_entities(entities)
        for filename in entity.images:
            self._unlink_quietly(self.get_global_entity_image_path(filename))
        return entities

    def get_merged_entities(self, deck_id: str) -> Dict[str, Entity]:
        """Global entities overlaid by deck entities (deck wins on name collision)."""
        deck = self.get_deck(deck_id)
        merged = dict(self.get_global_entities())
        merged.update(deck.entities)
        return merged

    def read_entity_image(self, deck_id: str, entity_name: str, filename: str) -> bytes:
        """Read an entity image from the deck scope if the deck owns the name, else global."""
        deck = self.get_deck(deck_id)
        if entity_name in deck.entities:
            path = self.get_entity_image_path(deck_id, filename)
        else:
            path = self.get_global_entity_image_path(filename)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"Entity image not found: {filename}")

    # ===== THEME IMAGE OPERATIONS =====

    def add_theme_image(self, deck_id: str, image_bytes: bytes, extension: str = "jpg") -> Tuple[Deck, str]:
        deck = self.get_deck(deck_id)
        if len(deck.theme_images) >= MAX_THEME_IMAGES:
            raise BadRequestError(f"Maximum {MAX_THEME_IMAGES} theme images allowed per deck")

        filename = f"theme-{uuid.uuid4()}.{normalize_extension(extension)}"
        theme_dir = self._deck_dir(deck_id) / THEME_DIRNAME
        theme_dir.mkdir(parents=True, exist_ok=True)
        write_atomic(theme_dir / filename, image_bytes)

        deck.theme_images.append(filename)
        return self._save_deck(deck), filename

    def remove_theme_image(self, deck_id: str, filename: str) -> Deck:
        deck = self.get_deck(deck_id)
        if filename not in deck.theme_images:
            raise NotFoundError(f"Theme image not found: {filename}")

        deck.theme_images.remove(filename)
        self._save_deck(deck)
        self._unlink_quietly(self.get_theme_image_path(deck_id, filename))
        return deck

    def read_theme_image(self, deck_id: str, filename: str) -> bytes:
        try:
            return self.get_theme_image_path(deck_id, filename).read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"Theme image not found: {filename}")

    # ===== SLIDE OPERATIONS =====

    def get_slide(self, deck_id: str, slide_id: str) -> Slide:
        return read_record(self._slide_path(deck_id, slide_id), Slide, f"Slide not found: {slide_id}")

    def _save_slide(self, deck_id: str, slide: Slide) -> Slide:
        write_atomic(self._slide_path(deck_id, slide.id), slide)
        return slide

    def list_slides(self, deck_id: str) -> List[Slide]:
        """All slides of a deck sorted by `order`."""
        deck = self.get_deck(deck_id)
        slides = [self.get_slide(deck_id, slide_id) for slide_id in deck.slides]
        slides.sort(key=lambda s: s.order)
        return slides

    def _next_slide_id(self, deck: Deck) -> str:
        """
        Next id in the deck's slide sequence.

        Starts from the slide count and moves forward past ids that are still
        in use (after deletions) or left behind as orphaned directories.
        """
        number = len(deck.slides) + 1
        while True:
            slide_id = f"{SLIDE_ID_PREFIX}{number:03d}"
            if slide_id not in deck.slides and not self._slide_dir(deck.id, slide_id).exists():
                return slide_id
            number += 1

    def create_slide(
        self,
        deck_id: str,
        speaker_notes: str = "",
        image_description: str = "",
        scene_start: bool = False,
        scene_visual_style: Optional[str] = None,
        no_images: bool = False,
        override_visual_style: Optional[str] = None,
    ) -> Slide:
        """
        Append a new slide to the deck.

        The slide record is written first, then the deck's slide list. If the
        second write fails the slide directory stays behind as consistency
        debt (logged, cleaned up by `reconcile_deck`) and the error propagates.
        """
        deck = self.get_deck(deck_id)
        slide = Slide(
            id=self._next_slide_id(deck),
            order=len(deck.slides),
            speaker_notes=speaker_notes or "",
            image_description=image_description or "",
            override_visual_style=override_visual_style or None,
            no_images=no_images or scene_start,
            scene_start=scene_start,
            scene_visual_style=scene_visual_style or None,
        )

        slide_dir = self._slide_dir(deck_id, slide.id)
        slide_dir.mkdir(parents=True)
        try:
            self._save_slide(deck_id, slide)
        except Exception:
            shutil.rmtree(slide_dir, ignore_errors=True)
            raise

        deck.slides.append(slide.id)
        try:
            self._save_deck(deck)
        except Exception:
            ConsistencyDebt(
                deck_id=deck_id,
                path=str(slide_dir),
                reason=f"slide {slide.id} written but deck slide list update failed",
            ).log()
            raise

        return slide

    def update_slide(self, deck_id: str, slide_id: str, updates: Mapping[str, Any]) -> Slide:
        """
        Apply a partial update to a slide.

        Args:
            deck_id: Deck ID
            slide_id: Slide ID
            updates: Subset of UPDATABLE_SLIDE_FIELDS

        Raises:
            BadRequestError: Unknown fields, invalid values, or an attempt to
                enable images on a scene start slide
        """
        unknown = set(updates) - UPDATABLE_SLIDE_FIELDS
        if unknown:
            raise BadRequestError(f"Cannot update slide fields: {', '.join(sorted(unknown))}")

        deck = self.get_deck(deck_id)
        slide = self.get_slide(deck_id, slide_id)

        data = slide.model_dump()
        data.update(updates)
        for key in ("override_visual_style", "scene_visual_style"):
            if not data.get(key):
                data[key] = None

        if data.get("scene_start"):
            if updates.get("no_images") is False:
                raise BadRequestError("A scene start slide cannot carry images")
            data["no_images"] = True

        try:
            updated = Slide.model_validate(data)
        except ValidationError as e:
            raise BadRequestError(f"Invalid slide update: {e.error_count()} validation error(s)")

        self._save_slide(deck_id, updated)
        self._save_deck(deck)
        return updated

    def delete_slide(self, deck_id: str, slide_id: str) -> None:
        """
        Delete a slide and its images, then re-index the remaining slides so
        `order` stays a gap-free 0..n-1 sequence.
        """
        deck = self.get_deck(deck_id)
        if slide_id not in deck.slides:
            raise NotFoundError(f"Slide not found in deck: {slide_id}")

        deck.slides.remove(slide_id)
        self._save_deck(deck)

        for position, remaining_id in enumerate(deck.slides):
            slide = self.get_slide(deck_id, remaining_id)
            if slide.order != position:
                slide.order = position
                self._save_slide(deck_id, slide)

        shutil.rmtree(self._slide_dir(deck_id, slide_id), ignore_errors=True)

    def reorder_slides(self, deck_id: str, slide_ids: Sequence[str]) -> Deck:
        """
        Reorder slides.

        `slide_ids` must be a permutation of the deck's current slide ids.
        All problems are collected in one pass and nothing is written unless
        the whole list is valid.
        """
        deck = self.get_deck(deck_id)
        current = set(deck.slides)

        errors: List[str] = []
        if len(slide_ids) != len(deck.slides):
            errors.append(f"expected {len(deck.slides)} slide ids, got {len(slide_ids)}")
        unknown = [sid for sid in slide_ids if sid not in current]
        if unknown:
            errors.append(f"unknown slide ids: {', '.join(unknown)}")
        duplicates = sorted({sid for sid in slide_ids if list(slide_ids).count(sid) > 1})
        if duplicates:
            errors.append(f"duplicate slide ids: {', '.join(duplicates)}")
        if errors:
            raise BadRequestError("Invalid slide order: " + "; ".join(errors))

        for position, slide_id in enumerate(slide_ids):
            slide = self.get_slide(deck_id, slide_id)
            slide.order = position
            self._save_slide(deck_id, slide)

        deck.slides = list(slide_ids)
        return self._save_deck(deck)

    def get_effective_visual_style(self, deck_id: str, slide_id: str) -> str:
        """
        Visual style used to generate images for a slide.

        Resolution order: the slide's override, then the nearest preceding
        scene start with a style, then the deck's visual style.
        """
        deck = self.get_deck(deck_id)
        if slide_id not in deck.slides:
            raise NotFoundError(f"Slide not found in deck: {slide_id}")

        slides = self.list_slides(deck_id)
        scene_styles = compute_scene_styles(slides)
        slide = next(s for s in slides if s.id == slide_id)
        return resolve_visual_style(slide, scene_styles.get(slide_id), deck.visual_style)

    # ===== GENERATED IMAGE OPERATIONS =====

    @staticmethod
    def _next_image_filename(slide: Slide) -> str:
        numbers = [
            int(m.group(1))
            for m in (IMAGE_FILENAME_RE.match(img.filename) for img in slide.generated_images)
            if m
        ]
        return f"{IMAGE_FILENAME_PREFIX}{max(numbers, default=0) + 1:03d}.jpg"

    def add_generated_image(
        self,
        deck_id: str,
        slide_id: str,
        image_bytes: bytes,
        service: str,
        prompt: str,
        source_image_id: Optional[str] = None,
        image_id: Optional[str] = None,
    ) -> GeneratedImage:
        """
        Store a generated JPEG and append its metadata to the slide.

        The image is auto-pinned when the slide has no pinned image yet.
        """
        slide = self.get_slide(deck_id, slide_id)
        filename = self._next_image_filename(slide)
        image_path = self.get_image_file_path(deck_id, slide_id, filename)
        write_atomic(image_path, image_bytes)

        image = GeneratedImage(
            id=image_id or str(uuid.uuid4()),
            filename=filename,
            created_at=_utcnow(),
            service=service,
            prompt=prompt,
            source_image_id=source_image_id,
            is_pinned=slide.pinned_image is None,
        )
        slide.generated_images.append(image)
        try:
            self._save_slide(deck_id, slide)
        except Exception:
            self._unlink_quietly(image_path)
            raise
        return image

    def pin_image(self, deck_id: str, slide_id: str, image_id: str) -> Slide:
        slide = self.get_slide(deck_id, slide_id)
        if slide.find_image(image_id) is None:
            raise NotFoundError(f"Image not found: {image_id}")

        for image in slide.generated_images:
            image.is_pinned = image.id == image_id
        return self._save_slide(deck_id, slide)

    def delete_image(self, deck_id: str, slide_id: str, image_id: str) -> Slide:
        """Delete an image. If it was pinned, the first remaining image is pinned."""
        slide = self.get_slide(deck_id, slide_id)
        image = slide.find_image(image_id)
        if image is None:
            raise NotFoundError(f"Image not found: {image_id}")

        slide.generated_images.remove(image)
        if image.is_pinned and slide.generated_images:
            slide.generated_images[0].is_pinned = True
        self._save_slide(deck_id, slide)

        self._unlink_quietly(self.get_image_file_path(deck_id, slide_id, image.filename))
        return slide

    def get_image_path(self, deck_id: str, slide_id: str, image_id: str) -> Path:
        slide = self.get_slide(deck_id, slide_id)
        image = slide.find_image(image_id)
        if image is None:
            raise NotFoundError(f"Image not found: {image_id}")
        path = self.get_image_file_path(deck_id, slide_id, image.filename)
        if not path.exists():
            raise NotFoundError(f"Image file not found: {image.filename}")
        return path

    # ===== SETTINGS OPERATIONS =====

    def get_settings(self) -> UserSettings:
        """Read settings, creating the file with defaults on first access."""
        path = self._settings_path()
        if not path.exists():
            return self.save_settings(UserSettings())
        return read_record(path, UserSettings, "Settings not found")

    def save_settings(self, user_settings: UserSettings) -> UserSettings:
        write_atomic(self._settings_path(), user_settings, mode=SETTINGS_FILE_MODE)
        return user_settings

    def update_settings(self, updates: Mapping[str, Any]) -> UserSettings:
        current = self.get_settings()
        data = current.model_dump()
        data.update(updates)
        try:
            updated = UserSettings.model_validate(data)
        except ValidationError as e:
            raise BadRequestError(f"Invalid settings: {e.error_count()} validation error(s)")
        return self.save_settings(updated)

    # ===== RECONCILIATION =====

    def find_orphaned_slides(self, deck_id: str) -> List[str]:
        """Slide directories on disk that the deck's slide list does not reference."""
        deck = self.get_deck(deck_id)
        listed = set(deck.slides)
        return sorted(
            entry.name
            for entry in self._deck_dir(deck_id).iterdir()
            if entry.is_dir() and SLIDE_ID_RE.match(entry.name) and entry.name not in listed
        )

    def reconcile_deck(self, deck_id: str) -> List[str]:
        """
        Remove orphaned slide directories and stale temp files of a deck.

        Returns:
            Paths that were removed
        """
        removed: List[str] = []
        deck_dir = self._deck_dir(deck_id)
        for slide_id in self.find_orphaned_slides(deck_id):
            path = deck_dir / slide_id
            shutil.rmtree(path, ignore_errors=True)
            removed.append(str(path))
        for tmp in deck_dir.rglob(f"*{TEMP_SUFFIX}"):
            self._unlink_quietly(tmp)
            removed.append(str(tmp))

        if removed:
            logger.warning(f"Reconciled deck {deck_id}: removed {len(removed)} leftover path(s)")
        return removed

    def reconcile_all(self) -> Dict[str, List[str]]:
        return {deck.id: self.reconcile_deck(deck.id) for deck in self.list_decks()}

    @staticmethod
    def _unlink_quietly(path: Path) -> None:
        """Remove a backing file whose metadata is already gone."""
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete file {path}: {e}")


# Store instances cache
_stores: Dict[str, DocumentStore] = {}


def get_document_store(base_dir: Optional[Union[str, Path]] = None) -> DocumentStore:
    """
    Factory function returning a cached store for a storage root.

    Args:
        base_dir: Storage root (defaults to settings.STORAGE_PATH)

    Returns:
        DocumentStore instance
    """
    root = Path(base_dir).expanduser() if base_dir else settings.storage_dir
    key = str(root)
    if key not in _stores:
        _stores[key] = DocumentStore(root)
    return _stores[key]
