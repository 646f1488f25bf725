"""
Prompt Parser - @Entity reference handling and final prompt assembly.

Pure text functions, no I/O:
- Resolve @Name tokens against a (merged) entity map
- Build the full generation prompt with length/content validation
- Collect the reference images for entities mentioned in a description
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from imagedeck.core.exceptions import PromptValidationError
from imagedeck.models.deck import Entity

# @ followed by letters/digits with internal hyphens. Greedy over the whole
# identifier class, so "@Bob-Jr" is one token and never "@Bob" + "-Jr".
ENTITY_REFERENCE_PATTERN = re.compile(r"@([a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]|[a-zA-Z0-9])")

MAX_PROMPT_LENGTH = 2000
QUALITY_SUFFIX = "16:9 aspect ratio, presentation quality, detailed, professional."


@dataclass
class PromptBuildResult:
    """Final prompt plus any @references that did not resolve."""
    prompt: str
    unknown_entities: List[str] = field(default_factory=list)


@dataclass
class ReferencedEntityImage:
    """First backing image of an entity referenced in a description."""
    entity_name: str
    image_filename: str
    display_name: str


def _display_name(entity_name: str) -> str:
    return entity_name.replace("-", " ")


def find_entity(
    entity_name: str,
    entities: Mapping[str, Entity],
) -> Optional[Tuple[str, Entity]]:
    """
    Look up an entity by name.

    Exact (case-sensitive) match wins; otherwise the first case-insensitive
    match is returned.

    Args:
        entity_name: Name without the leading @
        entities: Entity map keyed by name

    Returns:
        Tuple of (actual key, entity), or None if not found
    """
    if entity_name in entities:
        return entity_name, entities[entity_name]

    lowered = entity_name.lower()
    for key, entity in entities.items():
        if key.lower() == lowered:
            return key, entity
    return None


def extract_entity_references(text: Optional[str]) -> List[str]:
    """Return referenced entity names (without @), deduplicated, in order."""
    if not text:
        return []

    names: List[str] = []
    for match in ENTITY_REFERENCE_PATTERN.finditer(text):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def parse_entity_references(
    text: Optional[str],
    entities: Mapping[str, Entity],
) -> Tuple[str, List[str]]:
    """
    Replace @Name tokens with readable entity names.

    Known tokens become the entity key with hyphens turned into spaces
    ("@The-Office" -> "The Office"). Unknown tokens are left untouched and
    reported.

    Args:
        text: Free text that may contain @Name tokens
        entities: Entity map keyed by name

    Returns:
        Tuple of (parsed text, deduplicated unknown entity names)
    """
    if not text:
        return "", []

    unknown: List[str] = []

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        found = find_entity(name, entities)
        if found is None:
            if name not in unknown:
                unknown.append(name)
            return match.group(0)
        return _display_name(found[0])

    parsed = ENTITY_REFERENCE_PATTERN.sub(_replace, text)
    return parsed, unknown


def validate_entity_references(text: Optional[str], entities: Mapping[str, Entity]) -> List[str]:
    """Return the referenced names that do not resolve to any entity."""
    return [
        name for name in extract_entity_references(text)
        if find_entity(name, entities) is None
    ]


def build_full_prompt(
    visual_style: Optional[str],
    image_description: Optional[str],
    entities: Mapping[str, Entity],
    theme_images: Optional[Sequence[str]] = None,
) -> PromptBuildResult:
    """
    Assemble the prompt sent to an image provider.

    Order: visual style, theme image guidance, entity-resolved description,
    quality/aspect-ratio suffix, joined with ". ".

    Args:
        visual_style: Effective visual style for the slide
        image_description: Slide image description (may contain @Name)
        entities: Merged entity map
        theme_images: Deck theme image filenames

    Returns:
        PromptBuildResult with the prompt and unknown entity names

    Raises:
        PromptValidationError: If there is nothing to render or the prompt
            exceeds MAX_PROMPT_LENGTH
    """
    theme_images = theme_images or []
    parsed_description, unknown = parse_entity_references(image_description, entities)

    style = (visual_style or "").strip()
    description = parsed_description.strip()

    if not style and not description:
        raise PromptValidationError(
            "Cannot generate image: both visual style and image description are empty"
        )

    parts: List[str] = []
    if style:
        parts.append(style)
    if theme_images:
        count = len(theme_images)
        plural = "s" if count > 1 else ""
        parts.append(
            "Follow the visual style and tone shown in the provided reference images "
            f"({count} theme image{plural} available)"
        )
    if description:
        parts.append(description)
    parts.append(QUALITY_SUFFIX)

    prompt = ". ".join(parts)

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise PromptValidationError(
            f"Prompt too long: {len(prompt)} characters (max {MAX_PROMPT_LENGTH}). "
            "Please shorten the visual style or image description."
        )

    return PromptBuildResult(prompt=prompt, unknown_entities=unknown)


def get_referenced_entity_images(
    text: Optional[str],
    entities: Mapping[str, Entity],
) -> List[ReferencedEntityImage]:
    """
    Collect the first image of every entity referenced in `text`.

    Entities without any image are skipped.
    """
    result: List[ReferencedEntityImage] = []
    seen = set()
    for name in extract_entity_references(text):
        found = find_entity(name, entities)
        if found is None:
            continue
        key, entity = found
        if key in seen or not entity.images:
            continue
        seen.add(key)
        result.append(
            ReferencedEntityImage(
                entity_name=key,
                image_filename=entity.images[0],
                display_name=_display_name(key),
            )
        )
    return result


def suggest_entities(partial: Optional[str], entities: Mapping[str, Entity]) -> List[Dict[str, str]]:
    """
    Autocomplete entity names.

    Exact matches first, then prefix matches, then alphabetical.
    """
    if not partial:
        return [
            {"name": name, "display_name": _display_name(name)}
            for name in entities
        ]

    needle = partial.lower()
    matches = [name for name in entities if needle in name.lower()]

    def _rank(name: str) -> Tuple[int, str]:
        lowered = name.lower()
        if lowered == needle:
            return 0, lowered
        if lowered.startswith(needle):
            return 1, lowered
        return 2, lowered

    matches.sort(key=_rank)
    return [{"name": name, "display_name": _display_name(name)} for name in matches]
