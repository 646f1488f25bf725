"""
Description Generator - drafts a slide's image description from its speaker notes.

Uses the OpenAI chat completions API. Only @entities that the notes already
mention are passed on, so the draft never introduces new references.
"""
import logging
from typing import Dict, List, Mapping, Optional, Sequence

import httpx

from imagedeck.core.config import settings
from imagedeck.core.exceptions import TerminalProviderError, TransientProviderError
from imagedeck.models.deck import Entity
from imagedeck.services.image_client import raise_for_provider_status
from imagedeck.services.prompt_parser import extract_entity_references, find_entity

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert at creating visual descriptions for presentation slides.
Your task is to generate a concise, visually-focused image description that will be used to generate an AI image for a slide.

Guidelines:
- Focus on visual elements, composition, and mood
- Be specific but concise (1-3 sentences)
- Consider the presentation's visual style and theme images
- Avoid abstract concepts - focus on concrete visual elements
- Think about what would make an engaging slide image
- Keep any @EntityName references that are in the speaker notes
- Do NOT add entity references that aren't already mentioned"""

DEFAULT_NOTES = "No speaker notes provided"
DEFAULT_STYLE = "Professional presentation style"


def mentioned_entities(speaker_notes: Optional[str], entities: Mapping[str, Entity]) -> List[str]:
    """Known entity keys referenced in the notes, in order of first mention."""
    names: List[str] = []
    for reference in extract_entity_references(speaker_notes):
        found = find_entity(reference, entities)
        if found and found[0] not in names:
            names.append(found[0])
    return names


def build_user_prompt(
    speaker_notes: Optional[str],
    visual_style: Optional[str],
    entity_names: Sequence[str],
    theme_image_count: int,
) -> str:
    theme_context = ""
    if theme_image_count > 0:
        plural = "s" if theme_image_count > 1 else ""
        theme_context = (
            f"\n\nNote: This deck has {theme_image_count} theme image{plural} that set the visual tone. "
            "The generated image should match the style and mood of these reference images."
        )

    entity_context = ""
    if entity_names:
        refs = ", ".join(f"@{name}" for name in entity_names)
        entity_context = (
            f"\n\nEntities mentioned in speaker notes: {refs}. "
            "Keep these entity references in your description."
        )

    notes = speaker_notes.strip() if speaker_notes and speaker_notes.strip() else DEFAULT_NOTES
    style = visual_style.strip() if visual_style and visual_style.strip() else DEFAULT_STYLE
    return (
        "Create an image description for a slide with these speaker notes:\n\n"
        f'"{notes}"\n\n'
        f"Visual style for the deck: {style}{theme_context}{entity_context}\n\n"
        "Generate a concise visual description (1-3 sentences) that captures the essence "
        "of what should be shown in the slide image:"
    )


class DescriptionGenerator:
    """OpenAI chat client for slide image descriptions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.api_base = (api_base or settings.OPENAI_API_BASE).rstrip("/")
        self.model = model or settings.OPENAI_CHAT_MODEL
        self.timeout = timeout or settings.OPENAI_TIMEOUT
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate_description(
        self,
        speaker_notes: Optional[str],
        visual_style: Optional[str],
        entities: Mapping[str, Entity],
        theme_images: Sequence[str] = (),
        temperature: float = 0.7,
        max_tokens: int = 150,
    ) -> str:
        """
        Draft an image description for one slide.

        Args:
            speaker_notes: The slide's speaker notes
            visual_style: Effective visual style for the slide
            entities: Entities available to the slide, keyed by name
            theme_images: Theme image filenames of the deck
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            The description, stripped of surrounding whitespace
        """
        if not self.is_configured():
            raise TerminalProviderError("OpenAI API key not configured")

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_user_prompt(
                    speaker_notes,
                    visual_style,
                    mentioned_entities(speaker_notes, entities),
                    len(theme_images),
                ),
            },
        ]

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                logger.info(f"Requesting image description from {self.model}")
                response = await client.post(
                    f"{self.api_base}/chat/completions",
                    json={
                        "model": self.model,
                        "messages": messages,
                        "temperature": temperature,
                        "max_tokens": max_tokens,
                    },
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"OpenAI request timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"Failed to reach OpenAI at {self.api_base}: {e}") from e

        raise_for_provider_status(response, "OpenAI")

        choices = response.json().get("choices") or []
        content = ((choices[0].get("message") or {}).get("content") or "") if choices else ""
        description = content.strip()
        if not description:
            raise TerminalProviderError("OpenAI returned an empty description")
        return description


_default_generator: Optional[DescriptionGenerator] = None


def get_description_generator() -> DescriptionGenerator:
    """Get the default description generator (singleton)."""
    global _default_generator
    if _default_generator is None:
        _default_generator = DescriptionGenerator()
    return _default_generator
