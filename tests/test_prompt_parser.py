"""
Tests for @Entity parsing and prompt assembly.
"""

import pytest

from imagedeck.core.exceptions import PromptValidationError
from imagedeck.models.deck import Entity
from imagedeck.services.prompt_parser import (
    MAX_PROMPT_LENGTH,
    QUALITY_SUFFIX,
    build_full_prompt,
    extract_entity_references,
    find_entity,
    get_referenced_entity_images,
    parse_entity_references,
    suggest_entities,
    validate_entity_references,
)


@pytest.fixture
def entities():
    return {
        "Bob-Jr": Entity(name="Bob-Jr", images=["Bob-Jr.jpg"]),
        "Alice": Entity(name="Alice", images=["Alice.png"]),
        "The-Office": Entity(name="The-Office", images=["The-Office.jpg"]),
        "Ghost": Entity(name="Ghost", images=[]),
    }


class TestParseEntityReferences:
    """Tests for @Name replacement."""

    def test_hyphenated_name_is_one_token(self, entities):
        """Test that @Bob-Jr is matched whole, never as @Bob."""
        parsed, unknown = parse_entity_references("@Bob-Jr waves", entities)
        assert parsed == "Bob Jr waves"
        assert unknown == []

    def test_every_occurrence_is_replaced(self, entities):
        """Test repeated references are all resolved."""
        parsed, _ = parse_entity_references("@Alice meets @Alice", entities)
        assert parsed == "Alice meets Alice"

    def test_case_insensitive_fallback(self, entities):
        """Test lookup falls back to a case-insensitive match."""
        parsed, unknown = parse_entity_references("@alice at @the-office", entities)
        assert parsed == "Alice at The Office"
        assert unknown == []

    def test_unknown_reference_left_in_place(self, entities):
        """Test unknown names stay as-is and are reported once."""
        parsed, unknown = parse_entity_references("@Carol and @Carol with @Alice", entities)
        assert parsed == "@Carol and @Carol with Alice"
        assert unknown == ["Carol"]

    def test_single_character_name(self):
        """Test single-character entity names resolve."""
        parsed, unknown = parse_entity_references("@X marks", {"X": Entity(name="X", images=["X.jpg"])})
        assert parsed == "X marks"
        assert unknown == []

    def test_empty_text(self, entities):
        """Test empty input."""
        assert parse_entity_references("", entities) == ("", [])
        assert parse_entity_references(None, entities) == ("", [])


class TestFindEntity:
    """Tests for entity lookup."""

    def test_exact_match_wins(self):
        """Test exact match takes precedence over a case-insensitive one."""
        entities = {
            "bob": Entity(name="bob", images=["bob.jpg"]),
            "Bob": Entity(name="Bob", images=["Bob.jpg"]),
        }
        key, _ = find_entity("Bob", entities)
        assert key == "Bob"

    def test_not_found(self, entities):
        assert find_entity("Nobody", entities) is None


class TestBuildFullPrompt:
    """Tests for prompt assembly."""

    def test_assembly_order(self, entities):
        """Test style, theme sentence, description and suffix are joined in order."""
        result = build_full_prompt("Flat vector", "@Alice presents", entities, ["t1.jpg", "t2.jpg"])
        parts = result.prompt.split(". ")
        assert parts[0] == "Flat vector"
        assert "2 theme images available" in parts[1]
        assert parts[2] == "Alice presents"
        assert result.prompt.endswith(QUALITY_SUFFIX)

    def test_single_theme_image_is_singular(self, entities):
        """Test singular wording for one theme image."""
        result = build_full_prompt("Flat vector", "A chart", entities, ["t1.jpg"])
        assert "(1 theme image available)" in result.prompt

    def test_description_only(self, entities):
        """Test a prompt without a visual style."""
        result = build_full_prompt("", "A mountain", entities)
        assert result.prompt == f"A mountain. {QUALITY_SUFFIX}"

    def test_style_only(self, entities):
        """Test a prompt without a description."""
        result = build_full_prompt("Pencil sketch", "", entities)
        assert result.prompt == f"Pencil sketch. {QUALITY_SUFFIX}"

    def test_both_empty_rejected(self, entities):
        """Test that whitespace-only style and description are rejected."""
        with pytest.raises(PromptValidationError):
            build_full_prompt("  ", "\n", entities)

    def test_too_long_rejected(self, entities):
        """Test prompts over the maximum length are rejected."""
        with pytest.raises(PromptValidationError) as exc_info:
            build_full_prompt("x" * MAX_PROMPT_LENGTH, "A chart", entities)
        assert "too long" in str(exc_info.value)

    def test_unknown_entities_reported(self, entities):
        """Test unresolved references are returned, not raised."""
        result = build_full_prompt("Style", "@Carol smiles", entities)
        assert result.unknown_entities == ["Carol"]
        assert "@Carol smiles" in result.prompt


class TestReferencedEntityImages:
    """Tests for reference image collection."""

    def test_first_image_of_each_entity(self, entities):
        refs = get_referenced_entity_images("@Alice and @Bob-Jr and @alice", entities)
        assert [(r.entity_name, r.image_filename) for r in refs] == [
            ("Alice", "Alice.png"),
            ("Bob-Jr", "Bob-Jr.jpg"),
        ]
        assert refs[1].display_name == "Bob Jr"

    def test_entities_without_images_skipped(self, entities):
        """Test entities with no backing image are skipped."""
        assert get_referenced_entity_images("@Ghost", entities) == []

    def test_unknown_skipped(self, entities):
        assert get_referenced_entity_images("@Nobody", entities) == []


class TestReferenceHelpers:
    """Tests for extraction, validation and suggestions."""

    def test_extract_deduplicates(self):
        assert extract_entity_references("@A-b @c @A-b") == ["A-b", "c"]

    def test_validate_returns_unknown(self, entities):
        assert validate_entity_references("@Alice @Carol", entities) == ["Carol"]

    def test_suggest_ranking(self):
        """Test exact match first, then prefix, then substring."""
        entities = {
            name: Entity(name=name, images=[f"{name}.jpg"])
            for name in ["Bobcat", "Bob", "Jim-Bob", "Alice"]
        }
        names = [s["name"] for s in suggest_entities("bob", entities)]
        assert names == ["Bob", "Bobcat", "Jim-Bob"]

    def test_suggest_empty_returns_all(self, entities):
        assert len(suggest_entities("", entities)) == len(entities)
