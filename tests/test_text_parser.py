"""
Tests for converting pasted text into slides.
"""
from imagedeck.services.text_parser import extract_entity_names, parse_text_to_slides


class TestParseTextToSlides:
    """Tests for parse_text_to_slides."""

    def test_one_slide_per_line(self):
        assert parse_text_to_slides("First\n\nSecond\n   \nThird") == ["First", "Second", "Third"]

    def test_markers_stripped(self):
        text = "- Dash\n* Star\n• Dot\n1. Numbered\n2) Paren"
        assert parse_text_to_slides(text) == ["Dash", "Star", "Dot", "Numbered", "Paren"]

    def test_tilde_references_converted(self):
        assert parse_text_to_slides("~alice meets ~bob-2") == ["@alice meets @bob-2"]

    def test_surrounding_whitespace_trimmed(self):
        assert parse_text_to_slides("   -   Indented  \n") == ["Indented"]

    def test_empty(self):
        assert parse_text_to_slides("") == []
        assert parse_text_to_slides(None) == []


class TestExtractEntityNames:
    """Tests for extract_entity_names."""

    def test_unique_in_order(self):
        assert extract_entity_names("@Bob and @alice then @Bob") == ["Bob", "alice"]

    def test_none(self):
        assert extract_entity_names(None) == []
