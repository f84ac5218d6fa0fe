"""
Tests for engine/models/book.py and engine/models/context.py.
"""

import pytest
from pydantic import ValidationError

from engine.models import (
    AppData,
    Book,
    ChangeSnapshot,
    Chapter,
    ChapterSection,
    Character,
    CharacterRelationship,
    EntityType,
    Impact,
    ImpactLevel,
)


class TestCharacter:
    def test_defaults(self):
        c = Character(name="Alice")
        assert c.id.startswith("character_")
        assert c.type == "main"
        assert c.relationships == []
        assert c.is_locked is False
        assert c.created_at > 0

    def test_json_dict_uses_camel_case(self):
        c = Character(
            name="Bob",
            character_arc="grows up",
            relationships=[CharacterRelationship(target_character_id="x", relationship_type="friend")],
            is_locked=True,
        )
        data = c.to_json_dict()
        assert data["characterArc"] == "grows up"
        assert data["isLocked"] is True
        assert data["relationships"][0]["targetCharacterId"] == "x"
        assert data["relationships"][0]["relationshipType"] == "friend"

    def test_accepts_both_spellings(self):
        a = Character.model_validate({"name": "A", "isLocked": True})
        b = Character.model_validate({"name": "A", "is_locked": True})
        assert a.is_locked and b.is_locked

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            Character(name="A", type="villain")

    def test_ids_are_unique(self):
        assert Character().id != Character().id


class TestChapterText:
    def test_flattened_text_uses_content_without_sections(self):
        ch = Chapter(content="Once upon a time.")
        assert ch.flattened_text() == "Once upon a time."

    def test_flattened_text_joins_sections_in_order(self):
        ch = Chapter(
            content="ignored legacy text",
            sections=[
                ChapterSection(content="second", order=1),
                ChapterSection(content="first", order=0),
            ],
        )
        assert ch.flattened_text() == "first\n\nsecond"

    def test_duplicate_section_orders_keep_list_order(self):
        ch = Chapter(sections=[
            ChapterSection(content="a", order=0),
            ChapterSection(content="b", order=0),
        ])
        assert ch.flattened_text() == "a\n\nb"

    def test_recompute_word_count(self):
        ch = Chapter(sections=[
            ChapterSection(content="one two", order=0),
            ChapterSection(content="three", order=1),
        ])
        assert ch.recompute_word_count() == 3
        assert ch.word_count == 3
        assert [s.word_count for s in ch.sections] == [2, 1]

    def test_empty_chapter_has_zero_words(self):
        ch = Chapter(content="   ")
        assert ch.recompute_word_count() == 0


class TestBook:
    def test_lookups(self, sample_book):
        assert sample_book.get_character("char-alice").name == "Alice"
        assert sample_book.get_chapter("chap-2").title == "The Market"
        assert sample_book.get_plot_point("plot-1").category == "setup"
        assert sample_book.get_character("missing") is None

    def test_chapters_in_order_is_stable(self):
        book = Book(chapters=[
            Chapter(id="b", order=1),
            Chapter(id="a", order=0),
            Chapter(id="c", order=1),
        ])
        assert [c.id for c in book.chapters_in_order()] == ["a", "b", "c"]

    def test_touch_advances_timestamp(self, sample_book):
        sample_book.updated_at = 0
        sample_book.touch()
        assert sample_book.updated_at > 0

    def test_metadata_defaults(self):
        assert Book().metadata.title == "Untitled"


class TestAppData:
    def test_round_trip_through_json_dict(self, sample_book):
        data = AppData(books=[sample_book], current_book_id=sample_book.id)
        restored = AppData.model_validate(data.to_json_dict())
        assert restored.current_book_id == "book-1"
        assert restored.get_book("book-1").characters[1].relationships[0].target_character_id == "char-alice"
        assert restored.ai_config.model == "gpt-4o"


class TestContextModels:
    def test_snapshot_defaults(self):
        snap = ChangeSnapshot(entity_type=EntityType.CHARACTER, entity_id="c1")
        assert snap.id.startswith("snapshot_")
        assert snap.changes is None
        assert snap.impact == []
        assert snap.analysed is False

    def test_impact_serialises_enums_as_strings(self):
        impact = Impact(target_type=EntityType.CHAPTER, severity=ImpactLevel.HIGH, description="x")
        data = impact.to_json_dict()
        assert data["targetType"] == "chapter"
        assert data["severity"] == "high"
