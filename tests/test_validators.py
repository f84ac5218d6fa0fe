"""
Tests for engine/models/validators.py -- structural blob checks and
relationship-target resolution.
"""

from engine.models.book import AppData, Character, CharacterRelationship
from engine.models.validators import (
    find_dangling_relationships,
    is_valid_app_data,
    resolve_relationships,
    validate_app_data,
)


class TestValidateAppData:
    def test_serialised_app_data_is_valid(self, sample_book):
        blob = AppData(books=[sample_book]).to_json_dict()
        assert validate_app_data(blob) == []
        assert is_valid_app_data(blob)

    def test_empty_books_is_valid(self):
        assert validate_app_data({"books": []}) == []

    def test_not_an_object(self):
        assert validate_app_data([]) != []
        assert not is_valid_app_data("books")

    def test_books_must_be_array(self):
        issues = validate_app_data({"books": {}})
        assert len(issues) == 1
        assert issues[0].startswith("books:")

    def test_missing_book_fields_reported_with_path(self):
        issues = validate_app_data({"books": [{"id": "b", "metadata": {"title": "T"}, "characters": []}]})
        assert any("chapters" in i for i in issues)
        assert all(i.startswith("books/0") for i in issues)

    def test_character_without_id(self):
        blob = {"books": [{
            "id": "b", "metadata": {"title": "T"},
            "characters": [{"name": "A", "type": "main"}],
            "chapters": [],
        }]}
        assert not is_valid_app_data(blob)

    def test_chapter_content_must_be_string(self):
        blob = {"books": [{
            "id": "b", "metadata": {"title": "T"},
            "characters": [],
            "chapters": [{"id": "c", "title": "One", "content": None}],
        }]}
        issues = validate_app_data(blob)
        assert any("books/0/chapters/0/content" in i for i in issues)

    def test_blank_names_are_tolerated(self):
        blob = {"books": [{
            "id": "b", "metadata": {"title": ""},
            "characters": [{"id": "c", "name": "", "type": "main"}],
            "chapters": [{"id": "ch", "title": "", "content": ""}],
        }]}
        assert is_valid_app_data(blob)


class TestRelationships:
    def test_resolve_drops_unknown_targets(self, sample_book):
        bob = sample_book.get_character("char-bob")
        bob.relationships.append(
            CharacterRelationship(target_character_id="ghost", relationship_type="enemy")
        )
        resolved = resolve_relationships(bob, sample_book)
        assert [r.target_character_id for r in resolved] == ["char-alice"]

    def test_character_without_relationships(self, sample_book):
        assert resolve_relationships(Character(name="Lone"), sample_book) == []

    def test_find_dangling(self, sample_book):
        assert find_dangling_relationships(sample_book) == []
        sample_book.get_character("char-alice").relationships.append(
            CharacterRelationship(target_character_id="ghost", relationship_type="enemy")
        )
        issues = find_dangling_relationships(sample_book)
        assert len(issues) == 1
        assert "ghost" in issues[0]
        assert "Alice" in issues[0]
