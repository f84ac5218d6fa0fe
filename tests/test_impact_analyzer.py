"""
Tests for engine/impact_analyzer.py -- advisory impact rules.
"""

from engine.impact_analyzer import (
    analyze_chapter_change,
    analyze_character_change,
    analyze_impact,
    is_significant_change,
)
from engine.models.book import Chapter, ChapterSection, Character
from engine.models.context import EntityType, ImpactLevel


def _severities(impacts):
    return [i.severity for i in impacts]


class TestCharacterRules:
    def test_rename_gives_one_high_impact_on_chapters(self):
        before = Character(id="c", name="Alice")
        after = before.model_copy(update={"name": "Alicia"})
        impacts = analyze_character_change(before, after)
        assert _severities(impacts) == [ImpactLevel.HIGH]
        assert impacts[0].target_type is EntityType.CHAPTER
        assert '"Alice"' in impacts[0].description and '"Alicia"' in impacts[0].description
        assert impacts[0].suggested_actions

    def test_biography_edit_gives_one_medium_impact(self):
        before = Character(id="c", name="Alice", biography="old")
        after = before.model_copy(update={"biography": "new"})
        impacts = analyze_character_change(before, after)
        assert _severities(impacts) == [ImpactLevel.MEDIUM]
        assert impacts[0].target_type is EntityType.CHAPTER

    def test_description_edit_gives_medium_impact(self):
        impacts = analyze_character_change({"description": "a"}, {"description": "b"})
        assert _severities(impacts) == [ImpactLevel.MEDIUM]

    def test_rename_and_bio_edit_give_both(self):
        impacts = analyze_character_change(
            {"name": "A", "biography": "x"}, {"name": "B", "biography": "y"},
        )
        assert _severities(impacts) == [ImpactLevel.HIGH, ImpactLevel.MEDIUM]

    def test_relationship_edit_has_no_impact(self):
        impacts = analyze_character_change(
            {"name": "A", "relationships": []},
            {"name": "A", "relationships": [{"targetCharacterId": "b"}]},
        )
        assert impacts == []


class TestChapterRules:
    def test_content_change_gives_medium_impact_on_characters(self):
        impacts = analyze_chapter_change(
            Chapter(title="T", content="one"), Chapter(title="T", content="two"),
        )
        assert _severities(impacts) == [ImpactLevel.MEDIUM]
        assert impacts[0].target_type is EntityType.CHARACTER

    def test_title_change_gives_low_impact_on_plot(self):
        impacts = analyze_chapter_change({"title": "A", "content": "x"}, {"title": "B", "content": "x"})
        assert _severities(impacts) == [ImpactLevel.LOW]
        assert impacts[0].target_type is EntityType.PLOT

    def test_section_change_counts_as_content_change(self):
        before = Chapter(title="T", sections=[ChapterSection(id="s", content="a")])
        after = Chapter(title="T", sections=[ChapterSection(id="s", content="b")])
        assert _severities(analyze_chapter_change(before, after)) == [ImpactLevel.MEDIUM]

    def test_reorder_has_no_impact(self):
        assert analyze_chapter_change({"title": "T", "order": 0}, {"title": "T", "order": 3}) == []


class TestDispatch:
    def test_plot_changes_have_no_rule(self):
        assert analyze_impact(EntityType.PLOT, {"title": "a"}, {"title": "b"}) == []

    def test_string_entity_type(self):
        assert len(analyze_impact("character", {"name": "a"}, {"name": "b"})) == 1

    def test_unchanged_entity(self):
        c = Character(name="Same")
        assert analyze_impact(EntityType.CHARACTER, c, c) == []


class TestSignificantChange:
    def test_character_fields(self):
        assert is_significant_change("character", {"name": "a"}, {"name": "b"})
        assert is_significant_change("character", {"biography": "a"}, {"biography": "b"})
        assert not is_significant_change("character", {"role": "a"}, {"role": "b"})

    def test_chapter_fields(self):
        assert is_significant_change("chapter", {"content": "a"}, {"content": "b"})
        assert is_significant_change("chapter", {"title": "a"}, {"title": "b"})
        assert not is_significant_change("chapter", {"notes": "a"}, {"notes": "b"})

    def test_other_types(self):
        assert not is_significant_change("plot", {"title": "a"}, {"title": "b"})
