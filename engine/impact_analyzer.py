"""
engine/impact_analyzer.py -- Advisory impact rules for entity changes.

Given the state of an entity before and after a change, produce a list of
``Impact`` notes.  Impacts are advice for the author; nothing here edits
chapter prose or blocks a save.

Rules:
    character name changed            high    -> chapters
    character biography/description   medium  -> chapters
    chapter content changed           medium  -> characters
    chapter title changed             low     -> plot points

Reordering chapters, editing relationships and editing plot points do not
produce impacts.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from engine.models.context import EntityType, Impact, ImpactLevel


def _as_dict(state: Any) -> dict[str, Any]:
    if state is None:
        return {}
    if isinstance(state, BaseModel):
        return state.model_dump()
    return dict(state)


def _chapter_text(state: dict[str, Any]) -> str:
    sections = state.get("sections") or []
    if sections:
        ordered = sorted(sections, key=lambda s: s.get("order", 0))
        return "\n\n".join(s.get("content", "") for s in ordered)
    return state.get("content", "") or ""


def analyze_character_change(before: Any, after: Any) -> list[Impact]:
    before, after = _as_dict(before), _as_dict(after)
    impacts: list[Impact] = []

    old_name, new_name = before.get("name", ""), after.get("name", "")
    if old_name != new_name:
        impacts.append(Impact(
            target_type=EntityType.CHAPTER,
            severity=ImpactLevel.HIGH,
            description=(
                f'Character name changed from "{old_name}" to "{new_name}". '
                "All chapters mentioning this character need to be updated."
            ),
            suggested_actions=[
                "Update all chapter content with the new character name",
                "Review character relationships for consistency",
                "Check plot points that reference this character",
            ],
        ))

    if (before.get("biography", "") != after.get("biography", "")
            or before.get("description", "") != after.get("description", "")):
        impacts.append(Impact(
            target_type=EntityType.CHAPTER,
            severity=ImpactLevel.MEDIUM,
            description=(
                "Character personality or backstory has changed. "
                "Existing scenes may need adjustment."
            ),
            suggested_actions=[
                "Review chapters featuring this character for consistency",
                "Update character dialogue and actions to match new personality",
                "Consider adding new scenes that reflect the updated backstory",
            ],
        ))

    return impacts


def analyze_chapter_change(before: Any, after: Any) -> list[Impact]:
    before, after = _as_dict(before), _as_dict(after)
    impacts: list[Impact] = []

    if _chapter_text(before) != _chapter_text(after):
        impacts.append(Impact(
            target_type=EntityType.CHARACTER,
            severity=ImpactLevel.MEDIUM,
            description=(
                "Chapter content has been modified. Character development "
                "and plot progression may be affected."
            ),
            suggested_actions=[
                "Review character arcs to ensure consistency",
                "Check if plot points need updating",
                "Verify timeline continuity",
            ],
        ))

    old_title, new_title = before.get("title", ""), after.get("title", "")
    if old_title != new_title:
        impacts.append(Impact(
            target_type=EntityType.PLOT,
            severity=ImpactLevel.LOW,
            description=(
                f'Chapter title changed from "{old_title}" to "{new_title}". '
                "Update any plot points that reference this chapter."
            ),
            suggested_actions=[
                "Update plot point references",
                "Check story arc visualization",
                "Review chapter synopsis",
            ],
        ))

    return impacts


def analyze_impact(entity_type: EntityType | str, before: Any, after: Any) -> list[Impact]:
    """Dispatch to the rule set for *entity_type*; other types yield ``[]``."""
    entity_type = EntityType(entity_type)
    if entity_type is EntityType.CHARACTER:
        return analyze_character_change(before, after)
    if entity_type is EntityType.CHAPTER:
        return analyze_chapter_change(before, after)
    return []


def is_significant_change(entity_type: EntityType | str, before: Any, after: Any) -> bool:
    """True when a change touches a field that the impact rules look at."""
    entity_type = EntityType(entity_type)
    before, after = _as_dict(before), _as_dict(after)
    if entity_type is EntityType.CHARACTER:
        fields = ("name", "biography", "description")
    elif entity_type is EntityType.CHAPTER:
        if _chapter_text(before) != _chapter_text(after):
            return True
        fields = ("title",)
    else:
        return False
    return any(before.get(f, "") != after.get(f, "") for f in fields)
