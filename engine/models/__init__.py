"""
engine/models/ -- Pydantic v2 models for the Authorio engine.

Submodules:
    book        The Book aggregate and its owned entities.
    context     Change snapshots and advisory impact records.
    wire        REST transfer types and the client <-> wire mapping.
    validators  Structural checks for stored blobs, relationship targets.
"""

from engine.models.book import (
    AIConfig,
    AppData,
    Book,
    BookMetadata,
    Chapter,
    ChapterSection,
    ChapterVersion,
    Character,
    CharacterRelationship,
    PlotPoint,
    ProjectSettings,
    Timeline,
    TimelineEvent,
)
from engine.models.context import ChangeSnapshot, EntityType, Impact, ImpactLevel

__all__ = [
    "AIConfig",
    "AppData",
    "Book",
    "BookMetadata",
    "ChangeSnapshot",
    "Chapter",
    "ChapterSection",
    "ChapterVersion",
    "Character",
    "CharacterRelationship",
    "EntityType",
    "Impact",
    "ImpactLevel",
    "PlotPoint",
    "ProjectSettings",
    "Timeline",
    "TimelineEvent",
]
