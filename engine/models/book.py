"""
engine/models/book.py -- Pydantic v2 models for the Book aggregate.

Python attribute names are snake_case; the JSON representation used by the
local store and by history snapshots is camelCase (``biography``,
``isLocked``, ``targetCharacterId`` ...) through an alias generator.  Both
spellings are accepted on input.

The Book owns its characters, chapters, plot points and timeline
exclusively; nothing here is shared between books.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from engine.utils import count_words, generate_id, now_ms

CharacterType = Literal["main", "secondary", "tertiary"]
PlotCategory = Literal["setup", "conflict", "climax", "resolution", "other"]
AIProvider = Literal["openai", "anthropic"]


class AuthorioModel(BaseModel):
    """Base for every client-side model (camelCase JSON, snake_case Python)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Serialise to the camelCase JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


# ------------------------------------------------------------------
# Characters
# ------------------------------------------------------------------

class CharacterRelationship(AuthorioModel):
    """Directed edge from one character to another."""

    target_character_id: str = ""
    relationship_type: str = ""
    description: str = ""


class Character(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("character"))
    name: str = ""
    type: CharacterType = "main"
    description: str = ""
    biography: str = ""
    character_arc: Optional[str] = None
    age: Optional[int] = None
    role: Optional[str] = None
    relationships: list[CharacterRelationship] = Field(default_factory=list)
    is_locked: bool = False
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


# ------------------------------------------------------------------
# Chapters
# ------------------------------------------------------------------

class ChapterVersion(AuthorioModel):
    """Pre-change copy of a chapter's title and content."""

    content: str = ""
    title: str = ""
    timestamp: int = Field(default_factory=now_ms)


class ChapterSection(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("section"))
    title: str = ""
    content: str = ""
    order: int = 0
    word_count: Optional[int] = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class Chapter(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("chapter"))
    title: str = ""
    content: str = ""
    order: int = 0
    synopsis: Optional[str] = None
    notes: Optional[str] = None
    word_count: int = 0
    is_locked: bool = False
    versions: list[ChapterVersion] = Field(default_factory=list)
    sections: list[ChapterSection] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def flattened_text(self) -> str:
        """Return the chapter prose as one string.

        Sections (newer model) win over the legacy ``content`` blob when
        present.  Sections are joined in ``order``; ties keep list order.
        """
        if self.sections:
            ordered = sorted(self.sections, key=lambda s: s.order)
            return "\n\n".join(s.content for s in ordered)
        return self.content

    def recompute_word_count(self) -> int:
        """Refresh ``word_count`` (and per-section counts) from the text."""
        for section in self.sections:
            section.word_count = count_words(section.content)
        self.word_count = count_words(self.flattened_text())
        return self.word_count


# ------------------------------------------------------------------
# Plot / timeline
# ------------------------------------------------------------------

class PlotPoint(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("plot"))
    title: str = ""
    description: str = ""
    chapter_id: Optional[str] = None
    character_ids: list[str] = Field(default_factory=list)
    order: int = 0
    category: PlotCategory = "other"


class TimelineEvent(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("event"))
    title: str = ""
    description: str = ""
    timestamp: str = ""
    chapter_id: Optional[str] = None
    character_ids: list[str] = Field(default_factory=list)


class Timeline(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("timeline"))
    events: list[TimelineEvent] = Field(default_factory=list)


# ------------------------------------------------------------------
# Book aggregate
# ------------------------------------------------------------------

class BookMetadata(AuthorioModel):
    title: str = "Untitled"
    author: str = ""
    genre: str = ""
    subtitle: Optional[str] = None
    target_word_count: Optional[int] = None
    synopsis: Optional[str] = None
    themes: list[str] = Field(default_factory=list)
    cover_image: Optional[str] = None


class ProjectSettings(AuthorioModel):
    ai_provider: Optional[AIProvider] = None
    ai_model: Optional[str] = None
    ai_api_key: Optional[str] = None


class Book(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("book"))
    metadata: BookMetadata = Field(default_factory=BookMetadata)
    characters: list[Character] = Field(default_factory=list)
    chapters: list[Chapter] = Field(default_factory=list)
    plot_points: list[PlotPoint] = Field(default_factory=list)
    timeline: Timeline = Field(default_factory=Timeline)
    settings: Optional[ProjectSettings] = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def get_character(self, character_id: str) -> Character | None:
        return next((c for c in self.characters if c.id == character_id), None)

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        return next((c for c in self.chapters if c.id == chapter_id), None)

    def get_plot_point(self, plot_id: str) -> PlotPoint | None:
        return next((p for p in self.plot_points if p.id == plot_id), None)

    def chapters_in_order(self) -> list[Chapter]:
        """Chapters in reading order; duplicate orders keep list order."""
        return sorted(self.chapters, key=lambda c: c.order)

    def touch(self) -> None:
        self.updated_at = now_ms()


# ------------------------------------------------------------------
# Application-wide data (offline store blob)
# ------------------------------------------------------------------

class AIConfig(AuthorioModel):
    provider: Literal["openai", "anthropic", "none"] = "none"
    api_key: str = ""
    model: str = "gpt-4o"


class AppData(AuthorioModel):
    books: list[Book] = Field(default_factory=list)
    current_book_id: Optional[str] = None
    ai_config: AIConfig = Field(default_factory=AIConfig)

    def get_book(self, book_id: str) -> Book | None:
        return next((b for b in self.books if b.id == book_id), None)
