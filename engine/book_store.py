"""
engine/book_store.py -- Canonical in-memory state of the open book.

The BookStore holds the one authoritative ``Book`` and is the only place
that mutates it.  Every mutation is persisted through a ``BookBackend``
first; the in-memory book changes only after the backend accepted it, so a
failed save leaves canonical state untouched.

Rules enforced here:
    - A locked character or chapter refuses field changes with
      ``EntityLockedError``; flipping ``is_locked`` itself is always allowed.
    - Committing a chapter whose title or text changed appends a
      ``ChapterVersion`` holding the *pre-change* title and text.  Only the
      newest ``MAX_CHAPTER_VERSIONS`` versions are kept.
    - Chapter word counts are recomputed from the text on every commit.
    - Deleting a chapter re-indexes the remaining chapters 0..n-1.

Callers get detached copies back; editing a returned entity never
changes the store.

Field updates come in three phases so the backend call can run on a
worker thread:

    prepare_*  merge and validate against canonical state (no mutation)
    persist_*  hand the merged entity to the backend (thread-safe)
    accept_*   install what the backend returned

``update_character`` and friends run all three in a row.  Backend calls
are serialized by one lock per store.

Usage:
    store = BookStore(book, LocalBookBackend(LocalStorage(data_dir)))
    store.update_character(char_id, {"name": "Alicia"})
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable

from pydantic import BaseModel

from engine.backends import BookBackend
from engine.errors import EntityLockedError, NotFoundError, StorageError
from engine.models.book import (
    Book,
    BookMetadata,
    Chapter,
    ChapterVersion,
    Character,
    PlotPoint,
    ProjectSettings,
)
from engine.utils import now_ms

logger = logging.getLogger(__name__)

MAX_CHAPTER_VERSIONS = 50

# Fields a locked entity may still have written.
_LOCK_EXEMPT = frozenset({"is_locked", "updated_at", "created_at", "versions", "word_count"})


def _changes_dict(changes: Any) -> dict[str, Any]:
    if isinstance(changes, BaseModel):
        return changes.model_dump()
    return dict(changes)


class BookStore:
    """Owns the open book and routes every mutation through a backend.

    Parameters
    ----------
    book : Book
        The book as loaded from the backend.
    backend : BookBackend
        Persistence collaborator.
    max_versions : int
        Chapter version history cap.
    """

    def __init__(self, book: Book, backend: BookBackend, max_versions: int = MAX_CHAPTER_VERSIONS):
        self._book = book
        self.backend = backend
        self.max_versions = max_versions
        self._io_lock = threading.Lock()

    @property
    def book(self) -> Book:
        """The canonical book.  Treat as read-only."""
        return self._book

    @property
    def book_id(self) -> str:
        return self._book.id

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_character(self, character_id: str) -> Character | None:
        character = self._book.get_character(character_id)
        return character.model_copy(deep=True) if character else None

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        chapter = self._book.get_chapter(chapter_id)
        return chapter.model_copy(deep=True) if chapter else None

    def _require_character(self, character_id: str) -> Character:
        character = self._book.get_character(character_id)
        if character is None:
            raise NotFoundError(f"Character {character_id!r} not found")
        return character

    def _require_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._book.get_chapter(chapter_id)
        if chapter is None:
            raise NotFoundError(f"Chapter {chapter_id!r} not found")
        return chapter

    @staticmethod
    def _check_lock(current: Character | Chapter, changes: dict[str, Any]) -> None:
        if not current.is_locked:
            return
        before = current.model_dump()
        touched = [
            key for key, value in changes.items()
            if key not in _LOCK_EXEMPT and key in before and before[key] != value
        ]
        if touched:
            logger.debug("Rejected edit of %s on locked %s", touched, current.id)
            raise EntityLockedError(current.id)

    @staticmethod
    def _replace(items: list, entity: Any) -> None:
        for idx, item in enumerate(items):
            if item.id == entity.id:
                items[idx] = entity
                return
        items.append(entity)

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def add_character(self, **fields: Any) -> Character:
        fields.setdefault("name", "New Character")
        character = Character.model_validate(fields)
        with self._io_lock:
            saved = self.backend.create_character(self.book_id, character)
        self._book.characters.append(saved)
        self._book.touch()
        logger.info("Added character %s (%s)", saved.id, saved.name)
        return saved.model_copy(deep=True)

    def update_character(self, character_id: str, changes: Any) -> Character:
        """Apply *changes* (dict or Character) to a character and persist it."""
        merged = self.prepare_character(character_id, changes)
        return self.accept_character(self.persist_character(merged))

    def prepare_character(self, character_id: str, changes: Any) -> Character:
        """Return the character as it will look after *changes*.

        Raises ``NotFoundError`` or ``EntityLockedError``; nothing is
        changed either way.
        """
        current = self._require_character(character_id)
        changes = _changes_dict(changes)
        changes.pop("id", None)
        self._check_lock(current, changes)
        return Character.model_validate({**current.model_dump(), **changes, "updated_at": now_ms()})

    def persist_character(self, character: Character) -> Character:
        with self._io_lock:
            return self.backend.update_character(self.book_id, character)

    def accept_character(self, saved: Character) -> Character:
        self._replace(self._book.characters, saved)
        self._book.touch()
        return saved.model_copy(deep=True)

    def toggle_character_lock(self, character_id: str) -> Character:
        current = self._require_character(character_id)
        return self.update_character(character_id, {"is_locked": not current.is_locked})

    def delete_character(self, character_id: str) -> None:
        self._require_character(character_id)
        with self._io_lock:
            self.backend.delete_character(self.book_id, character_id)
        self._book.characters = [c for c in self._book.characters if c.id != character_id]
        self._book.touch()
        logger.info("Deleted character %s", character_id)

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------

    def add_chapter(self, **fields: Any) -> Chapter:
        position = len(self._book.chapters)
        fields.setdefault("title", f"Chapter {position + 1}")
        fields.setdefault("order", position)
        chapter = Chapter.model_validate(fields)
        chapter.recompute_word_count()
        with self._io_lock:
            saved = self.backend.create_chapter(self.book_id, chapter)
        self._book.chapters.append(saved)
        self._book.touch()
        logger.info("Added chapter %s (%s)", saved.id, saved.title)
        return saved.model_copy(deep=True)

    def update_chapter(self, chapter_id: str, changes: Any) -> Chapter:
        """Apply *changes* to a chapter, versioning the pre-change text.

        A ``versions`` key in *changes* is ignored; the store owns the
        version list.
        """
        merged = self.prepare_chapter(chapter_id, changes)
        return self.accept_chapter(self.persist_chapter(merged))

    def prepare_chapter(self, chapter_id: str, changes: Any) -> Chapter:
        current = self._require_chapter(chapter_id)
        changes = _changes_dict(changes)
        changes.pop("id", None)
        changes.pop("versions", None)
        self._check_lock(current, changes)

        merged = Chapter.model_validate({**current.model_dump(), **changes, "updated_at": now_ms()})
        if merged.title != current.title or merged.flattened_text() != current.flattened_text():
            versions = list(current.versions)
            versions.append(ChapterVersion(title=current.title, content=current.flattened_text()))
            merged.versions = versions[-self.max_versions:]
        merged.recompute_word_count()
        return merged

    def persist_chapter(self, chapter: Chapter) -> Chapter:
        with self._io_lock:
            return self.backend.update_chapter(self.book_id, chapter)

    def accept_chapter(self, saved: Chapter) -> Chapter:
        self._replace(self._book.chapters, saved)
        self._book.touch()
        return saved.model_copy(deep=True)

    def toggle_chapter_lock(self, chapter_id: str) -> Chapter:
        current = self._require_chapter(chapter_id)
        return self.update_chapter(chapter_id, {"is_locked": not current.is_locked})

    def delete_chapter(self, chapter_id: str) -> None:
        """Delete a chapter and close the gap in the reading order."""
        self._require_chapter(chapter_id)
        with self._io_lock:
            self.backend.delete_chapter(self.book_id, chapter_id)
        self._book.chapters = [c for c in self._book.chapters if c.id != chapter_id]

        changed = []
        for position, chapter in enumerate(self._book.chapters_in_order()):
            if chapter.order != position:
                chapter.order = position
                changed.append((chapter.id, position))
        if changed:
            with self._io_lock:
                self.backend.reorder_chapters(self.book_id, changed)
        self._book.touch()
        logger.info("Deleted chapter %s", chapter_id)

    def reorder_chapters(self, ordered_ids: Iterable[str]) -> None:
        """Assign ``order`` by position in *ordered_ids*.

        *ordered_ids* must name every chapter of the book exactly once.
        """
        ordered_ids = list(ordered_ids)
        if sorted(ordered_ids) != sorted(c.id for c in self._book.chapters):
            raise ValueError("reorder_chapters needs every chapter id exactly once")
        orders = [(cid, position) for position, cid in enumerate(ordered_ids)]
        with self._io_lock:
            self.backend.reorder_chapters(self.book_id, orders)
        for cid, position in orders:
            self._require_chapter(cid).order = position
        self._book.touch()

    # ------------------------------------------------------------------
    # Book-level fields
    # ------------------------------------------------------------------

    def _persist_book(self, attr: str, value: Any) -> None:
        previous = getattr(self._book, attr)
        previous_updated = self._book.updated_at
        setattr(self._book, attr, value)
        self._book.touch()
        try:
            with self._io_lock:
                self.backend.update_book(self._book)
        except StorageError:
            setattr(self._book, attr, previous)
            self._book.updated_at = previous_updated
            raise

    def update_metadata(self, changes: Any) -> BookMetadata:
        return self.accept_metadata(self.persist_book(self.prepare_metadata(changes)))

    def prepare_metadata(self, changes: Any) -> Book:
        """Detached copy of the book carrying the merged metadata."""
        merged = BookMetadata.model_validate({**self._book.metadata.model_dump(), **_changes_dict(changes)})
        staged = self._book.model_copy(deep=True)
        staged.metadata = merged
        staged.touch()
        return staged

    def persist_book(self, staged: Book) -> Book:
        with self._io_lock:
            self.backend.update_book(staged)
        return staged

    def accept_metadata(self, staged: Book) -> BookMetadata:
        self._book.metadata = staged.metadata.model_copy(deep=True)
        self._book.updated_at = staged.updated_at
        return staged.metadata.model_copy(deep=True)

    def update_settings(self, settings: ProjectSettings | None) -> None:
        self._persist_book("settings", settings.model_copy() if settings else None)

    # ------------------------------------------------------------------
    # Plot points
    # ------------------------------------------------------------------

    def add_plot_point(self, **fields: Any) -> PlotPoint:
        fields.setdefault("order", len(self._book.plot_points))
        plot = PlotPoint.model_validate(fields)
        self._persist_book("plot_points", [*self._book.plot_points, plot])
        return plot.model_copy(deep=True)

    def update_plot_point(self, plot_id: str, changes: Any) -> PlotPoint:
        current = self._book.get_plot_point(plot_id)
        if current is None:
            raise NotFoundError(f"Plot point {plot_id!r} not found")
        changes = _changes_dict(changes)
        changes.pop("id", None)
        merged = PlotPoint.model_validate({**current.model_dump(), **changes})
        self._persist_book(
            "plot_points", [merged if p.id == plot_id else p for p in self._book.plot_points],
        )
        return merged.model_copy(deep=True)

    def delete_plot_point(self, plot_id: str) -> None:
        if self._book.get_plot_point(plot_id) is None:
            raise NotFoundError(f"Plot point {plot_id!r} not found")
        self._persist_book("plot_points", [p for p in self._book.plot_points if p.id != plot_id])
