"""
app/services/book_session.py -- Top-level context for the open book.

The BookSession owns the ``BookStore`` and the book-scoped ``ChangeHistory``
and is what the autosave reconcilers commit through.  A commit callback
validates the payload on the GUI thread and returns a ``CommitJob``:

    1. merge and lock-check the change (``EntityLockedError`` here)
    2. snapshot the entity's current canonical state
    3. persist through the backend (on the reconciler's worker thread)
    4. install the saved entity, attach it to the snapshot -> impacts
    5. surface the impacts if the change was significant

A refused save discards the snapshot from step 2, so the change log only
records edits that happened.  ``job.run()`` performs all steps in place.

It also aggregates the global tri-state save status shown in the status
bar, and remembers when the last successful save happened.  An
``AuthenticationError`` from any save asks the UI to sign in again via
``EventBus.auth_required``.

Opening another book builds a fresh store *and* a fresh history, so change
logs never leak between books.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from PySide6.QtCore import QObject, Signal

from app.config import AppConfig
from app.services.autosave import (
    STATUS_ERROR,
    STATUS_SAVED,
    STATUS_SAVING,
    AutosaveReconciler,
    ChapterReconciler,
    CharacterReconciler,
    CommitJob,
    MetadataReconciler,
)
from app.services.event_bus import EventBus
from engine.backends import BookBackend
from engine.book_store import BookStore
from engine.change_history import ChangeHistory
from engine.errors import AuthenticationError, AuthorioError, NotFoundError
from engine.impact_analyzer import is_significant_change
from engine.models.book import AIConfig, Book, BookMetadata, Chapter, Character, ProjectSettings
from engine.models.context import EntityType, Impact
from engine.models.validators import find_dangling_relationships
from engine.utils import now_ms

logger = logging.getLogger(__name__)

DEFAULT_AI_MODEL = "gpt-4o"


class BookSession(QObject):
    """Application context for one open book at a time.

    Signals
    -------
    book_changed(str)
        Another book was opened.  Payload is the book ID.
    status_changed(str)
        Global save status: ``"saving"``, ``"saved"`` or ``"error"``.
    entity_committed(str, str)
        (entity_type, entity_id) after a successful commit.
    impacts_reported(str, list)
        (entity_id, impacts) after a significant change.
    """

    book_changed = Signal(str)
    status_changed = Signal(str)
    entity_committed = Signal(str, str)
    impacts_reported = Signal(str, list)

    def __init__(
        self,
        backend: BookBackend,
        config: AppConfig | None = None,
        bus: EventBus | None = None,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self.backend = backend
        self.config = config or AppConfig()
        self.bus = bus
        self._store: BookStore | None = None
        self._history: ChangeHistory | None = None
        self._status: str | None = None
        self.last_saved: int | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def store(self) -> BookStore:
        if self._store is None:
            raise RuntimeError("No book is open")
        return self._store

    @property
    def history(self) -> ChangeHistory:
        if self._history is None:
            raise RuntimeError("No book is open")
        return self._history

    @property
    def book(self) -> Book | None:
        return self._store.book if self._store else None

    @property
    def status(self) -> str | None:
        return self._status

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def list_books(self) -> list[Book]:
        return self.backend.list_books()

    def create_book(self, title: str = "Untitled", author: str = "") -> Book:
        book = self.backend.create_book(Book(metadata=BookMetadata(title=title, author=author)))
        logger.info("Created book %s (%s)", book.id, title)
        return self.open_book(book.id)

    def open_book(self, book_id: str) -> Book:
        """Load a book and give it a fresh store and change history."""
        book = self.backend.load_book(book_id)
        self._store = BookStore(book, self.backend)
        self._history = ChangeHistory(book.id, lambda: self.store.book)
        for issue in find_dangling_relationships(book):
            logger.warning("%s", issue)
        self.last_saved = None
        logger.info("Opened book %s (%s)", book.id, book.metadata.title)
        self.book_changed.emit(book.id)
        if self.bus is not None:
            self.bus.book_opened.emit(book.id)
        return book

    def close_book(self) -> None:
        self._store = None
        self._history = None

    # ------------------------------------------------------------------
    # Reconciler factory
    # ------------------------------------------------------------------

    def create_reconciler(self, entity_type: str, parent: QObject | None = None) -> AutosaveReconciler:
        """Build a reconciler for ``"character"``, ``"chapter"`` or ``"metadata"``."""
        classes: dict[str, tuple[type[AutosaveReconciler], Callable]] = {
            "character": (CharacterReconciler, self.commit_character),
            "chapter": (ChapterReconciler, self.commit_chapter),
            "metadata": (MetadataReconciler, self.commit_metadata),
        }
        cls, commit = classes[entity_type]
        return cls(
            commit,
            debounce_ms=self.config.debounce_ms,
            long_form_ms=self.config.long_form_ms,
            echo_grace_ms=self.config.echo_grace_ms,
            parent=parent,
        )

    # ------------------------------------------------------------------
    # Commit pipeline
    # ------------------------------------------------------------------

    def commit_character(self, character_id: str, payload: dict) -> CommitJob:
        store = self.store
        return self._begin_commit(
            EntityType.CHARACTER, character_id,
            store.get_character(character_id),
            lambda: store.prepare_character(character_id, payload),
            store.persist_character,
            store.accept_character,
        )

    def commit_chapter(self, chapter_id: str, payload: dict) -> CommitJob:
        store = self.store
        return self._begin_commit(
            EntityType.CHAPTER, chapter_id,
            store.get_chapter(chapter_id),
            lambda: store.prepare_chapter(chapter_id, payload),
            store.persist_chapter,
            store.accept_chapter,
        )

    def commit_metadata(self, book_id: str, payload: dict) -> CommitJob:
        store = self.store
        if book_id != store.book_id:
            raise AuthorioError(f"Metadata commit for {book_id!r} but {store.book_id!r} is open")
        staged = self._guarded(lambda: store.prepare_metadata(payload))

        def finish(saved: Book) -> BookMetadata:
            metadata = store.accept_metadata(saved)
            if store is self._store:
                self._after_commit("metadata", book_id)
            return metadata

        return CommitJob(lambda: store.persist_book(staged), finish, self._report_failure)

    def _begin_commit(
        self,
        entity_type: EntityType,
        entity_id: str,
        before: Any,
        prepare: Callable[[], Any],
        persist: Callable[[Any], Any],
        accept: Callable[[Any], Any],
    ) -> CommitJob:
        """Validate on the calling thread and hand back the rest as a job.

        The snapshot is taken here, from the state before the change, and
        is dropped again if the backend refuses the save.
        """
        if before is None:
            exc = NotFoundError(f"{entity_type.value.capitalize()} {entity_id!r} not found")
            self._report_failure(exc)
            raise exc
        merged = self._guarded(prepare)

        store, history = self.store, self.history
        snapshot_id = history.create_snapshot(entity_type, entity_id, before)

        def finish(saved: Any) -> Any:
            after = accept(saved)
            impacts = history.update_snapshot(snapshot_id, after)
            history.cleanup()
            if store is not self._store:
                logger.info("Saved %s %s after its book was closed", entity_type.value, entity_id)
                return after
            logger.info("Committed %s %s", entity_type.value, entity_id)
            if impacts and is_significant_change(entity_type, before, after):
                self._report_impacts(entity_id, impacts)
            self._after_commit(entity_type.value, entity_id)
            return after

        def fail(exc: AuthorioError) -> None:
            history.discard_snapshot(snapshot_id)
            self._report_failure(exc)

        return CommitJob(lambda: persist(merged), finish, fail)

    def _guarded(self, apply: Callable[[], Any]) -> Any:
        self._set_status(STATUS_SAVING)
        try:
            return apply()
        except AuthorioError as exc:
            self._report_failure(exc)
            raise

    def _report_failure(self, exc: AuthorioError) -> None:
        logger.warning("Save failed: %s", exc)
        self._set_status(STATUS_ERROR)
        if self.bus is not None:
            self.bus.error_occurred.emit(str(exc))
            if isinstance(exc, AuthenticationError):
                self.bus.auth_required.emit()

    def _after_commit(self, entity_type: str, entity_id: str) -> None:
        self.last_saved = now_ms()
        self._set_status(STATUS_SAVED)
        self.entity_committed.emit(entity_type, entity_id)
        if self.bus is not None:
            self.bus.entity_updated.emit(entity_type, entity_id)

    def _report_impacts(self, entity_id: str, impacts: list[Impact]) -> None:
        logger.info("%d impacts reported for %s", len(impacts), entity_id)
        self.impacts_reported.emit(entity_id, impacts)
        if self.bus is not None:
            self.bus.impacts_reported.emit(entity_id, impacts)

    def _set_status(self, status: str) -> None:
        if status == self._status:
            return
        self._status = status
        self.status_changed.emit(status)
        if self.bus is not None:
            self.bus.save_status_changed.emit(status)

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------

    def add_character(self, **fields: Any) -> Character:
        character = self._guarded(lambda: self.store.add_character(**fields))
        self._after_commit(EntityType.CHARACTER.value, character.id)
        return character

    def delete_character(self, character_id: str) -> None:
        self._guarded(lambda: self.store.delete_character(character_id))
        self._after_deletion(EntityType.CHARACTER.value, character_id)

    def add_chapter(self, **fields: Any) -> Chapter:
        chapter = self._guarded(lambda: self.store.add_chapter(**fields))
        self._after_commit(EntityType.CHAPTER.value, chapter.id)
        return chapter

    def delete_chapter(self, chapter_id: str) -> None:
        self._guarded(lambda: self.store.delete_chapter(chapter_id))
        self._after_deletion(EntityType.CHAPTER.value, chapter_id)

    def reorder_chapters(self, ordered_ids: list[str]) -> None:
        self._guarded(lambda: self.store.reorder_chapters(ordered_ids))
        self.last_saved = now_ms()
        self._set_status(STATUS_SAVED)

    def _after_deletion(self, entity_type: str, entity_id: str) -> None:
        self.last_saved = now_ms()
        self._set_status(STATUS_SAVED)
        if self.bus is not None:
            self.bus.entity_deleted.emit(entity_type, entity_id)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @staticmethod
    def sanitize_ai_config(config: AIConfig) -> ProjectSettings:
        """Map the settings dialog's AIConfig onto stored project settings."""
        provider = None if config.provider == "none" else config.provider
        return ProjectSettings(
            ai_provider=provider,
            ai_model=(config.model or "").strip() or DEFAULT_AI_MODEL,
            ai_api_key=(config.api_key or "").strip() or None,
        )

    def save_settings(self, config: AIConfig) -> ProjectSettings:
        settings = self.sanitize_ai_config(config)
        self._guarded(lambda: self.store.update_settings(settings))
        self.last_saved = now_ms()
        self._set_status(STATUS_SAVED)
        return settings
