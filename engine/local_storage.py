"""
engine/local_storage.py -- Offline persistence of the whole AppData blob.

In offline mode everything (all books, the current book id and the AI
configuration) is serialised into one JSON file,
``<data_dir>/authorio_app_data.json``.  Writes are atomic.  On load the
blob must pass the structural check in ``engine.models.validators`` before
pydantic parses it; a blob that fails is reported and ignored rather than
half-loaded.

Classes:
    LocalStorage      save / load / backup / restore / clear / info.
    LocalBookBackend  ``BookBackend`` implementation over LocalStorage.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError

from engine.errors import NotFoundError, StorageError
from engine.models.book import AIConfig, AppData, Book, Chapter, Character
from engine.models.validators import is_valid_app_data, validate_app_data
from engine.utils import now_ms, safe_read_json, safe_write_json

logger = logging.getLogger(__name__)

STORAGE_FILENAME = "authorio_app_data.json"
STORAGE_BUDGET_BYTES = 5 * 1024 * 1024
BACKUP_VERSION = "1.0"


class LocalStorage:
    """File-backed store for the AppData blob.

    Parameters
    ----------
    data_dir : str or pathlib.Path
        Directory holding the blob; created on first save.
    """

    def __init__(self, data_dir: str | os.PathLike):
        self.path = Path(data_dir) / STORAGE_FILENAME

    def save_data(self, data: AppData) -> bool:
        """Write *data* atomically.  Returns ``False`` on I/O failure."""
        try:
            safe_write_json(self.path, data.to_json_dict())
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save data to %s: %s", self.path, exc)
            return False
        logger.debug(
            "Data saved: %d books, current=%s", len(data.books), data.current_book_id,
        )
        return True

    def load_data(self) -> AppData | None:
        """Read and validate the stored blob.

        Returns ``None`` when nothing is stored or the blob is unusable.
        """
        raw = safe_read_json(self.path)
        if raw is None:
            logger.info("No saved data found at %s", self.path)
            return None

        issues = validate_app_data(raw)
        if issues:
            logger.warning(
                "Stored data failed validation (%d issues): %s",
                len(issues), "; ".join(issues[:5]),
            )
            return None
        try:
            data = AppData.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Stored data could not be parsed: %s", exc)
            return None
        logger.info("Loaded %d books from %s", len(data.books), self.path)
        return data

    def create_backup(self, data: AppData) -> str:
        """Return a JSON backup string tagged with a timestamp and version."""
        payload = data.to_json_dict()
        payload["backupTimestamp"] = now_ms()
        payload["version"] = BACKUP_VERSION
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def restore_from_backup(self, backup: str) -> AppData | None:
        """Parse a backup string; the backup tags are stripped."""
        try:
            payload = json.loads(backup)
            if not isinstance(payload, dict):
                raise ValueError("backup is not a JSON object")
            payload.pop("backupTimestamp", None)
            payload.pop("version", None)
            return AppData.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            logger.error("Failed to restore from backup: %s", exc)
            return None

    def clear_data(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Failed to clear data: %s", exc)
            return False
        logger.info("Stored data cleared")
        return True

    def get_storage_info(self) -> dict[str, int]:
        """Bytes used by the blob and bytes left in the 5 MiB budget."""
        try:
            used = self.path.stat().st_size
        except FileNotFoundError:
            used = 0
        return {"used": used, "available": STORAGE_BUDGET_BYTES - used}

    @staticmethod
    def validate_data(data: Any) -> bool:
        return is_valid_app_data(data)


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class LocalBookBackend:
    """``BookBackend`` that keeps every book in one LocalStorage blob.

    The blob is loaded once and written back after every mutation.  Returned
    entities are detached copies so callers never alias stored state.
    """

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self.data = storage.load_data() or AppData()

    def _flush(self) -> None:
        if not self.storage.save_data(self.data):
            raise StorageError(f"Could not write {self.storage.path}")

    def _book(self, book_id: str) -> Book:
        book = self.data.get_book(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id!r} not found")
        return book

    @staticmethod
    def _index(items: list, entity_id: str, kind: str) -> int:
        for idx, item in enumerate(items):
            if item.id == entity_id:
                return idx
        raise NotFoundError(f"{kind} {entity_id!r} not found")

    # -- app-level state ------------------------------------------------

    @property
    def current_book_id(self) -> str | None:
        return self.data.current_book_id

    def set_current_book(self, book_id: str | None) -> None:
        self.data.current_book_id = book_id
        self._flush()

    @property
    def ai_config(self) -> AIConfig:
        return self.data.ai_config.model_copy()

    def save_ai_config(self, config: AIConfig) -> None:
        self.data.ai_config = config.model_copy()
        self._flush()

    # -- books ----------------------------------------------------------

    def list_books(self) -> list[Book]:
        return [b.model_copy(deep=True) for b in self.data.books]

    def load_book(self, book_id: str) -> Book:
        return self._book(book_id).model_copy(deep=True)

    def create_book(self, book: Book) -> Book:
        self.data.books.append(book.model_copy(deep=True))
        self._flush()
        return book.model_copy(deep=True)

    def update_book(self, book: Book) -> Book:
        stored = self._book(book.id)
        stored.metadata = book.metadata.model_copy(deep=True)
        stored.settings = book.settings.model_copy() if book.settings else None
        stored.plot_points = [p.model_copy(deep=True) for p in book.plot_points]
        stored.timeline = book.timeline.model_copy(deep=True)
        stored.updated_at = book.updated_at
        self._flush()
        return stored.model_copy(deep=True)

    def delete_book(self, book_id: str) -> None:
        idx = self._index(self.data.books, book_id, "Book")
        del self.data.books[idx]
        if self.data.current_book_id == book_id:
            self.data.current_book_id = None
        self._flush()

    # -- characters -----------------------------------------------------

    def create_character(self, book_id: str, character: Character) -> Character:
        self._book(book_id).characters.append(character.model_copy(deep=True))
        self._flush()
        return character.model_copy(deep=True)

    def update_character(self, book_id: str, character: Character) -> Character:
        book = self._book(book_id)
        book.characters[self._index(book.characters, character.id, "Character")] = (
            character.model_copy(deep=True)
        )
        self._flush()
        return character.model_copy(deep=True)

    def delete_character(self, book_id: str, character_id: str) -> None:
        book = self._book(book_id)
        del book.characters[self._index(book.characters, character_id, "Character")]
        self._flush()

    # -- chapters -------------------------------------------------------

    def create_chapter(self, book_id: str, chapter: Chapter) -> Chapter:
        self._book(book_id).chapters.append(chapter.model_copy(deep=True))
        self._flush()
        return chapter.model_copy(deep=True)

    def update_chapter(self, book_id: str, chapter: Chapter) -> Chapter:
        book = self._book(book_id)
        book.chapters[self._index(book.chapters, chapter.id, "Chapter")] = (
            chapter.model_copy(deep=True)
        )
        self._flush()
        return chapter.model_copy(deep=True)

    def delete_chapter(self, book_id: str, chapter_id: str) -> None:
        book = self._book(book_id)
        del book.chapters[self._index(book.chapters, chapter_id, "Chapter")]
        self._flush()

    def reorder_chapters(self, book_id: str, orders: Sequence[tuple[str, int]]) -> None:
        book = self._book(book_id)
        new_orders = dict(orders)
        for chapter in book.chapters:
            if chapter.id in new_orders:
                chapter.order = new_orders[chapter.id]
        self._flush()
