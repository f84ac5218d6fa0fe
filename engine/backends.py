"""
engine/backends.py -- Storage collaborator protocol.

The BookStore talks to persistence only through ``BookBackend``.  Two
implementations exist: ``engine.cloud_storage.CloudBookBackend`` (REST) and
``engine.local_storage.LocalBookBackend`` (whole-blob file store).

Every method either returns the canonical (server-echoed) value or raises a
``engine.errors.StorageError`` subclass.  Update semantics are
last-write-wins.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from engine.models.book import Book, Chapter, Character


class BookBackend(Protocol):
    def list_books(self) -> list[Book]: ...

    def load_book(self, book_id: str) -> Book: ...

    def create_book(self, book: Book) -> Book: ...

    def update_book(self, book: Book) -> Book: ...

    def delete_book(self, book_id: str) -> None: ...

    def create_character(self, book_id: str, character: Character) -> Character: ...

    def update_character(self, book_id: str, character: Character) -> Character: ...

    def delete_character(self, book_id: str, character_id: str) -> None: ...

    def create_chapter(self, book_id: str, chapter: Chapter) -> Chapter: ...

    def update_chapter(self, book_id: str, chapter: Chapter) -> Chapter: ...

    def delete_chapter(self, book_id: str, chapter_id: str) -> None: ...

    def reorder_chapters(self, book_id: str, orders: Sequence[tuple[str, int]]) -> None: ...
