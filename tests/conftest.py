"""
Shared pytest fixtures for the Authorio test suite.

Provides:
    - project_root: path to the real project root
    - sample_book: a small Book with two characters, two chapters and a plot point
    - memory_backend: an in-memory BookBackend that records calls and can fail
    - local_storage / local_backend: file store in a temporary directory
"""

import os
import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure engine/ and app/ are importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from engine.errors import NotFoundError  # noqa: E402
from engine.local_storage import LocalBookBackend, LocalStorage  # noqa: E402
from engine.models.book import (  # noqa: E402
    Book,
    BookMetadata,
    Chapter,
    Character,
    CharacterRelationship,
    PlotPoint,
)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryBackend:
    """BookBackend double: keeps books in a dict and logs every call.

    Set ``fail_with`` to an exception instance to make the next calls raise it.
    """

    def __init__(self, books=None):
        self.books = {b.id: b.model_copy(deep=True) for b in (books or [])}
        self.calls = []
        self.fail_with = None

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if self.fail_with is not None:
            raise self.fail_with

    def _book(self, book_id):
        if book_id not in self.books:
            raise NotFoundError(f"Book {book_id!r} not found")
        return self.books[book_id]

    def calls_named(self, name):
        return [c for c in self.calls if c[0] == name]

    def list_books(self):
        self._record("list_books")
        return [b.model_copy(deep=True) for b in self.books.values()]

    def load_book(self, book_id):
        self._record("load_book", book_id)
        return self._book(book_id).model_copy(deep=True)

    def create_book(self, book):
        self._record("create_book", book.id)
        self.books[book.id] = book.model_copy(deep=True)
        return book.model_copy(deep=True)

    def update_book(self, book):
        self._record("update_book", book.id)
        self.books[book.id] = book.model_copy(deep=True)
        return book.model_copy(deep=True)

    def delete_book(self, book_id):
        self._record("delete_book", book_id)
        self.books.pop(book_id, None)

    def create_character(self, book_id, character):
        self._record("create_character", book_id, character.id)
        return character.model_copy(deep=True)

    def update_character(self, book_id, character):
        self._record("update_character", book_id, character.model_copy(deep=True))
        return character.model_copy(deep=True)

    def delete_character(self, book_id, character_id):
        self._record("delete_character", book_id, character_id)

    def create_chapter(self, book_id, chapter):
        self._record("create_chapter", book_id, chapter.id)
        return chapter.model_copy(deep=True)

    def update_chapter(self, book_id, chapter):
        self._record("update_chapter", book_id, chapter.model_copy(deep=True))
        return chapter.model_copy(deep=True)

    def delete_chapter(self, book_id, chapter_id):
        self._record("delete_chapter", book_id, chapter_id)

    def reorder_chapters(self, book_id, orders):
        self._record("reorder_chapters", book_id, list(orders))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def project_root():
    """Return the absolute path to the real project root directory."""
    return str(PROJECT_ROOT)


@pytest.fixture
def sample_book():
    """A small book.

    - Alice (main) appears in chapter 1.
    - Bob (secondary) has a friend relationship pointing at Alice and
      appears in chapter 2.
    - One plot point references chapter 1 and Bob.
    """
    alice = Character(
        id="char-alice",
        name="Alice",
        type="main",
        description="A curious girl",
        biography="Grew up by the river.",
    )
    bob = Character(
        id="char-bob",
        name="Bob",
        type="secondary",
        relationships=[
            CharacterRelationship(
                target_character_id="char-alice",
                relationship_type="friend",
                description="Childhood friends",
            )
        ],
    )
    ch1 = Chapter(id="chap-1", title="Homecoming", content="Alice walked home.", order=0, word_count=3)
    ch2 = Chapter(id="chap-2", title="The Market", content="Bob sold apples at the market.", order=1, word_count=6)
    plot = PlotPoint(
        id="plot-1",
        title="Return",
        chapter_id="chap-1",
        character_ids=["char-bob"],
        category="setup",
    )
    return Book(
        id="book-1",
        metadata=BookMetadata(title="River Tales", author="A. Writer", genre="Fantasy", themes=["home", "river"]),
        characters=[alice, bob],
        chapters=[ch1, ch2],
        plot_points=[plot],
    )


@pytest.fixture
def memory_backend(sample_book):
    return MemoryBackend([sample_book])


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorage(tmp_path / "data")


@pytest.fixture
def local_backend(local_storage):
    return LocalBookBackend(local_storage)
