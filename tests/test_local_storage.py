"""
Tests for engine/local_storage.py -- offline blob store and backend.
"""

import json

import pytest

from engine.errors import NotFoundError, StorageError
from engine.local_storage import STORAGE_BUDGET_BYTES, LocalBookBackend, LocalStorage
from engine.models.book import AIConfig, AppData, Book, BookMetadata, Chapter, Character


class TestLocalStorage:
    def test_load_without_data(self, local_storage):
        assert local_storage.load_data() is None

    def test_save_and_load(self, local_storage, sample_book):
        data = AppData(books=[sample_book], current_book_id="book-1")
        assert local_storage.save_data(data) is True
        loaded = local_storage.load_data()
        assert loaded.current_book_id == "book-1"
        assert loaded.get_book("book-1") == sample_book

    def test_file_is_camel_case_json(self, local_storage, sample_book):
        local_storage.save_data(AppData(books=[sample_book]))
        raw = json.loads(local_storage.path.read_text(encoding="utf-8"))
        assert "currentBookId" in raw
        assert raw["books"][0]["plotPoints"][0]["chapterId"] == "chap-1"

    def test_invalid_blob_is_ignored(self, local_storage):
        local_storage.path.parent.mkdir(parents=True)
        local_storage.path.write_text(json.dumps({"books": {"not": "a list"}}), encoding="utf-8")
        assert local_storage.load_data() is None

    def test_corrupt_file_is_ignored(self, local_storage):
        local_storage.path.parent.mkdir(parents=True)
        local_storage.path.write_text("{truncated", encoding="utf-8")
        assert local_storage.load_data() is None

    def test_backup_and_restore(self, local_storage, sample_book):
        data = AppData(books=[sample_book])
        backup = json.loads(local_storage.create_backup(data))
        assert backup["version"] == "1.0"
        assert backup["backupTimestamp"] > 0

        restored = local_storage.restore_from_backup(json.dumps(backup))
        assert restored == data

    def test_restore_rejects_garbage(self, local_storage):
        assert local_storage.restore_from_backup("nope") is None
        assert local_storage.restore_from_backup("[1]") is None

    def test_clear(self, local_storage):
        local_storage.save_data(AppData())
        assert local_storage.clear_data() is True
        assert not local_storage.path.exists()
        assert local_storage.clear_data() is True

    def test_storage_info(self, local_storage):
        assert local_storage.get_storage_info() == {"used": 0, "available": STORAGE_BUDGET_BYTES}
        local_storage.save_data(AppData())
        info = local_storage.get_storage_info()
        assert info["used"] > 0
        assert info["used"] + info["available"] == 5 * 1024 * 1024

    def test_validate_data(self):
        assert LocalStorage.validate_data({"books": []}) is True
        assert LocalStorage.validate_data({"books": [{"id": "x"}]}) is False


class TestLocalBookBackend:
    def test_create_and_reload_from_disk(self, local_storage):
        backend = LocalBookBackend(local_storage)
        book = backend.create_book(Book(id="b1", metadata=BookMetadata(title="One")))
        backend.create_character(book.id, Character(id="c1", name="Ann"))
        backend.create_chapter(book.id, Chapter(id="ch1", title="Start", content="Ann sat."))

        reopened = LocalBookBackend(local_storage)
        loaded = reopened.load_book("b1")
        assert loaded.get_character("c1").name == "Ann"
        assert loaded.get_chapter("ch1").content == "Ann sat."

    def test_update_and_delete_entities(self, local_backend):
        local_backend.create_book(Book(id="b1"))
        local_backend.create_character("b1", Character(id="c1", name="Ann"))
        local_backend.update_character("b1", Character(id="c1", name="Anna"))
        assert local_backend.load_book("b1").get_character("c1").name == "Anna"
        local_backend.delete_character("b1", "c1")
        assert local_backend.load_book("b1").characters == []

    def test_unknown_ids_raise_not_found(self, local_backend):
        with pytest.raises(NotFoundError):
            local_backend.load_book("missing")
        local_backend.create_book(Book(id="b1"))
        with pytest.raises(NotFoundError):
            local_backend.update_chapter("b1", Chapter(id="ghost"))

    def test_returned_values_are_detached(self, local_backend):
        local_backend.create_book(Book(id="b1", metadata=BookMetadata(title="One")))
        loaded = local_backend.load_book("b1")
        loaded.metadata.title = "Changed"
        assert local_backend.load_book("b1").metadata.title == "One"

    def test_update_book_keeps_entities(self, local_backend):
        local_backend.create_book(Book(id="b1"))
        local_backend.create_character("b1", Character(id="c1", name="Ann"))
        local_backend.update_book(Book(id="b1", metadata=BookMetadata(title="Renamed")))
        loaded = local_backend.load_book("b1")
        assert loaded.metadata.title == "Renamed"
        assert loaded.get_character("c1") is not None

    def test_reorder(self, local_backend):
        local_backend.create_book(Book(id="b1"))
        local_backend.create_chapter("b1", Chapter(id="a", order=0))
        local_backend.create_chapter("b1", Chapter(id="b", order=1))
        local_backend.reorder_chapters("b1", [("a", 1), ("b", 0)])
        assert [c.id for c in local_backend.load_book("b1").chapters_in_order()] == ["b", "a"]

    def test_delete_current_book_clears_pointer(self, local_backend):
        local_backend.create_book(Book(id="b1"))
        local_backend.set_current_book("b1")
        local_backend.delete_book("b1")
        assert local_backend.current_book_id is None

    def test_ai_config(self, local_storage):
        backend = LocalBookBackend(local_storage)
        backend.save_ai_config(AIConfig(provider="openai", api_key="k"))
        assert LocalBookBackend(local_storage).ai_config.provider == "openai"

    def test_write_failure_raises_storage_error(self, local_backend, monkeypatch):
        monkeypatch.setattr(local_backend.storage, "save_data", lambda data: False)
        with pytest.raises(StorageError):
            local_backend.create_book(Book(id="b1"))
