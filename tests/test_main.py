"""
Tests for app/main.py -- choosing the book to open at startup and the
sign-in loop in cloud mode, plus the uncaught-exception hook.  The login
dialog itself is replaced by a stub.
"""

import logging
from unittest.mock import patch

import pytest

from app.config import AppConfig
from app.main import _global_exception_hook, open_initial_book
from app.services.book_session import BookSession
from app.services.event_bus import EventBus
from engine.errors import AuthenticationError, StorageError
from engine.models.book import Book, BookMetadata


@pytest.fixture(autouse=True)
def _reset_event_bus():
    EventBus.reset()
    yield
    EventBus.reset()


def _session(backend):
    return BookSession(backend, AppConfig(), EventBus.instance())


class TestLocalMode:
    def test_opens_current_book(self, qtbot, local_backend):
        local_backend.create_book(Book(id="book-a", metadata=BookMetadata(title="First")))
        local_backend.create_book(Book(id="book-b", metadata=BookMetadata(title="Second")))
        local_backend.set_current_book("book-b")
        session = _session(local_backend)

        with patch("app.widgets.login_dialog.sign_in") as mock_sign_in:
            assert open_initial_book(session)
        mock_sign_in.assert_not_called()
        assert session.book.id == "book-b"

    def test_first_run_creates_untitled_book(self, qtbot, local_backend):
        session = _session(local_backend)
        assert open_initial_book(session)
        assert session.book.metadata.title == "Untitled"
        assert local_backend.current_book_id == session.book.id

    def test_falls_back_to_first_book(self, qtbot, memory_backend):
        session = _session(memory_backend)
        assert open_initial_book(session)
        assert session.book.id == "book-1"

    def test_storage_error_aborts(self, qtbot, memory_backend):
        memory_backend.fail_with = StorageError("disk full")
        session = _session(memory_backend)
        assert not open_initial_book(session)
        assert session.book is None


class TestCloudMode:
    @pytest.fixture
    def backend(self, memory_backend):
        memory_backend.client = object()
        return memory_backend

    def test_cancelled_sign_in(self, qtbot, backend):
        session = _session(backend)
        with patch("app.widgets.login_dialog.sign_in", return_value=False):
            assert not open_initial_book(session)
        assert backend.calls == []

    def test_signed_in_opens_book(self, qtbot, backend):
        session = _session(backend)
        with patch("app.widgets.login_dialog.sign_in", return_value=True) as mock_sign_in:
            assert open_initial_book(session)
        mock_sign_in.assert_called_once_with(backend.client, "")
        assert session.book.id == "book-1"

    def test_rejected_token_asks_again(self, qtbot, backend):
        backend.fail_with = AuthenticationError()
        prompts = []

        def fake_sign_in(client, message=""):
            prompts.append(message)
            if message:
                backend.fail_with = None
            return True

        session = _session(backend)
        with patch("app.widgets.login_dialog.sign_in", side_effect=fake_sign_in):
            assert open_initial_book(session)
        assert prompts == ["", "Your session has expired. Please sign in again."]
        assert session.book.id == "book-1"

    def test_cancel_after_rejected_token(self, qtbot, backend):
        backend.fail_with = AuthenticationError()
        answers = iter([True, False])
        session = _session(backend)
        with patch("app.widgets.login_dialog.sign_in", side_effect=lambda *a: next(answers)):
            assert not open_initial_book(session)
        assert backend.calls_named("list_books") == [("list_books",)]


class TestExceptionHook:
    def test_logs_uncaught_exception(self, qtbot, caplog):
        caplog.set_level(logging.DEBUG, logger="app")
        with patch("PySide6.QtWidgets.QMessageBox.critical") as mock_box:
            _global_exception_hook(ValueError, ValueError("boom"), None)
        mock_box.assert_called_once()
        assert "Uncaught exception" in caplog.text

    def test_failing_error_dialog_is_logged(self, qtbot, caplog):
        caplog.set_level(logging.DEBUG, logger="app")
        with patch("PySide6.QtWidgets.QMessageBox.critical", side_effect=RuntimeError("no display")):
            _global_exception_hook(ValueError, ValueError("boom"), None)
        assert "Could not show the error dialog" in caplog.text
