"""
app/main.py -- Application entry point.

Loads configuration, builds the storage backend for the configured mode,
opens the most recent book (creating one on first run), shows the
MainWindow and runs the event loop.

Usage::

    python -m app.main
    # or
    python app/main.py
"""

from __future__ import annotations

import os
os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")

import logging
import sys
import traceback

# Ensure project root is on sys.path
_THIS_DIR = os.path.dirname(os.path.abspath(__file__))
_PROJECT_ROOT = os.path.dirname(_THIS_DIR)
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from app.config import AppConfig, load_config


def _setup_logging() -> None:
    """Configure logging for the desktop application."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _global_exception_hook(exc_type, exc_value, exc_tb):
    """Last-resort handler for uncaught exceptions.

    Logs the traceback and shows a message box (if a QApplication exists).
    """
    logger = logging.getLogger("app")
    logger.critical(
        "Uncaught exception: %s",
        "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
    )

    try:
        from PySide6.QtWidgets import QApplication, QMessageBox
        app = QApplication.instance()
        if app is not None:
            QMessageBox.critical(
                None,
                "Unexpected Error",
                f"An unexpected error occurred:\n\n{exc_value}\n\n"
                "The application will attempt to continue.\n"
                "Please check the logs for details.",
            )
    except Exception:
        logger.debug("Could not show the error dialog", exc_info=True)


def build_backend(config: AppConfig):
    """Return the BookBackend for ``config.mode``."""
    if config.mode == "cloud":
        from engine.cloud_storage import CloudBookBackend, CloudStorageClient, TokenStore
        client = CloudStorageClient(
            config.api_url, TokenStore(config.data_dir), timeout=config.http_timeout,
        )
        return CloudBookBackend(client)

    from engine.local_storage import LocalBookBackend, LocalStorage
    return LocalBookBackend(LocalStorage(config.data_dir))


def open_initial_book(session) -> bool:
    """Open the current, first or a new book; sign in first in cloud mode.

    A rejected token sends the user back to the login dialog.  Returns
    ``False`` when the user cancels sign-in or the book cannot be opened.
    """
    from app.widgets.login_dialog import sign_in
    from engine.errors import AuthenticationError, AuthorioError

    logger = logging.getLogger("app")
    backend = session.backend
    client = getattr(backend, "client", None)
    message = ""
    while True:
        if client is not None and not sign_in(client, message):
            logger.info("Sign-in cancelled")
            return False
        try:
            books = session.list_books()
            current = getattr(backend, "current_book_id", None)
            if current and any(b.id == current for b in books):
                session.open_book(current)
            elif books:
                session.open_book(books[0].id)
            else:
                session.create_book("Untitled")
        except AuthorioError as exc:
            if isinstance(exc, AuthenticationError) and client is not None:
                logger.warning("Session token rejected, asking to sign in again")
                message = "Your session has expired. Please sign in again."
                continue
            logger.error("Could not open a book: %s", exc)
            return False
        break

    if hasattr(backend, "set_current_book"):
        backend.set_current_book(session.book.id)
    return True


def main() -> int:
    """Launch Authorio."""
    _setup_logging()
    logger = logging.getLogger("app")
    logger.info("Starting Authorio")

    sys.excepthook = _global_exception_hook

    config = load_config()
    logger.info("Mode: %s, data dir: %s", config.mode, config.data_dir)

    # Must create QApplication before anything else Qt-related
    from PySide6.QtWidgets import QApplication
    app = QApplication.instance() or QApplication(sys.argv)

    from app.services.book_session import BookSession
    from app.services.event_bus import EventBus

    backend = build_backend(config)
    session = BookSession(backend, config, EventBus.instance())

    if not open_initial_book(session):
        return 1

    from app.main_window import MainWindow
    window = MainWindow(session)
    window.show()
    logger.info("Main window displayed")

    exit_code = app.exec()
    logger.info("Goodbye!")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
