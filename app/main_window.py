"""
app/main_window.py -- Main application window.

Left dock: character and chapter lists.  Center: tabbed editors for book
metadata, the selected character and the selected chapter, each bound to
its own autosave reconciler.  The status bar carries the global save
status.  Layout is saved/restored across sessions via QSettings.

In cloud mode a rejected token (``EventBus.auth_required``) reopens the
login dialog; after signing in, pending edits are saved again.  Closing the
window blocks until in-flight saves have settled.
"""

from __future__ import annotations

import logging

from PySide6.QtCore import QSettings, Qt
from PySide6.QtGui import QAction, QCloseEvent
from PySide6.QtWidgets import (
    QDockWidget,
    QHBoxLayout,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QPushButton,
    QStatusBar,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from app.services.autosave import AutosaveReconciler
from app.services.book_session import BookSession
from app.services.event_bus import EventBus
from app.widgets.entity_editor import chapter_editor, character_editor, metadata_editor
from app.widgets.login_dialog import LoginDialog
from app.widgets.save_status import SaveStatusLabel
from engine.models.context import EntityType, Impact

logger = logging.getLogger(__name__)

_ORG_NAME = "Authorio"
_APP_NAME = "Authorio"


class _EntityList(QWidget):
    """List of entities with Add / Delete buttons."""

    def __init__(self, parent: QWidget | None = None):
        super().__init__(parent)
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        self.list = QListWidget()
        layout.addWidget(self.list)
        buttons = QHBoxLayout()
        self.add_btn = QPushButton("Add")
        self.delete_btn = QPushButton("Delete")
        buttons.addWidget(self.add_btn)
        buttons.addWidget(self.delete_btn)
        layout.addLayout(buttons)

    def current_id(self) -> str:
        item = self.list.currentItem()
        return item.data(Qt.ItemDataRole.UserRole) if item else ""

    def populate(self, entries: list[tuple[str, str]], select: str = "") -> None:
        self.list.blockSignals(True)
        self.list.clear()
        for entity_id, label in entries:
            item = QListWidgetItem(label or "(untitled)")
            item.setData(Qt.ItemDataRole.UserRole, entity_id)
            self.list.addItem(item)
            if entity_id == select:
                self.list.setCurrentItem(item)
        self.list.blockSignals(False)


class MainWindow(QMainWindow):
    """Main window for one BookSession."""

    def __init__(self, session: BookSession, parent: QWidget | None = None):
        super().__init__(parent)
        self._session = session
        self._settings = QSettings(_ORG_NAME, _APP_NAME)
        self._bus = bus = EventBus.instance()

        self.setWindowTitle("Authorio")
        self.setMinimumSize(1024, 768)

        # Reconcilers and editors
        self._metadata_rec = session.create_reconciler("metadata", self)
        self._character_rec = session.create_reconciler("character", self)
        self._chapter_rec = session.create_reconciler("chapter", self)

        self._tabs = QTabWidget()
        self._tabs.addTab(metadata_editor(self._metadata_rec), "Book")
        self._tabs.addTab(character_editor(self._character_rec), "Character")
        self._tabs.addTab(chapter_editor(self._chapter_rec), "Chapter")
        self.setCentralWidget(self._tabs)

        # Entity lists
        self._characters = _EntityList()
        self._chapters = _EntityList()
        self._characters_dock = self._create_dock("Characters", self._characters)
        self._chapters_dock = self._create_dock("Chapters", self._chapters)

        self._characters.list.currentItemChanged.connect(lambda *_: self._select_character())
        self._chapters.list.currentItemChanged.connect(lambda *_: self._select_chapter())
        self._characters.add_btn.clicked.connect(self._add_character)
        self._characters.delete_btn.clicked.connect(self._delete_character)
        self._chapters.add_btn.clicked.connect(self._add_chapter)
        self._chapters.delete_btn.clicked.connect(self._delete_chapter)

        # Status bar
        self._status_bar = QStatusBar()
        self.setStatusBar(self._status_bar)
        self._save_label = SaveStatusLabel(bus, lambda: self._session.last_saved)
        self._status_bar.addPermanentWidget(self._save_label)
        self._status_bar.showMessage("Ready")

        self._build_menus()

        bus.status_message.connect(self._on_status_message)
        bus.error_occurred.connect(self._on_error)
        bus.entity_updated.connect(self._on_entity_updated)
        bus.impacts_reported.connect(self._on_impacts)
        bus.book_opened.connect(lambda _id: self.refresh())
        bus.auth_required.connect(self._on_auth_required)
        self._login_dialog: LoginDialog | None = None

        self._restore_layout()
        self.refresh()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_dock(self, title: str, widget: QWidget) -> QDockWidget:
        dock = QDockWidget(title, self)
        dock.setObjectName(f"dock_{title.lower()}")
        dock.setWidget(widget)
        self.addDockWidget(Qt.DockWidgetArea.LeftDockWidgetArea, dock)
        return dock

    def _build_menus(self) -> None:
        view_menu = self.menuBar().addMenu("&View")
        view_menu.addAction(self._characters_dock.toggleViewAction())
        view_menu.addAction(self._chapters_dock.toggleViewAction())

        help_menu = self.menuBar().addMenu("&Help")
        about_action = QAction("About", self)
        about_action.triggered.connect(self._show_about)
        help_menu.addAction(about_action)

    def _reconcilers(self) -> tuple[AutosaveReconciler, ...]:
        return (self._metadata_rec, self._character_rec, self._chapter_rec)

    def refresh(self) -> None:
        """Repopulate the lists and the metadata editor from the open book."""
        book = self._session.book
        if book is None:
            self._metadata_rec.load(None)
            return
        self.setWindowTitle(f"Authorio - {book.metadata.title}")
        self._metadata_rec.load(book.metadata, book.id)
        self._characters.populate(
            [(c.id, c.name) for c in book.characters], self._character_rec.entity_id or "",
        )
        self._chapters.populate(
            [(c.id, c.title) for c in book.chapters_in_order()], self._chapter_rec.entity_id or "",
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _select_character(self) -> None:
        entity_id = self._characters.current_id()
        self._character_rec.load(self._session.store.get_character(entity_id) if entity_id else None)
        self._tabs.setCurrentIndex(1)
        self._bus.entity_selected.emit(EntityType.CHARACTER.value, entity_id)

    def _select_chapter(self) -> None:
        entity_id = self._chapters.current_id()
        self._chapter_rec.load(self._session.store.get_chapter(entity_id) if entity_id else None)
        self._tabs.setCurrentIndex(2)
        self._bus.entity_selected.emit(EntityType.CHAPTER.value, entity_id)

    def _on_entity_updated(self, entity_type: str, entity_id: str) -> None:
        store = self._session.store
        if entity_type == EntityType.CHARACTER.value and entity_id == self._character_rec.entity_id:
            self._character_rec.load(store.get_character(entity_id))
        elif entity_type == EntityType.CHAPTER.value and entity_id == self._chapter_rec.entity_id:
            self._chapter_rec.load(store.get_chapter(entity_id))
        self.refresh()

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------

    def _add_character(self) -> None:
        character = self._session.add_character()
        self.refresh()
        self._characters.populate(
            [(c.id, c.name) for c in self._session.book.characters], character.id,
        )
        self._select_character()

    def _delete_character(self) -> None:
        entity_id = self._characters.current_id()
        if not entity_id:
            return
        self._character_rec.load(None)
        self._session.delete_character(entity_id)
        self.refresh()

    def _add_chapter(self) -> None:
        chapter = self._session.add_chapter()
        self._chapters.populate(
            [(c.id, c.title) for c in self._session.book.chapters_in_order()], chapter.id,
        )
        self._select_chapter()

    def _delete_chapter(self) -> None:
        entity_id = self._chapters.current_id()
        if not entity_id:
            return
        self._chapter_rec.load(None)
        self._session.delete_chapter(entity_id)
        self.refresh()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_impacts(self, entity_id: str, impacts: list[Impact]) -> None:
        worst = max(impacts, key=lambda i: ["low", "medium", "high"].index(i.severity.value))
        self._status_bar.showMessage(
            f"{len(impacts)} possible impact(s): {worst.description}", 10000,
        )

    def _on_status_message(self, message: str) -> None:
        self._status_bar.showMessage(message, 5000)

    def _on_error(self, message: str) -> None:
        self._status_bar.showMessage(f"Error: {message}", 10000)

    def _on_auth_required(self) -> None:
        """Ask for credentials again after the server rejected the token."""
        client = getattr(self._session.backend, "client", None)
        if client is None or self._login_dialog is not None:
            return
        self._login_dialog = LoginDialog(
            client, "Your session has expired. Sign in again to keep saving.", self,
        )
        self._login_dialog.finished.connect(self._on_login_finished)
        self._login_dialog.open()

    def _on_login_finished(self, _result: int) -> None:
        dialog, self._login_dialog = self._login_dialog, None
        if dialog is None:
            return
        if dialog.user is None:
            self._status_bar.showMessage("Not signed in; changes are not being saved", 10000)
            return
        self._status_bar.showMessage(f"Signed in as {dialog.user.email}", 5000)
        for rec in self._reconcilers():
            rec.save_now()

    def _show_about(self) -> None:
        from PySide6.QtWidgets import QMessageBox
        QMessageBox.about(self, "Authorio", "Authorio: a desktop workspace for writing books.")

    # ------------------------------------------------------------------
    # Layout / lifecycle
    # ------------------------------------------------------------------

    def _restore_layout(self) -> None:
        geometry = self._settings.value("geometry")
        if geometry:
            self.restoreGeometry(geometry)
        state = self._settings.value("windowState")
        if state:
            self.restoreState(state)

    def closeEvent(self, event: QCloseEvent) -> None:
        """Flush pending edits and save the layout on close."""
        for rec in self._reconcilers():
            if not rec.flush():
                logger.warning("Unsaved changes for %s at shutdown", rec.entity_id)
        self._settings.setValue("geometry", self.saveGeometry())
        self._settings.setValue("windowState", self.saveState())
        logger.info("Main window closing, layout saved")
        super().closeEvent(event)
