"""
app/widgets/sections_editor.py -- Section list for long-form chapter text.

Sections are the newer chapter text model: an ordered list of
title/content pieces.  Every edit hands the whole list to
``reconciler.set_field("sections", ...)``.  ChapterReconciler holds that
field for the long-form window, so typing here is saved by the Save button,
Ctrl+S, or when the long-form interval runs out.  Adding or removing a
section saves right away.

A chapter that only has legacy ``content`` gets that text as its first
section when the user adds one, so nothing disappears behind the list.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from PySide6.QtCore import Signal
from PySide6.QtWidgets import (
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QPlainTextEdit,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from app.services.autosave import ChapterReconciler
from engine.models.book import ChapterSection
from engine.utils import now_ms

logger = logging.getLogger(__name__)


class SectionsEditor(QWidget):
    """List of a chapter's sections with an editor for the selected one.

    Signals
    -------
    sections_edited()
        A local edit reached the reconciler.
    sections_present(bool)
        Whether the loaded chapter has any sections.
    """

    sections_edited = Signal()
    sections_present = Signal(bool)

    def __init__(self, reconciler: ChapterReconciler, parent: QWidget | None = None):
        super().__init__(parent)
        self.reconciler = reconciler
        self._sections: list[dict[str, Any]] = []
        self._current: str | None = None
        self._populating = False

        layout = QHBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        side = QVBoxLayout()
        side.addWidget(QLabel("Sections"))
        self.list = QListWidget()
        self.list.currentRowChanged.connect(self._on_row_changed)
        side.addWidget(self.list)
        buttons = QHBoxLayout()
        self._add_btn = QPushButton("Add Section")
        self._add_btn.clicked.connect(self.add_section)
        self._remove_btn = QPushButton("Remove")
        self._remove_btn.clicked.connect(self.remove_section)
        buttons.addWidget(self._add_btn)
        buttons.addWidget(self._remove_btn)
        side.addLayout(buttons)
        layout.addLayout(side, 1)

        body = QVBoxLayout()
        self.title_edit = QLineEdit()
        self.title_edit.setPlaceholderText("Section title")
        self.title_edit.textChanged.connect(self._on_title_changed)
        body.addWidget(self.title_edit)
        self.content_edit = QPlainTextEdit()
        self.content_edit.textChanged.connect(self._on_content_changed)
        body.addWidget(self.content_edit)
        layout.addLayout(body, 3)

        reconciler.entity_loaded.connect(self._reload)
        reconciler.field_synced.connect(self._on_field_synced)
        reconciler.lock_changed.connect(self._apply_lock)

        self._reload()
        self._apply_lock(reconciler.is_locked)

    @property
    def sections(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._sections)

    # ------------------------------------------------------------------
    # Reconciler -> widget
    # ------------------------------------------------------------------

    def _reload(self, *_args: Any) -> None:
        raw = self.reconciler.value("sections") or []
        sections = [s.model_dump() if hasattr(s, "model_dump") else dict(s) for s in raw]
        self._sections = sorted(sections, key=lambda s: s.get("order", 0))
        if not any(s["id"] == self._current for s in self._sections):
            self._current = self._sections[0]["id"] if self._sections else None
        self._populate()

    def _on_field_synced(self, name: str, _value: Any) -> None:
        if name == "sections":
            self._reload()

    def _populate(self) -> None:
        self._populating = True
        try:
            self.list.clear()
            row = -1
            for idx, section in enumerate(self._sections):
                self.list.addItem(section.get("title") or "Untitled section")
                if section["id"] == self._current:
                    row = idx
            self.list.setCurrentRow(row)
            self._show_current()
        finally:
            self._populating = False
        self.sections_present.emit(bool(self._sections))

    def _show_current(self) -> None:
        section = self._section(self._current)
        self.title_edit.setText(section["title"] if section else "")
        self.content_edit.setPlainText(section["content"] if section else "")
        self.title_edit.setEnabled(section is not None)
        self.content_edit.setEnabled(section is not None)
        self._remove_btn.setEnabled(section is not None and not self.reconciler.is_locked)

    def _apply_lock(self, locked: bool) -> None:
        self.title_edit.setReadOnly(locked)
        self.content_edit.setReadOnly(locked)
        self._add_btn.setEnabled(not locked)
        self._remove_btn.setEnabled(not locked and self._current is not None)

    # ------------------------------------------------------------------
    # Widget -> reconciler
    # ------------------------------------------------------------------

    def _section(self, section_id: str | None) -> dict[str, Any] | None:
        return next((s for s in self._sections if s["id"] == section_id), None)

    def _on_row_changed(self, row: int) -> None:
        if self._populating:
            return
        self._current = self._sections[row]["id"] if 0 <= row < len(self._sections) else None
        self._populating = True
        try:
            self._show_current()
        finally:
            self._populating = False

    def _on_title_changed(self, text: str) -> None:
        section = self._section(self._current)
        if self._populating or section is None:
            return
        section["title"] = text
        section["updated_at"] = now_ms()
        item = self.list.currentItem()
        if item is not None:
            item.setText(text or "Untitled section")
        self._push()

    def _on_content_changed(self) -> None:
        section = self._section(self._current)
        if self._populating or section is None:
            return
        section["content"] = self.content_edit.toPlainText()
        section["updated_at"] = now_ms()
        self._push()

    def _push(self) -> bool:
        if self.reconciler.set_field("sections", copy.deepcopy(self._sections)):
            self.sections_edited.emit()
            return True
        self._reload()
        return False

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def add_section(self) -> None:
        """Append an empty section (after the legacy text, if any) and save."""
        if self.reconciler.entity_id is None or self.reconciler.is_locked:
            return
        if not self._sections:
            legacy = self.reconciler.value("content") or ""
            if legacy.strip():
                self._sections.append(ChapterSection(title="Section 1", content=legacy, order=0).model_dump())
        position = len(self._sections)
        section = ChapterSection(title=f"Section {position + 1}", order=position).model_dump()
        self._sections.append(section)
        self._current = section["id"]
        self._commit_structure()

    def remove_section(self) -> None:
        """Remove the selected section, close the gap in ``order`` and save."""
        if self._current is None or self.reconciler.is_locked:
            return
        idx = next(i for i, s in enumerate(self._sections) if s["id"] == self._current)
        del self._sections[idx]
        for position, section in enumerate(self._sections):
            section["order"] = position
        neighbour = min(idx, len(self._sections) - 1)
        self._current = self._sections[neighbour]["id"] if self._sections else None
        self._commit_structure()

    def _commit_structure(self) -> None:
        if self._push():
            self._populate()
            self.reconciler.save_now()
            logger.debug("Chapter %s now has %d sections", self.reconciler.entity_id, len(self._sections))
