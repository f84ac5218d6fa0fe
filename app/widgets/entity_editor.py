"""
app/widgets/entity_editor.py -- Editor form bound to an autosave reconciler.

The form never talks to the store.  Every keystroke goes to
``reconciler.set_field``; the reconciler decides when to commit.  Inputs
turn read-only while the entity is locked, and an explicit Save button plus
Ctrl+S flush pending edits for long-form text.  The chapter form embeds a
``SectionsEditor`` for that long-form text.

Field kinds:
    line    QLineEdit, str
    text    QPlainTextEdit, str
    int     QLineEdit, int or None (non-numeric text is None)
    list    QLineEdit, comma-separated list of str
    choice  QComboBox over fixed values
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple, Sequence

from PySide6.QtGui import QKeySequence, QShortcut
from PySide6.QtWidgets import (
    QComboBox,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPlainTextEdit,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from app.services.autosave import AutosaveReconciler, ChapterReconciler
from app.widgets.sections_editor import SectionsEditor

logger = logging.getLogger(__name__)


class FieldSpec(NamedTuple):
    name: str
    label: str
    kind: str = "line"
    choices: tuple[str, ...] = ()


CHARACTER_FIELDS = (
    FieldSpec("name", "Name"),
    FieldSpec("type", "Type", "choice", ("main", "secondary", "tertiary")),
    FieldSpec("description", "Quick Description", "text"),
    FieldSpec("biography", "Biography", "text"),
    FieldSpec("character_arc", "Character Arc", "text"),
    FieldSpec("age", "Age", "int"),
    FieldSpec("role", "Role"),
)

CHAPTER_FIELDS = (
    FieldSpec("title", "Title"),
    FieldSpec("synopsis", "Synopsis", "text"),
    FieldSpec("content", "Content", "text"),
    FieldSpec("notes", "Notes", "text"),
)

METADATA_FIELDS = (
    FieldSpec("title", "Title"),
    FieldSpec("subtitle", "Subtitle"),
    FieldSpec("author", "Author"),
    FieldSpec("genre", "Genre"),
    FieldSpec("synopsis", "Synopsis", "text"),
    FieldSpec("themes", "Themes", "list"),
    FieldSpec("target_word_count", "Target Word Count", "int"),
)


class EntityEditor(QWidget):
    """Form for one reconciler.

    Parameters
    ----------
    reconciler : AutosaveReconciler
        Owns the local entity state and the commit timing.
    fields : sequence of FieldSpec
        Inputs to show, in order.
    """

    def __init__(
        self,
        reconciler: AutosaveReconciler,
        fields: Sequence[FieldSpec],
        parent: QWidget | None = None,
    ):
        super().__init__(parent)
        self.reconciler = reconciler
        self._specs = {spec.name: spec for spec in fields}
        self._inputs: dict[str, QWidget] = {}
        self._populating = False
        self.sections_editor: SectionsEditor | None = None

        layout = QVBoxLayout(self)

        header = QHBoxLayout()
        self._lock_btn = QPushButton("Lock")
        self._lock_btn.setVisible(reconciler.SUPPORTS_LOCK)
        self._lock_btn.clicked.connect(self._on_lock_clicked)
        header.addWidget(self._lock_btn)
        header.addStretch()
        self._word_label = QLabel("")
        self._word_label.setVisible(isinstance(reconciler, ChapterReconciler))
        header.addWidget(self._word_label)
        self._save_btn = QPushButton("Save")
        self._save_btn.clicked.connect(self.save_now)
        header.addWidget(self._save_btn)
        layout.addLayout(header)

        self._form = QFormLayout()
        for spec in fields:
            widget = self._build_input(spec)
            self._inputs[spec.name] = widget
            self._form.addRow(spec.label, widget)
        layout.addLayout(self._form)

        self._save_shortcut = QShortcut(QKeySequence.StandardKey.Save, self)
        self._save_shortcut.activated.connect(self.save_now)

        reconciler.entity_loaded.connect(self._on_entity_loaded)
        reconciler.field_synced.connect(self._on_field_synced)
        reconciler.lock_changed.connect(self._apply_lock)
        reconciler.status_changed.connect(self._on_status_changed)

        self._on_entity_loaded(reconciler.entity_id or "")
        self._apply_lock(reconciler.is_locked)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def _build_input(self, spec: FieldSpec) -> QWidget:
        if spec.kind == "text":
            widget = QPlainTextEdit()
            widget.textChanged.connect(lambda name=spec.name: self._on_input_changed(name))
        elif spec.kind == "choice":
            widget = QComboBox()
            for choice in spec.choices:
                widget.addItem(choice.title(), choice)
            widget.currentIndexChanged.connect(lambda _i, name=spec.name: self._on_input_changed(name))
        else:
            widget = QLineEdit()
            if spec.kind == "list":
                widget.setPlaceholderText("Comma-separated values...")
            widget.textChanged.connect(lambda _t, name=spec.name: self._on_input_changed(name))
        return widget

    def input_widget(self, name: str) -> QWidget:
        return self._inputs[name]

    def set_row_visible(self, name: str, visible: bool) -> None:
        self._form.setRowVisible(self._inputs[name], visible)

    def _read(self, name: str) -> Any:
        spec, widget = self._specs[name], self._inputs[name]
        if isinstance(widget, QPlainTextEdit):
            return widget.toPlainText()
        if isinstance(widget, QComboBox):
            return widget.currentData()
        text = widget.text()
        if spec.kind == "int":
            try:
                return int(text.strip())
            except ValueError:
                return None
        if spec.kind == "list":
            return [part.strip() for part in text.split(",") if part.strip()]
        return text

    def _write(self, name: str, value: Any) -> None:
        spec, widget = self._specs[name], self._inputs[name]
        if isinstance(widget, QPlainTextEdit):
            if widget.toPlainText() != (value or ""):
                widget.setPlainText(value or "")
        elif isinstance(widget, QComboBox):
            idx = widget.findData(value)
            widget.setCurrentIndex(max(idx, 0))
        elif spec.kind == "list":
            widget.setText(", ".join(value or []))
        elif spec.kind == "int":
            widget.setText("" if value is None else str(value))
        elif widget.text() != (value or ""):
            widget.setText(value or "")

    # ------------------------------------------------------------------
    # Reconciler wiring
    # ------------------------------------------------------------------

    def _on_input_changed(self, name: str) -> None:
        if self._populating:
            return
        if self.reconciler.set_field(name, self._read(name)):
            self._refresh_word_count()

    def _on_entity_loaded(self, entity_id: str) -> None:
        self._populating = True
        try:
            for name in self._inputs:
                self._write(name, self.reconciler.value(name))
        finally:
            self._populating = False
        self.setEnabled(bool(entity_id))
        self._refresh_word_count()

    def _on_field_synced(self, name: str, value: Any) -> None:
        if name not in self._inputs:
            return
        self._populating = True
        try:
            self._write(name, value)
        finally:
            self._populating = False
        self._refresh_word_count()

    def _apply_lock(self, locked: bool) -> None:
        for widget in self._inputs.values():
            if isinstance(widget, (QLineEdit, QPlainTextEdit)):
                widget.setReadOnly(locked)
            else:
                widget.setEnabled(not locked)
        self._save_btn.setEnabled(not locked)
        self._lock_btn.setText("Unlock" if locked else "Lock")

    def _on_status_changed(self, status: str) -> None:
        # toggle_lock is refused while a save runs.
        self._lock_btn.setEnabled(status != "saving")

    def _refresh_word_count(self) -> None:
        if isinstance(self.reconciler, ChapterReconciler):
            self._word_label.setText(f"{self.reconciler.word_count} words")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _on_lock_clicked(self) -> None:
        self.reconciler.toggle_lock()

    def save_now(self) -> None:
        self.reconciler.save_now()


def character_editor(reconciler: AutosaveReconciler, parent: QWidget | None = None) -> EntityEditor:
    return EntityEditor(reconciler, CHARACTER_FIELDS, parent)


def chapter_editor(reconciler: ChapterReconciler, parent: QWidget | None = None) -> EntityEditor:
    """Chapter form plus the section list; legacy content hides once sections exist."""
    editor = EntityEditor(reconciler, CHAPTER_FIELDS, parent)
    sections = SectionsEditor(reconciler, editor)
    sections.sections_edited.connect(editor._refresh_word_count)
    sections.sections_present.connect(lambda present: editor.set_row_visible("content", not present))
    editor.layout().addWidget(sections, 1)
    editor.sections_editor = sections
    editor.set_row_visible("content", not sections.sections)
    return editor


def metadata_editor(reconciler: AutosaveReconciler, parent: QWidget | None = None) -> EntityEditor:
    return EntityEditor(reconciler, METADATA_FIELDS, parent)
