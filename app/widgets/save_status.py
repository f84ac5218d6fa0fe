"""
app/widgets/save_status.py -- Global save status indicator.

Shows "Saving...", "Saved" (with the time of the last successful save) or
"Save failed", driven by ``EventBus.save_status_changed``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from PySide6.QtWidgets import QLabel, QWidget

from app.services.event_bus import EventBus

_TEXT = {
    "saving": "Saving...",
    "saved": "Saved",
    "error": "Save failed",
}


class SaveStatusLabel(QLabel):
    """Status bar label for the tri-state save status."""

    def __init__(
        self,
        bus: EventBus | None = None,
        last_saved: Callable[[], int | None] | None = None,
        parent: QWidget | None = None,
    ):
        super().__init__("", parent)
        self._last_saved = last_saved
        self.status: str | None = None
        if bus is not None:
            bus.save_status_changed.connect(self.set_status)

    def set_status(self, status: str) -> None:
        self.status = status
        text = _TEXT.get(status, "")
        if status == "saved" and self._last_saved is not None:
            stamp = self._last_saved()
            if stamp:
                text = f"Saved at {datetime.fromtimestamp(stamp / 1000):%H:%M:%S}"
        self.setText(text)
        self.setProperty("saveStatus", status)
