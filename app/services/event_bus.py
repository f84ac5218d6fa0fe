"""
app/services/event_bus.py -- Application-wide event bus using Qt signals.

Singleton that provides typed signals for cross-widget communication.
Editors, the status label and the main window connect to the EventBus
rather than to each other.

Usage::

    from app.services.event_bus import EventBus

    bus = EventBus.instance()
    bus.save_status_changed.connect(label.set_status)
    bus.entity_selected.emit("character", "character_1700000000000_ab12cd34ef")
"""

from __future__ import annotations

import threading

from PySide6.QtCore import QObject, Signal


class EventBus(QObject):
    """Application-wide signal bus.

    Signals
    -------
    entity_selected(str, str)
        The user selected an entity: (entity_type, entity_id).  An empty
        id means the selection was cleared.
    entity_updated(str, str)
        An entity was committed: (entity_type, entity_id).
    entity_deleted(str, str)
        An entity was removed: (entity_type, entity_id).
    book_opened(str)
        A book became the open book.  Payload is the book ID.
    save_status_changed(str)
        Global save status: ``"saving"``, ``"saved"`` or ``"error"``.
    impacts_reported(str, list)
        A significant change produced impacts: (entity_id, [Impact, ...]).
    error_occurred(str)
        An error needs to be shown to the user.
    auth_required()
        The server rejected the session token; the user must sign in again.
    status_message(str)
        Update the status bar message.
    """

    # Entity lifecycle
    entity_selected = Signal(str, str)
    entity_updated = Signal(str, str)
    entity_deleted = Signal(str, str)
    book_opened = Signal(str)

    # Persistence
    save_status_changed = Signal(str)
    impacts_reported = Signal(str, list)

    # Error and status
    error_occurred = Signal(str)
    auth_required = Signal()
    status_message = Signal(str)

    # Singleton
    _instance: EventBus | None = None
    _lock = threading.Lock()

    @classmethod
    def instance(cls) -> EventBus:
        """Return the singleton EventBus instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (for testing)."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.deleteLater()
            cls._instance = None
