"""
app/services/worker.py -- Run one blocking call off the GUI thread.

Backend calls (file writes, HTTP round-trips) go through a ``CallWorker`` so
the event loop keeps running while they wait.  The result or the error comes
back through a signal; the worker object lives on the GUI thread, so the
connected slots run there.

Usage::

    worker = CallWorker(lambda: client.login(email, password), parent=self)
    worker.succeeded.connect(self._on_signed_in)
    worker.failed.connect(self._on_error)
    worker.start()
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from PySide6.QtCore import QObject, QThread, Signal

from engine.errors import AuthorioError

logger = logging.getLogger(__name__)


class CallWorker(QThread):
    """Background thread that runs *call* once.

    Signals
    -------
    succeeded(object)
        The call returned; payload is its result.
    failed(object)
        The call raised; payload is an ``AuthorioError``.  Any other
        exception is logged and wrapped.
    """

    succeeded = Signal(object)
    failed = Signal(object)

    def __init__(self, call: Callable[[], Any], parent: QObject | None = None):
        super().__init__(parent)
        self._call = call

    def run(self) -> None:
        try:
            result = self._call()
        except AuthorioError as exc:
            self.failed.emit(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error in background call")
            self.failed.emit(AuthorioError(f"Unexpected error: {exc}"))
            return
        self.succeeded.emit(result)
