"""
app/services/autosave.py -- Debounced autosave with external-sync reconciliation.

An ``AutosaveReconciler`` keeps a local, editable copy of one entity in step
with the canonical copy held by the BookStore:

    - Selecting a different entity replaces the local copy wholesale and
      cancels any pending save for the previous one.
    - A canonical update for the *same* entity only overwrites fields whose
      canonical value differs from the last value this reconciler synced,
      so a field the user is typing into is not clobbered by a stale echo.
    - Local edits apply immediately and (re)arm a single-shot QTimer; one
      commit goes out per quiet period no matter how many keystrokes.
    - While a commit is running, and for a short grace window after it
      returns, canonical updates are ignored so the echo of our own save is
      not mistaken for an external edit.
    - A locked entity rejects every edit and never arms the timer.
      ``toggle_lock`` bypasses the gate and commits the flag immediately.

The commit callback receives ``(entity_id, payload)`` on the GUI thread and
returns a ``CommitJob``.  The job's ``persist`` step (the backend call) runs
on a ``CallWorker`` thread; its result comes back through a queued signal
and ``finish`` runs on the GUI thread.  At most one job per reconciler is in
flight; a debounce that elapses meanwhile is replayed when it settles.
Failures become the ``"error"`` status; the user retries by editing again.

Usage::

    rec = CharacterReconciler(session.commit_character, debounce_ms=500)
    rec.load(character)
    rec.set_field("name", "Alicia")     # commits ~500 ms later
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from PySide6.QtCore import QCoreApplication, QObject, QTimer, Signal

from app.services.worker import CallWorker
from engine.errors import AuthorioError
from engine.models.book import Chapter
from engine.models.context import EntityType
from engine.utils import count_words

logger = logging.getLogger(__name__)

STATUS_SAVING = "saving"
STATUS_SAVED = "saved"
STATUS_ERROR = "error"


class CommitJob:
    """One save, split between the GUI thread and a worker thread.

    Parameters
    ----------
    persist : callable
        Performs the backend call.  Runs on a worker thread, so it must not
        touch Qt objects or canonical state.
    finish : callable, optional
        Receives ``persist``'s result on the GUI thread and returns the
        canonical entity.  Defaults to returning the result unchanged.
    fail : callable, optional
        Receives the ``AuthorioError`` on the GUI thread when ``persist``
        raised.
    """

    def __init__(
        self,
        persist: Callable[[], Any],
        finish: Callable[[Any], Any] | None = None,
        fail: Callable[[AuthorioError], None] | None = None,
    ):
        self.persist = persist
        self._finish = finish
        self._fail = fail

    def finish(self, result: Any) -> Any:
        return self._finish(result) if self._finish is not None else result

    def fail(self, exc: AuthorioError) -> None:
        if self._fail is not None:
            self._fail(exc)

    def run(self) -> Any:
        """Run every step on the calling thread and return the canonical entity."""
        try:
            result = self.persist()
        except AuthorioError as exc:
            self.fail(exc)
            raise
        return self.finish(result)


CommitFn = Callable[[str, dict], CommitJob]


class _InFlight:
    """Bookkeeping for the job currently running."""

    def __init__(self, job: CommitJob, payload: dict[str, Any], generation: int, lock_to: bool | None):
        self.job = job
        self.payload = payload
        self.generation = generation
        self.lock_to = lock_to


class AutosaveReconciler(QObject):
    """Base reconciler; subclasses declare which fields they track.

    Signals
    -------
    entity_loaded(str)
        A different entity was loaded (or ``""`` on deselection); widgets
        should repopulate every input.
    field_synced(str, object)
        An external update overwrote one local field: (field, value).
    lock_changed(bool)
        The lock flag changed.
    status_changed(str)
        ``"saving"``, ``"saved"`` or ``"error"`` for this entity.
    committed(object)
        A commit succeeded; payload is the canonical entity returned.
    commit_failed(str)
        A commit failed; payload is the error message.
    """

    entity_loaded = Signal(str)
    field_synced = Signal(str, object)
    lock_changed = Signal(bool)
    status_changed = Signal(str)
    committed = Signal(object)
    commit_failed = Signal(str)

    entity_type: EntityType | None = None
    FIELDS: tuple[str, ...] = ()
    LONG_FORM_FIELDS: frozenset[str] = frozenset()
    SUPPORTS_LOCK = True

    def __init__(
        self,
        commit: CommitFn,
        debounce_ms: int = 500,
        long_form_ms: int = 20 * 60 * 1000,
        echo_grace_ms: int = 150,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._commit = commit
        self.debounce_ms = debounce_ms
        self.long_form_ms = long_form_ms
        self.echo_grace_ms = echo_grace_ms

        self._entity_id: str | None = None
        self._local: dict[str, Any] = {}
        self._last_synced: dict[str, Any] = {}
        self._locked = False
        self._dirty: set[str] = set()
        self._in_flight: _InFlight | None = None
        self._replay = False
        self._generation = 0
        self._workers: list[CallWorker] = []
        self._echo_window = False
        self._status: str | None = None

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._on_debounce_elapsed)

        self._grace_timer = QTimer(self)
        self._grace_timer.setSingleShot(True)
        self._grace_timer.timeout.connect(self._end_echo_window)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def entity_id(self) -> str | None:
        return self._entity_id

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def is_dirty(self) -> bool:
        return bool(self._dirty)

    @property
    def has_pending_commit(self) -> bool:
        return self._timer.isActive()

    @property
    def is_saving(self) -> bool:
        """A commit is running on the worker thread."""
        return self._in_flight is not None

    @property
    def status(self) -> str | None:
        return self._status

    def value(self, field: str) -> Any:
        return self._local.get(field)

    def values(self) -> dict[str, Any]:
        return copy.deepcopy(self._local)

    # ------------------------------------------------------------------
    # Canonical -> local
    # ------------------------------------------------------------------

    def _extract(self, entity: Any) -> dict[str, Any]:
        dumped = entity.model_dump() if hasattr(entity, "model_dump") else dict(entity)
        return {f: copy.deepcopy(dumped.get(f)) for f in self.FIELDS}

    def load(self, entity: Any, entity_id: str | None = None) -> None:
        """Feed the current canonical entity (or ``None`` for no selection)."""
        if entity is None:
            self._switch_to(None, {}, False)
            return

        new_id = entity_id if entity_id is not None else entity.id
        fields = self._extract(entity)
        locked = bool(getattr(entity, "is_locked", False)) if self.SUPPORTS_LOCK else False

        if new_id != self._entity_id:
            self._switch_to(new_id, fields, locked)
            return

        if self._in_flight is not None or self._echo_window:
            logger.debug("Ignoring canonical update for %s during echo window", new_id)
            return

        for name, canonical in fields.items():
            if canonical != self._last_synced.get(name):
                self._last_synced[name] = copy.deepcopy(canonical)
                self._local[name] = copy.deepcopy(canonical)
                self._dirty.discard(name)
                self._derive(name)
                self.field_synced.emit(name, canonical)

        if locked != self._locked:
            self._set_locked(locked)

    def _switch_to(self, new_id: str | None, fields: dict[str, Any], locked: bool) -> None:
        if self._timer.isActive():
            logger.debug("Cancelling pending save for %s", self._entity_id)
        self._timer.stop()
        self._grace_timer.stop()
        self._echo_window = False
        self._replay = False
        self._dirty.clear()
        self._generation += 1

        self._entity_id = new_id
        self._local = copy.deepcopy(fields)
        self._last_synced = copy.deepcopy(fields)
        for name in self.FIELDS:
            self._derive(name)
        self._locked = locked
        self.entity_loaded.emit(new_id or "")
        self.lock_changed.emit(locked)

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------

    def set_field(self, field: str, value: Any) -> bool:
        """Apply a local edit and arm the debounce timer.

        Returns ``False`` (and changes nothing) when no entity is loaded or
        the entity is locked.
        """
        if field not in self.FIELDS:
            raise KeyError(f"{type(self).__name__} does not track {field!r}")
        if self._entity_id is None:
            return False
        if self._locked:
            logger.debug("Edit of %s rejected: %s is locked", field, self._entity_id)
            return False

        self._local[field] = value
        if value == self._last_synced.get(field):
            self._dirty.discard(field)
        else:
            self._dirty.add(field)
        self._derive(field)

        if self._dirty:
            self._timer.start(self._delay())
        else:
            self._timer.stop()
        return True

    def _delay(self) -> int:
        return min(
            self.long_form_ms if name in self.LONG_FORM_FIELDS else self.debounce_ms
            for name in self._dirty
        )

    def _derive(self, field: str) -> None:
        """Recompute derived values after *field* changed.  Default: none."""

    def cancel_pending(self) -> None:
        self._timer.stop()

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _on_debounce_elapsed(self) -> None:
        if self._locked:
            return
        if self._in_flight is not None:
            self._replay = True
            return
        self._run_commit(self._payload())

    def save_now(self) -> bool:
        """Commit pending edits immediately (explicit Save / Ctrl+S).

        Returns ``True`` when a commit was started, or queued behind the
        one already running.
        """
        self._timer.stop()
        if self._entity_id is None or self._locked or not self._dirty:
            return False
        if self._in_flight is not None:
            self._replay = True
            return True
        return self._run_commit(self._payload())

    def toggle_lock(self) -> bool:
        """Flip the lock flag and commit it right away, bypassing the gate.

        The flag changes once the commit succeeds.  Refused while another
        commit is running.
        """
        if self._entity_id is None or not self.SUPPORTS_LOCK or self._in_flight is not None:
            return False
        self._timer.stop()
        payload = self._payload()
        payload["is_locked"] = not self._locked
        return self._run_commit(payload, lock_to=payload["is_locked"])

    def flush(self, timeout_ms: int = 10_000) -> bool:
        """Save pending edits and block until every commit has settled.

        Used at shutdown.  Returns ``False`` if a commit is still running
        after *timeout_ms* or edits remain unsaved.
        """
        self.save_now()
        while self._in_flight is not None:
            if not self.wait_for_commit(timeout_ms):
                return False
            QCoreApplication.processEvents()
        return not self._dirty

    def wait_for_commit(self, timeout_ms: int = 10_000) -> bool:
        """Block until the worker threads have finished."""
        return all(worker.wait(timeout_ms) for worker in self._workers)

    def _payload(self) -> dict[str, Any]:
        return copy.deepcopy(self._local)

    def _run_commit(self, payload: dict[str, Any], lock_to: bool | None = None) -> bool:
        entity_id = self._entity_id
        self._set_status(STATUS_SAVING)
        try:
            job = self._commit(entity_id, payload)
        except AuthorioError as exc:
            self._report_failure(entity_id, exc)
            return False

        self._in_flight = _InFlight(job, payload, self._generation, lock_to)
        self._replay = False
        self._start_worker(job.persist)
        return True

    def _start_worker(self, persist: Callable[[], Any]) -> None:
        for done in [w for w in self._workers if w.isFinished()]:
            self._workers.remove(done)
            done.deleteLater()

        worker = CallWorker(persist, self)
        worker.succeeded.connect(self._on_commit_succeeded)
        worker.failed.connect(self._on_commit_failed)
        self._workers.append(worker)
        worker.start()

    def _on_commit_succeeded(self, result: Any) -> None:
        flight = self._in_flight
        try:
            canonical = flight.job.finish(result)
        except AuthorioError as exc:
            self._in_flight = None
            self._report_failure(self._entity_id, exc)
            return
        self._in_flight = None

        if flight.generation != self._generation:
            self._set_status(STATUS_SAVED)
            return

        for name in self.FIELDS:
            if name in flight.payload:
                self._last_synced[name] = copy.deepcopy(flight.payload[name])
        # Fields edited while the save ran stay dirty.
        self._dirty = {n for n in self._dirty if self._local.get(n) != self._last_synced.get(n)}
        if flight.lock_to is not None:
            self._set_locked(flight.lock_to)
        self._set_status(STATUS_SAVED)
        self._echo_window = True
        self._grace_timer.start(self.echo_grace_ms)
        self.committed.emit(canonical)

        if self._replay and self._dirty and not self._locked:
            self._run_commit(self._payload())
        self._replay = False

    def _on_commit_failed(self, exc: AuthorioError) -> None:
        flight, self._in_flight = self._in_flight, None
        self._replay = False
        flight.job.fail(exc)
        self._report_failure(self._entity_id, exc)

    def _report_failure(self, entity_id: str | None, exc: AuthorioError) -> None:
        logger.warning("Save of %s failed: %s", entity_id, exc)
        self._set_status(STATUS_ERROR)
        self.commit_failed.emit(str(exc))

    def _end_echo_window(self) -> None:
        self._echo_window = False

    def _set_status(self, status: str) -> None:
        self._status = status
        self.status_changed.emit(status)

    def _set_locked(self, locked: bool) -> None:
        self._locked = locked
        if locked:
            self._timer.stop()
        self.lock_changed.emit(locked)


# ---------------------------------------------------------------------------
# Entity-specific reconcilers
# ---------------------------------------------------------------------------

class CharacterReconciler(AutosaveReconciler):
    entity_type = EntityType.CHARACTER
    FIELDS = (
        "name", "type", "description", "biography",
        "character_arc", "age", "role", "relationships",
    )


class ChapterReconciler(AutosaveReconciler):
    """Chapter editor state.

    ``sections`` is long-form text: it waits for the long-form window
    (or an explicit save) instead of the short debounce.  ``word_count``
    is derived from the text on every edit.
    """

    entity_type = EntityType.CHAPTER
    FIELDS = ("title", "content", "synopsis", "notes", "sections")
    LONG_FORM_FIELDS = frozenset({"sections"})

    def _derive(self, field: str) -> None:
        if field not in ("content", "sections"):
            return
        chapter = Chapter(
            content=self._local.get("content") or "",
            sections=self._local.get("sections") or [],
        )
        self._local["word_count"] = count_words(chapter.flattened_text())

    @property
    def word_count(self) -> int:
        return self._local.get("word_count", 0)


class MetadataReconciler(AutosaveReconciler):
    """Book metadata; keyed by the book id and never locked."""

    FIELDS = ("title", "subtitle", "author", "genre", "synopsis", "themes", "target_word_count")
    SUPPORTS_LOCK = False
