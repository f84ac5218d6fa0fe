"""
engine/change_history.py -- Book-scoped log of change snapshots.

Before an edit is committed the caller records the entity's current state
with :meth:`ChangeHistory.create_snapshot`; once the edit is known it calls
:meth:`ChangeHistory.update_snapshot`, which runs the impact rules and
freezes the snapshot.  The log is append-only, capped at
``MAX_SNAPSHOTS`` by :meth:`cleanup`, and lives in memory only unless it
is exported and re-imported as a JSON string.

One history object belongs to one open book.  It is constructed by the
application context and handed to whoever needs it, so switching books
never mixes their change logs.

Usage:
    from engine.change_history import ChangeHistory

    history = ChangeHistory(book.id, lambda: store.book)
    snap_id = history.create_snapshot(EntityType.CHARACTER, char.id, char)
    impacts = history.update_snapshot(snap_id, {"name": "Alicia"})
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from engine.dependency_resolver import dependency_adjacency, find_dependencies
from engine.impact_analyzer import analyze_impact
from engine.models.book import Book
from engine.models.context import ChangeSnapshot, EntityType, Impact
from engine.utils import now_ms

logger = logging.getLogger(__name__)

MAX_SNAPSHOTS = 100


def _state_dict(state: Any) -> dict[str, Any]:
    """Deep, detached copy of *state* as a plain dict."""
    if state is None:
        return {}
    if isinstance(state, BaseModel):
        return state.model_dump(mode="json")
    return copy.deepcopy(dict(state))


class ChangeHistory:
    """Append-only change log for a single book.

    Parameters
    ----------
    book_id : str
        Id of the book this history belongs to.
    book_provider : callable
        Returns the book's current canonical state; consulted when a
        snapshot computes its dependency list.
    max_snapshots : int
        Number of snapshots kept by :meth:`cleanup`.
    """

    def __init__(
        self,
        book_id: str,
        book_provider: Callable[[], Book],
        max_snapshots: int = MAX_SNAPSHOTS,
    ):
        self.book_id = book_id
        self._book_provider = book_provider
        self.max_snapshots = max_snapshots

        self.snapshots: list[ChangeSnapshot] = []
        self.current_version = 0
        self.last_modified = now_ms()

    def __len__(self) -> int:
        return len(self.snapshots)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def create_snapshot(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        previous_state: Any,
    ) -> str:
        """Record the pre-change state of an entity and return the snapshot id."""
        entity_type = EntityType(entity_type)
        snapshot = ChangeSnapshot(
            entity_type=entity_type,
            entity_id=entity_id,
            previous_state=_state_dict(previous_state),
            dependencies=find_dependencies(self._book_provider(), entity_type, entity_id),
        )
        self.snapshots.append(snapshot)
        self.current_version += 1
        self.last_modified = now_ms()
        logger.debug(
            "Snapshot %s for %s %s (%d dependents)",
            snapshot.id, entity_type.value, entity_id, len(snapshot.dependencies),
        )
        return snapshot.id

    def discard_snapshot(self, snapshot_id: str) -> bool:
        """Drop a snapshot whose change was never applied.

        Used when the save that followed :meth:`create_snapshot` failed.
        Analysed snapshots are part of the record and are kept.  Returns
        ``True`` when something was removed.
        """
        snapshot = self.get_snapshot(snapshot_id)
        if snapshot is None or snapshot.analysed:
            return False
        self.snapshots.remove(snapshot)
        self.current_version = max(0, self.current_version - 1)
        self.last_modified = now_ms()
        logger.debug("Discarded snapshot %s for %s", snapshot_id, snapshot.entity_id)
        return True

    def update_snapshot(self, snapshot_id: str, changes: Any) -> list[Impact]:
        """Attach *changes* to a snapshot and compute its impacts.

        The merged ``previous_state | changes`` is compared with the
        previous state.  A snapshot is analysed once; later calls return
        the stored impacts unchanged.  Unknown ids return ``[]``.
        """
        snapshot = self.get_snapshot(snapshot_id)
        if snapshot is None:
            logger.debug("update_snapshot: unknown snapshot %s", snapshot_id)
            return []
        if snapshot.analysed:
            return list(snapshot.impact)

        change_dict = _state_dict(changes)
        after = {**snapshot.previous_state, **change_dict}
        snapshot.changes = change_dict
        snapshot.impact = analyze_impact(snapshot.entity_type, snapshot.previous_state, after)
        snapshot.analysed = True
        self.last_modified = now_ms()
        return list(snapshot.impact)

    def get_impact_analysis(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        proposed_changes: Any,
        previous_state: Any = None,
    ) -> list[Impact]:
        """Snapshot-and-analyse in one call, for previewing a change.

        When *previous_state* is omitted the entity's current state in the
        book is used.
        """
        entity_type = EntityType(entity_type)
        if previous_state is None:
            previous_state = self._current_state(entity_type, entity_id)
        snapshot_id = self.create_snapshot(entity_type, entity_id, previous_state)
        return self.update_snapshot(snapshot_id, proposed_changes)

    def _current_state(self, entity_type: EntityType, entity_id: str) -> Any:
        book = self._book_provider()
        lookup = {
            EntityType.CHARACTER: book.get_character,
            EntityType.CHAPTER: book.get_chapter,
            EntityType.PLOT: book.get_plot_point,
        }.get(entity_type)
        return lookup(entity_id) if lookup else None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_snapshot(self, snapshot_id: str) -> ChangeSnapshot | None:
        return next((s for s in self.snapshots if s.id == snapshot_id), None)

    def get_entity_history(self, entity_id: str) -> list[ChangeSnapshot]:
        """Snapshots of *entity_id*, oldest first."""
        return [s for s in self.snapshots if s.entity_id == entity_id]

    def get_relevant_changes(self, entity_id: str) -> list[ChangeSnapshot]:
        """Snapshots whose dependency list includes *entity_id*, newest first."""
        relevant = [
            (idx, s) for idx, s in enumerate(self.snapshots)
            if entity_id in s.dependencies
        ]
        relevant.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [s for _, s in relevant]

    def get_suggested_actions(self, entity_id: str) -> list[str]:
        relevant = self.get_relevant_changes(entity_id)
        if not relevant:
            return []

        actions = ["Review recent changes that may affect this item"]
        if any(s.entity_type is EntityType.CHARACTER for s in relevant):
            actions.append("Update character references in chapters")
        if any(s.entity_type is EntityType.CHAPTER for s in relevant):
            actions.append("Verify plot continuity and character development")
        return actions

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Trim to the most recent ``max_snapshots`` snapshots.

        Returns the number of snapshots removed.
        """
        excess = len(self.snapshots) - self.max_snapshots
        if excess <= 0:
            return 0
        ranked = sorted(enumerate(self.snapshots), key=lambda pair: (pair[1].timestamp, pair[0]))
        keep = {idx for idx, _ in ranked[excess:]}
        self.snapshots = [s for idx, s in enumerate(self.snapshots) if idx in keep]
        logger.debug("Trimmed %d snapshots from history of %s", excess, self.book_id)
        return excess

    def clear(self) -> None:
        self.snapshots = []
        self.current_version = 0
        self.last_modified = now_ms()

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_context(self) -> str:
        """Serialise the history and the book's dependency graph to JSON."""
        payload = {
            "bookId": self.book_id,
            "history": {
                "snapshots": [s.to_json_dict() for s in self.snapshots],
                "currentVersion": self.current_version,
                "lastModified": self.last_modified,
            },
            "dependencyGraph": dependency_adjacency(self._book_provider()),
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def import_context(self, context_data: str) -> bool:
        """Replace the history with an exported one.

        Returns ``False`` and leaves the current history untouched if the
        data is malformed or belongs to another book.
        """
        try:
            data = json.loads(context_data)
            if data.get("bookId", self.book_id) != self.book_id:
                logger.warning(
                    "Refusing to import history of book %s into %s",
                    data.get("bookId"), self.book_id,
                )
                return False
            history = data["history"]
            snapshots = [ChangeSnapshot.model_validate(s) for s in history["snapshots"]]
            version = int(history.get("currentVersion", len(snapshots)))
            last_modified = int(history.get("lastModified", now_ms()))
        except (json.JSONDecodeError, ValidationError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.error("Failed to import context: %s", exc)
            return False

        self.snapshots = snapshots
        self.current_version = version
        self.last_modified = last_modified
        return True
