"""
Tests for engine/change_history.py -- book-scoped change snapshots.
"""

import json

import pytest

from engine.change_history import ChangeHistory
from engine.models.book import Book, Chapter, Character
from engine.models.context import EntityType, ImpactLevel


@pytest.fixture
def history(sample_book):
    return ChangeHistory(sample_book.id, lambda: sample_book)


class TestSnapshots:
    def test_create_records_previous_state_and_dependencies(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        snap_id = history.create_snapshot(EntityType.CHARACTER, alice.id, alice)
        snap = history.get_snapshot(snap_id)
        assert snap.previous_state["name"] == "Alice"
        assert snap.dependencies == ["chap-1", "char-bob"]
        assert history.current_version == 1

    def test_previous_state_is_detached(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        snap_id = history.create_snapshot(EntityType.CHARACTER, alice.id, alice)
        alice.name = "Changed"
        assert history.get_snapshot(snap_id).previous_state["name"] == "Alice"

    def test_update_computes_impacts(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        snap_id = history.create_snapshot(EntityType.CHARACTER, alice.id, alice)
        impacts = history.update_snapshot(snap_id, {"name": "Alicia"})
        assert [i.severity for i in impacts] == [ImpactLevel.HIGH]
        assert history.get_snapshot(snap_id).changes == {"name": "Alicia"}

    def test_bio_only_update_has_no_high_impact(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        snap_id = history.create_snapshot(EntityType.CHARACTER, alice.id, alice)
        impacts = history.update_snapshot(snap_id, {"biography": "Moved to the city."})
        assert [i.severity for i in impacts] == [ImpactLevel.MEDIUM]

    def test_snapshot_is_analysed_once(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        snap_id = history.create_snapshot(EntityType.CHARACTER, alice.id, alice)
        first = history.update_snapshot(snap_id, {"name": "Alicia"})
        second = history.update_snapshot(snap_id, {"biography": "other"})
        assert second == first
        assert history.get_snapshot(snap_id).changes == {"name": "Alicia"}

    def test_unknown_snapshot(self, history):
        assert history.update_snapshot("nope", {"name": "x"}) == []

    def test_discard_unapplied_snapshot(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        snap_id = history.create_snapshot(EntityType.CHARACTER, alice.id, alice)
        assert history.discard_snapshot(snap_id) is True
        assert len(history) == 0
        assert history.current_version == 0
        assert history.get_relevant_changes("chap-1") == []
        assert history.get_suggested_actions("chap-1") == []

    def test_discard_keeps_analysed_snapshots(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        snap_id = history.create_snapshot(EntityType.CHARACTER, alice.id, alice)
        history.update_snapshot(snap_id, {"name": "Alicia"})
        assert history.discard_snapshot(snap_id) is False
        assert history.discard_snapshot("nope") is False
        assert len(history) == 1

    def test_recorded_dependencies_survive_a_rename(self):
        book = Book(
            characters=[Character(id="c", name="Alice")],
            chapters=[Chapter(id="ch", content="Alice walked home.")],
        )
        history = ChangeHistory(book.id, lambda: book)
        snap_id = history.create_snapshot(EntityType.CHARACTER, "c", book.characters[0])
        book.characters[0].name = "Bob"
        history.update_snapshot(snap_id, book.characters[0])

        assert history.get_snapshot(snap_id).dependencies == ["ch"]
        assert [s.id for s in history.get_relevant_changes("ch")] == [snap_id]


class TestQueries:
    def test_entity_history_oldest_first(self, history, sample_book):
        alice = sample_book.get_character("char-alice")
        ids = [history.create_snapshot(EntityType.CHARACTER, alice.id, alice) for _ in range(3)]
        history.create_snapshot(EntityType.CHAPTER, "chap-2", sample_book.get_chapter("chap-2"))
        assert [s.id for s in history.get_entity_history("char-alice")] == ids

    def test_relevant_changes_newest_first(self, history, sample_book):
        first = history.create_snapshot(EntityType.CHARACTER, "char-alice", sample_book.get_character("char-alice"))
        second = history.create_snapshot(EntityType.CHAPTER, "chap-1", sample_book.get_chapter("chap-1"))
        history.get_snapshot(first).timestamp = 1
        history.get_snapshot(second).timestamp = 2
        # Alice's snapshot lists chap-1; chap-1's snapshot lists char-alice.
        assert [s.id for s in history.get_relevant_changes("chap-1")] == [first]
        assert [s.id for s in history.get_relevant_changes("char-alice")] == [second]

        third = history.create_snapshot(EntityType.PLOT, "plot-1", sample_book.get_plot_point("plot-1"))
        history.get_snapshot(third).timestamp = 3
        assert [s.id for s in history.get_relevant_changes("chap-1")] == [third, first]

    def test_suggested_actions(self, history, sample_book):
        assert history.get_suggested_actions("chap-1") == []
        history.create_snapshot(EntityType.CHARACTER, "char-alice", sample_book.get_character("char-alice"))
        actions = history.get_suggested_actions("chap-1")
        assert actions == [
            "Review recent changes that may affect this item",
            "Update character references in chapters",
        ]

    def test_suggested_actions_for_chapter_changes(self, history, sample_book):
        history.create_snapshot(EntityType.CHAPTER, "chap-1", sample_book.get_chapter("chap-1"))
        actions = history.get_suggested_actions("char-alice")
        assert "Verify plot continuity and character development" in actions

    def test_impact_preview_uses_current_state(self, history):
        impacts = history.get_impact_analysis(EntityType.CHARACTER, "char-alice", {"name": "Alicia"})
        assert [i.severity for i in impacts] == [ImpactLevel.HIGH]
        assert len(history) == 1

    def test_impact_preview_with_explicit_previous_state(self, history):
        impacts = history.get_impact_analysis(
            "chapter", "chap-1", {"title": "New"}, previous_state={"title": "Old", "content": ""},
        )
        assert [i.severity for i in impacts] == [ImpactLevel.LOW]


class TestCleanup:
    def test_keeps_most_recent(self, sample_book):
        history = ChangeHistory(sample_book.id, lambda: sample_book, max_snapshots=3)
        ids = []
        for ts in range(5):
            snap_id = history.create_snapshot(EntityType.PLOT, "plot-1", {})
            history.get_snapshot(snap_id).timestamp = ts
            ids.append(snap_id)
        assert history.cleanup() == 2
        assert [s.id for s in history.snapshots] == ids[2:]

    def test_noop_under_limit(self, history):
        history.create_snapshot(EntityType.PLOT, "plot-1", {})
        assert history.cleanup() == 0
        assert len(history) == 1

    def test_default_limit_is_100(self, history):
        for _ in range(105):
            history.create_snapshot(EntityType.PLOT, "plot-1", {})
        history.cleanup()
        assert len(history) == 100


class TestExportImport:
    def test_export_shape(self, history, sample_book):
        history.create_snapshot(EntityType.CHARACTER, "char-alice", sample_book.get_character("char-alice"))
        data = json.loads(history.export_context())
        assert data["bookId"] == "book-1"
        assert data["history"]["currentVersion"] == 1
        assert data["history"]["snapshots"][0]["entityId"] == "char-alice"
        assert data["dependencyGraph"]["characters"]["char-alice"] == ["chap-1", "char-bob"]

    def test_round_trip(self, history, sample_book):
        snap_id = history.create_snapshot(EntityType.CHARACTER, "char-alice", sample_book.get_character("char-alice"))
        history.update_snapshot(snap_id, {"name": "Alicia"})
        exported = history.export_context()

        other = ChangeHistory(sample_book.id, lambda: sample_book)
        assert other.import_context(exported) is True
        assert len(other) == 1
        restored = other.get_snapshot(snap_id)
        assert restored.analysed is True
        assert restored.impact[0].severity is ImpactLevel.HIGH
        assert other.current_version == 1

    def test_malformed_input_leaves_state(self, history, sample_book):
        history.create_snapshot(EntityType.CHARACTER, "char-alice", sample_book.get_character("char-alice"))
        assert history.import_context("{not json") is False
        assert history.import_context(json.dumps({"history": {"snapshots": [{"bad": 1}]}})) is False
        assert history.import_context(json.dumps([1, 2])) is False
        assert len(history) == 1

    def test_other_book_rejected(self, history):
        payload = json.dumps({"bookId": "other", "history": {"snapshots": []}})
        assert history.import_context(payload) is False
