"""Tests for the SQLite beatmap catalog.

Tests transactional add, delete-state transitions, population, lazy queries,
event publication and purge of deleted sets.
"""

from __future__ import annotations

import pytest

from BeatmapLibrary.catalog.events import CatalogListener
from BeatmapLibrary.errors import InvariantViolation, NotFoundError
from BeatmapLibrary.models import (
    BeatmapInfo,
    BeatmapMetadata,
    BeatmapSetFile,
    BeatmapSetInfo,
    StoredFile,
)


def _make_set(set_hash="a" * 64, title="Song", versions=("Easy", "Hard")):
    metadata = BeatmapMetadata(title=title, artist="Artist", audio_file="audio.mp3")
    return BeatmapSetInfo(
        hash=set_hash,
        metadata=metadata,
        beatmaps=[
            BeatmapInfo(path=f"{v}.osu", hash=f"{set_hash[:60]}{i:04d}", version=v, ruleset_id=i)
            for i, v in enumerate(versions)
        ],
        files=[
            BeatmapSetFile(filename="audio.mp3", file=StoredFile(hash="b" * 64)),
            BeatmapSetFile(filename="Easy.osu", file=StoredFile(hash="c" * 64)),
        ],
    )


class RecordingListener(CatalogListener):
    def __init__(self):
        self.events = []

    def set_added(self, beatmap_set):
        self.events.append(("added", beatmap_set.id))

    def set_removed(self, beatmap_set):
        self.events.append(("removed", beatmap_set.id))


class TestAdd:
    """Persisting new sets."""

    def test_add_assigns_ids(self, catalog):
        beatmap_set = _make_set()

        assert catalog.add(beatmap_set) is True

        assert beatmap_set.id > 0
        assert all(b.id > 0 and b.beatmap_set_id == beatmap_set.id for b in beatmap_set.beatmaps)
        assert all(r.id > 0 and r.beatmap_set_id == beatmap_set.id for r in beatmap_set.files)
        assert beatmap_set.metadata.id > 0

    def test_add_persisted_set_is_noop(self, catalog):
        beatmap_set = _make_set()
        catalog.add(beatmap_set)

        assert catalog.add(beatmap_set) is False
        assert catalog.stats()["total_sets"] == 1

    def test_created_at_is_utc(self, catalog):
        beatmap_set = _make_set()
        catalog.add(beatmap_set)

        row = catalog.conn.execute(
            "SELECT created_at FROM beatmap_sets WHERE id = ?", (beatmap_set.id,)
        ).fetchone()

        assert row["created_at"].endswith("+00:00")

    def test_add_without_hash(self, catalog):
        with pytest.raises(InvariantViolation):
            catalog.add(BeatmapSetInfo())

    def test_duplicate_hash_rolls_back(self, catalog):
        """Test a hash collision leaves no partial rows behind."""
        catalog.add(_make_set())
        duplicate = _make_set(title="Other")

        with pytest.raises(InvariantViolation):
            catalog.add(duplicate)

        assert duplicate.id == 0
        assert duplicate.metadata.id == 0
        assert catalog.stats() == {
            "total_sets": 1,
            "delete_pending_sets": 0,
            "total_beatmaps": 2,
            "total_set_files": 2,
        }

    def test_add_publishes_event(self, catalog):
        listener = RecordingListener()
        catalog.subscribe(listener)
        beatmap_set = _make_set()

        catalog.add(beatmap_set)

        assert listener.events == [("added", beatmap_set.id)]

    def test_listener_failure_does_not_abort(self, catalog, caplog):
        """Test an exception in a listener is logged, not raised."""

        class Broken(CatalogListener):
            def set_added(self, beatmap_set):
                raise RuntimeError("listener failed")

        catalog.subscribe(Broken())
        beatmap_set = _make_set()

        assert catalog.add(beatmap_set) is True
        assert "listener failed" in caplog.text

    def test_unsubscribe(self, catalog):
        listener = RecordingListener()
        catalog.subscribe(listener)
        catalog.unsubscribe(listener)

        catalog.add(_make_set())

        assert listener.events == []


class TestDeleteState:
    """Soft delete and restore transitions."""

    def test_delete_and_undelete(self, catalog):
        beatmap_set = _make_set()
        catalog.add(beatmap_set)

        assert catalog.delete(beatmap_set) is True
        assert catalog.delete(beatmap_set) is False
        assert catalog.undelete(beatmap_set) is True
        assert catalog.undelete(beatmap_set) is False
        assert beatmap_set.delete_pending is False

    def test_delete_unknown_set(self, catalog):
        with pytest.raises(NotFoundError):
            catalog.delete(BeatmapSetInfo(id=42))

    def test_events_on_transitions(self, catalog):
        listener = RecordingListener()
        beatmap_set = _make_set()
        catalog.add(beatmap_set)
        catalog.subscribe(listener)

        catalog.delete(beatmap_set)
        catalog.undelete(beatmap_set)

        assert listener.events == [("removed", beatmap_set.id), ("added", beatmap_set.id)]

    def test_purge_deleted(self, catalog):
        kept, purged = _make_set("a" * 64), _make_set("d" * 64, title="Gone")
        catalog.add(kept)
        catalog.add(purged)
        catalog.delete(purged)

        removed = catalog.purge_deleted()

        assert [s.id for s in removed] == [purged.id]
        assert len(removed[0].files) == 2
        assert catalog.stats()["total_sets"] == 1
        assert catalog.get_by_hash("d" * 64) is None
        assert catalog.get_by_hash("a" * 64).id == kept.id


class TestPopulate:
    """Explicit loading of relations."""

    def test_populate_set(self, catalog):
        beatmap_set = _make_set()
        catalog.add(beatmap_set)
        shallow = BeatmapSetInfo(id=beatmap_set.id)

        catalog.populate(shallow)

        assert shallow.hash == beatmap_set.hash
        assert [b.version for b in shallow.beatmaps] == ["Easy", "Hard"]
        assert [r.filename for r in shallow.files] == ["audio.mp3", "Easy.osu"]
        assert shallow.metadata.title == "Song"

    def test_populate_is_idempotent(self, catalog):
        beatmap_set = _make_set()
        catalog.add(beatmap_set)
        shallow = BeatmapSetInfo(id=beatmap_set.id)

        catalog.populate(shallow)
        catalog.populate(shallow)

        assert len(shallow.beatmaps) == 2
        assert len(shallow.files) == 2

    def test_populate_beatmap_resolves_ruleset_and_set(self, catalog):
        beatmap_set = _make_set()
        catalog.add(beatmap_set)
        hard = BeatmapInfo(id=beatmap_set.beatmaps[1].id)

        catalog.populate(hard)

        assert hard.version == "Hard"
        assert hard.ruleset.short_name == "taiko"
        assert hard.beatmap_set.id == beatmap_set.id
        assert len(hard.beatmap_set.files) == 2

    def test_populate_missing_set(self, catalog):
        with pytest.raises(NotFoundError):
            catalog.populate(BeatmapSetInfo(id=7))

    def test_populate_missing_beatmap(self, catalog):
        with pytest.raises(NotFoundError):
            catalog.populate(BeatmapInfo(id=7))

    def test_populate_rejects_other_types(self, catalog):
        with pytest.raises(TypeError):
            catalog.populate("not a model")


class TestQuery:
    """Lazy predicate queries."""

    def test_query_is_lazy(self, catalog):
        """Test the predicate only runs as the generator is consumed."""
        for i, h in enumerate("ade"):
            catalog.add(_make_set(h * 64, title=f"Song {i}"))
        seen = []

        def predicate(s):
            seen.append(s.id)
            return True

        results = catalog.query(BeatmapSetInfo, predicate)
        assert seen == []

        first = next(results)
        assert seen == [first.id]

    def test_query_returns_shallow_objects(self, catalog):
        catalog.add(_make_set())

        (beatmap_set,) = list(catalog.query(BeatmapSetInfo))

        assert beatmap_set.beatmaps == []
        assert beatmap_set.files == []
        assert beatmap_set.metadata.title == "Song"

    def test_query_beatmaps(self, catalog):
        catalog.add(_make_set())

        versions = [b.version for b in catalog.query(BeatmapInfo, lambda b: b.ruleset_id == 1)]

        assert versions == ["Hard"]

    def test_query_and_populate(self, catalog):
        catalog.add(_make_set())

        (beatmap,) = catalog.query_and_populate(BeatmapInfo, lambda b: b.version == "Easy")

        assert beatmap.beatmap_set is not None
        assert beatmap.ruleset.id == 0

    def test_query_unknown_kind(self, catalog):
        with pytest.raises(TypeError):
            list(catalog.query(BeatmapMetadata))

    def test_get_by_hash_includes_deleted(self, catalog):
        beatmap_set = _make_set()
        catalog.add(beatmap_set)
        catalog.delete(beatmap_set)

        found = catalog.get_by_hash(beatmap_set.hash)

        assert found.id == beatmap_set.id
        assert found.delete_pending

    def test_reset(self, catalog):
        catalog.add(_make_set())

        catalog.reset()

        assert list(catalog.query(BeatmapSetInfo)) == []
        assert catalog.stats()["total_beatmaps"] == 0
