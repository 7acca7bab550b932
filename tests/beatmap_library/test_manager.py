"""Tests for BeatmapManager delete/undelete, queries, purge and stable import.

Reference counts must move symmetrically with the delete state, and
protected sets hold their files until purged.
"""

from __future__ import annotations

import logging
from io import BytesIO

import pytest

from BeatmapLibrary.archives import OszArchiveReader
from BeatmapLibrary.config.models import ImportConfig
from BeatmapLibrary.errors import InvariantViolation
from BeatmapLibrary.manager import BeatmapManager
from BeatmapLibrary.models import BeatmapInfo, BeatmapSetFile, BeatmapSetInfo
from BeatmapLibrary.notifications import ProgressState
from tests.beatmap_library.builders import build_folder, build_osz, make_osu, standard_entries


@pytest.fixture
def imported(manager, standard_osz):
    """The standard set, imported and populated."""
    beatmap_set = manager.import_archive(OszArchiveReader(str(standard_osz)))
    return manager.query_beatmap_set(lambda s: s.id == beatmap_set.id)


def _counts(file_store, beatmap_set):
    return {r.filename: file_store.get(r.file.hash).reference_count for r in beatmap_set.files}


class TestDeleteLifecycle:
    """Soft delete and restore with reference counting."""

    def test_delete_releases_references(self, manager, file_store, imported):
        """Test delete drops every file reference to zero."""
        assert manager.delete(imported) is True

        assert set(_counts(file_store, imported).values()) == {0}
        assert imported.delete_pending

    def test_delete_undelete_is_symmetric(self, manager, file_store, imported):
        """Test delete followed by undelete restores the original counts."""
        before = _counts(file_store, imported)

        manager.delete(imported)
        manager.undelete(imported)

        assert _counts(file_store, imported) == before

    def test_double_delete_is_noop(self, manager, file_store, imported):
        """Test a second delete returns False and does not underflow counts."""
        manager.delete(imported)

        assert manager.delete(imported) is False
        assert set(_counts(file_store, imported).values()) == {0}

    def test_undelete_usable_set_is_noop(self, manager, file_store, imported):
        """Test undeleting a usable set returns False and takes no references."""
        assert manager.undelete(imported) is False
        assert set(_counts(file_store, imported).values()) == {1}

    def test_delete_unpopulated_set(self, manager, file_store, imported):
        """Test deleting a shallow set loads its files first."""
        shallow = BeatmapSetInfo(id=imported.id)

        assert manager.delete(shallow) is True
        assert set(_counts(file_store, imported).values()) == {0}

    def test_usable_sets_exclude_deleted(self, manager, imported):
        """Test deleted sets are hidden from usable sets but still queryable."""
        manager.delete(imported)

        assert manager.get_all_usable_beatmap_sets() == []
        assert manager.query_beatmap_set(lambda s: s.id == imported.id).delete_pending

    def test_removed_event_published(self, manager, imported):
        """Test set_removed fires on delete and set_added on undelete."""
        events = []

        class Listener:
            def set_added(self, beatmap_set):
                events.append(("added", beatmap_set.id))

            def set_removed(self, beatmap_set):
                events.append(("removed", beatmap_set.id))

        manager.subscribe(Listener())
        manager.delete(imported)
        manager.delete(imported)
        manager.undelete(imported)

        assert events == [("removed", imported.id), ("added", imported.id)]


class TestProtectedSets:
    """Protected sets keep their files regardless of delete state."""

    @pytest.fixture
    def protected(self, manager, file_store):
        beatmap_set = BeatmapSetInfo(
            hash="f" * 64,
            protected=True,
            beatmaps=[BeatmapInfo(path="p.osu", hash="e" * 64, version="Default")],
            files=[BeatmapSetFile(filename="p.osu", file=file_store.add(BytesIO(b"protected")))],
        )
        assert manager.import_set(beatmap_set) is True
        return beatmap_set

    def test_delete_keeps_references(self, manager, file_store, protected):
        """Test deleting a protected set leaves its references untouched."""
        assert manager.delete(protected) is True

        assert _counts(file_store, protected) == {"p.osu": 1}

    def test_undelete_keeps_references(self, manager, file_store, protected):
        """Test undeleting a protected set takes no extra references."""
        manager.delete(protected)
        manager.undelete(protected)

        assert _counts(file_store, protected) == {"p.osu": 1}

    def test_purge_releases_protected_references(self, manager, file_store, catalog, protected):
        """Test purging a deleted protected set frees its blobs."""
        blob = protected.files[0].file
        manager.delete(protected)

        removed = manager.purge()

        assert catalog.stats()["total_sets"] == 0
        assert removed == 1
        assert file_store.get(blob.hash) is None
        assert not file_store.get_path(blob.storage_path).exists()

    def test_delete_all_skips_protected(self, manager, imported, protected):
        """Test bulk delete leaves protected sets usable."""
        notification = manager.delete_all()

        usable = manager.get_all_usable_beatmap_sets()
        assert [s.id for s in usable] == [protected.id]
        assert notification.state == ProgressState.COMPLETED


class TestDeleteAll:
    """Bulk delete with progress."""

    def test_delete_all(self, manager, file_store, archive_dir, posted):
        """Test every usable set is deleted and one notification is posted."""
        for i in range(3):
            manager.import_paths(
                str(build_osz(archive_dir / f"{i}.osz", {"a.osu": make_osu(title=f"Song {i}")}))
            )
        posted.clear()

        notification = manager.delete_all()

        assert manager.get_all_usable_beatmap_sets() == []
        assert file_store.stats()["total_references"] == 0
        assert posted == [notification]
        assert notification.progress == pytest.approx(1.0)

    def test_delete_all_empty(self, manager, posted):
        """Test nothing is posted when there is nothing to delete."""
        assert manager.delete_all() is None
        assert posted == []

    def test_delete_all_cancelled(self, manager, archive_dir):
        """Test cancellation is honoured between sets."""
        for i in range(3):
            manager.import_paths(
                str(build_osz(archive_dir / f"{i}.osz", {"a.osu": make_osu(title=f"Song {i}")}))
            )

        def cancel_after_first(notification):
            original = notification.update

            def update(text, progress=None):
                original(text, progress)
                if progress is not None and progress > 0.5:
                    notification.cancel()

            notification.update = update

        manager.post_notification = cancel_after_first
        notification = manager.delete_all()

        assert notification.state == ProgressState.CANCELLED
        assert 0 < len(manager.get_all_usable_beatmap_sets()) < 3


class TestQueries:
    """Predicate queries through the manager."""

    def test_query_beatmap_set_returns_populated(self, manager, imported):
        beatmap_set = manager.query_beatmap_set(lambda s: s.hash == imported.hash)

        assert len(beatmap_set.beatmaps) == 2
        assert len(beatmap_set.files) == 4

    def test_query_without_match(self, manager, imported):
        assert manager.query_beatmap_set(lambda s: s.id == -1) is None
        assert manager.query_beatmap(lambda b: b.version == "Extra") is None

    def test_query_beatmap_populates_set(self, manager, imported):
        """Test a queried beatmap carries its populated set."""
        beatmap = manager.query_beatmap(lambda b: b.version == "Hard")

        assert beatmap.beatmap_set.id == imported.id
        assert len(beatmap.beatmap_set.files) == 4
        assert beatmap.ruleset.id == 0

    def test_unpopulated_usable_sets(self, manager, imported):
        """Test populate=False returns shallow sets."""
        (shallow,) = manager.get_all_usable_beatmap_sets(populate=False)

        assert shallow.id == imported.id
        assert shallow.beatmaps == []
        assert shallow.files == []


class TestPurge:
    """Deferred removal of deleted sets and unreferenced blobs."""

    def test_purge_removes_deleted_sets_and_blobs(self, manager, file_store, catalog, imported):
        manager.delete(imported)

        removed = manager.purge()

        assert removed == 4
        assert catalog.stats()["total_sets"] == 0
        assert file_store.count() == 0
        for record in imported.files:
            assert not file_store.get_path(record.file.storage_path).exists()

    def test_purge_keeps_shared_blobs(self, manager, file_store, archive_dir, imported):
        """Test blobs still referenced by another set survive a purge."""
        entries = standard_entries()
        other = manager.import_archive(
            OszArchiveReader(
                str(
                    build_osz(
                        archive_dir / "other.osz",
                        {"a.osu": make_osu(title="Other"), "audio.mp3": entries["audio.mp3"]},
                    )
                )
            )
        )
        manager.delete(imported)

        manager.purge()

        assert file_store.get(other.find_file("audio.mp3").file.hash).reference_count == 1
        assert file_store.count() == 2

    def test_purge_dry_run(self, manager, file_store, catalog, imported):
        """Test dry-run reports blobs but removes nothing."""
        manager.delete(imported)

        assert manager.purge(dry_run=True) == 4
        assert catalog.stats()["total_sets"] == 1
        assert file_store.count() == 4

    def test_reset(self, manager, file_store, catalog, imported):
        manager.reset()

        assert catalog.stats()["total_sets"] == 0
        assert file_store.count() == 0


class TestImportFromStable:
    """Import of an osu!stable Songs directory."""

    def test_missing_install_is_logged(self, manager, caplog):
        """Test a missing stable install logs an error and does nothing."""
        with caplog.at_level(logging.ERROR):
            assert manager.import_from_stable() is None

        assert "osu!stable" in caplog.text

    def test_imports_every_song_folder(self, file_store, catalog, rulesets, tmp_path):
        """Test each subdirectory of the first existing candidate is imported."""
        songs = tmp_path / "osu!" / "Songs"
        build_folder(songs / "1 First", {"a.osu": make_osu(title="First")})
        build_folder(songs / "2 Second", {"a.osu": make_osu(title="Second")})
        (songs / "stray.txt").write_text("ignored")
        manager = BeatmapManager(
            file_store,
            catalog,
            rulesets,
            ImportConfig(stable_paths=[str(tmp_path / "missing"), str(songs)]),
            post_notification=lambda n: None,
        )

        notification = manager.import_from_stable()

        titles = sorted(s.metadata.title for s in manager.get_all_usable_beatmap_sets())
        assert titles == ["First", "Second"]
        assert notification.state == ProgressState.COMPLETED
        assert (songs / "1 First").is_dir()


class TestGetWorkingBeatmapLookup:
    """Resolution of working beatmaps through the catalog."""

    def test_none_returns_default(self, manager):
        assert manager.get_working_beatmap(None) is None

    def test_unknown_set_raises(self, manager):
        """Test a beatmap whose set is not stored raises InvariantViolation."""
        with pytest.raises(InvariantViolation):
            manager.get_working_beatmap(BeatmapInfo(beatmap_set_id=999, path="x.osu"))

    def test_shallow_beatmap_is_resolved(self, manager, imported):
        """Test a beatmap known only by id resolves its set and metadata."""
        beatmap_id = imported.beatmaps[0].id

        working = manager.get_working_beatmap(BeatmapInfo(id=beatmap_id))

        assert working.beatmap_info.path == imported.beatmaps[0].path
        assert working.beatmap_set.id == imported.id
        assert working.beatmap_info.metadata.title == "Test Song"
