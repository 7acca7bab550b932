# === NAVMAP v1 ===
# {
#   "module": "tests.beatmap_library.conftest",
#   "purpose": "Shared fixtures building archives and library components under tmp_path",
#   "sections": [
#     {"id": "file-store", "name": "file_store", "anchor": "function-file-store", "kind": "function"},
#     {"id": "catalog", "name": "catalog", "anchor": "function-catalog", "kind": "function"},
#     {"id": "manager", "name": "manager", "anchor": "function-manager", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Shared fixtures for the beatmap library tests.

Archives are built on the fly with :mod:`zipfile` under ``tmp_path``; every
test gets its own file store, catalog and manager.
"""

from __future__ import annotations

import pytest

from BeatmapLibrary.catalog.store import SQLiteBeatmapCatalog
from BeatmapLibrary.config.models import ImportConfig
from BeatmapLibrary.files.store import ContentFileStore
from BeatmapLibrary.manager import BeatmapManager
from BeatmapLibrary.notifications import ProgressNotification
from BeatmapLibrary.rulesets import RulesetStore
from tests.beatmap_library.builders import build_osz, standard_entries


@pytest.fixture
def archive_dir(tmp_path):
    """Directory outside managed storage where test archives are written."""
    path = tmp_path / "incoming"
    path.mkdir()
    return path


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "storage"


@pytest.fixture
def file_store(storage_root):
    """Create a test file store."""
    store = ContentFileStore(
        root_dir=str(storage_root / "files"),
        db_path=str(storage_root / "state" / "files.sqlite"),
        wal_mode=False,
        lock_timeout=5.0,
    )
    yield store
    store.close()


@pytest.fixture
def rulesets():
    return RulesetStore()


@pytest.fixture
def catalog(storage_root, rulesets):
    """Create a test catalog."""
    cat = SQLiteBeatmapCatalog(
        path=str(storage_root / "state" / "beatmaps.sqlite"), wal_mode=False, rulesets=rulesets
    )
    yield cat
    cat.close()


@pytest.fixture
def import_config():
    return ImportConfig(delete_original=False, stable_paths=[])


@pytest.fixture
def posted():
    """Collects notifications posted by the manager."""
    return []


@pytest.fixture
def manager(file_store, catalog, rulesets, import_config, storage_root, posted):
    def sink(notification: ProgressNotification) -> None:
        posted.append(notification)

    return BeatmapManager(
        file_store,
        catalog,
        rulesets,
        import_config,
        storage_root=str(storage_root),
        post_notification=sink,
    )


@pytest.fixture
def standard_osz(archive_dir):
    """The a.osu/b.osu/bg.jpg/audio.mp3 archive."""
    return build_osz(archive_dir / "standard.osz", standard_entries())
