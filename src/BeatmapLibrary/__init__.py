# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.__init__",
#   "purpose": "Local beatmap library: import, storage, catalog and working beatmaps.",
#   "sections": []
# }
# === /NAVMAP ===

"""
Local beatmap library.

Imports beatmap archives (``.osz`` files or osu!stable song folders) into a
content-addressed, reference-counted file store and a transactional SQLite
catalog, and builds lazily decoded working beatmaps from what is stored:
  - Import pipeline with whole-set deduplication by content hash
  - Soft delete / undelete with blob reference counting and deferred purge
  - Catalog queries with explicit population of relations
  - Working beatmaps with graceful fallback for missing resources
"""

from __future__ import annotations

from BeatmapLibrary.bootstrap import LibraryBootstrap
from BeatmapLibrary.catalog import CatalogListener, SQLiteBeatmapCatalog
from BeatmapLibrary.errors import (
    ArchiveError,
    BeatmapLibraryError,
    DecodeError,
    InvariantViolation,
    NotFoundError,
    StorageError,
)
from BeatmapLibrary.files import ContentFileStore
from BeatmapLibrary.manager import BeatmapManager
from BeatmapLibrary.models import BeatmapInfo, BeatmapMetadata, BeatmapSetInfo
from BeatmapLibrary.working import Track, WorkingBeatmap

__version__ = "1.0.0"
__all__ = [
    "BeatmapManager",
    "LibraryBootstrap",
    "ContentFileStore",
    "SQLiteBeatmapCatalog",
    "CatalogListener",
    "WorkingBeatmap",
    "Track",
    "BeatmapInfo",
    "BeatmapMetadata",
    "BeatmapSetInfo",
    "BeatmapLibraryError",
    "ArchiveError",
    "DecodeError",
    "StorageError",
    "NotFoundError",
    "InvariantViolation",
]
