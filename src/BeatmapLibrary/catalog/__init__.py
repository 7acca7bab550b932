# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.catalog.__init__",
#   "purpose": "Beatmap catalog: sets, beatmaps, metadata and file records.",
#   "sections": []
# }
# === /NAVMAP ===

"""
Beatmap catalog for BeatmapLibrary.

Provides persistent, transactional storage of beatmap sets, their beatmaps,
shared metadata and the file records linking set filenames to stored blobs:
  - Idempotent add keyed on catalog id (0 = not yet persisted)
  - Soft delete / undelete via the ``delete_pending`` flag
  - Lazy queries with explicit, on-demand population of relations
  - Observer notifications after each committed lifecycle change
"""

from __future__ import annotations

from BeatmapLibrary.catalog.events import CatalogEvents, CatalogListener
from BeatmapLibrary.catalog.store import CatalogStore, SQLiteBeatmapCatalog

__all__ = [
    "CatalogEvents",
    "CatalogListener",
    "CatalogStore",
    "SQLiteBeatmapCatalog",
]
