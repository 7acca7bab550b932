# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.models",
#   "purpose": "Record types shared by the file store, catalog and import pipeline.",
#   "sections": [
#     {"id": "beatmapmetadata", "name": "BeatmapMetadata", "anchor": "class-beatmapmetadata", "kind": "class"},
#     {"id": "storedfile", "name": "StoredFile", "anchor": "class-storedfile", "kind": "class"},
#     {"id": "beatmapsetfile", "name": "BeatmapSetFile", "anchor": "class-beatmapsetfile", "kind": "class"},
#     {"id": "rulesetinfo", "name": "RulesetInfo", "anchor": "class-rulesetinfo", "kind": "class"},
#     {"id": "beatmapinfo", "name": "BeatmapInfo", "anchor": "class-beatmapinfo", "kind": "class"},
#     {"id": "beatmapsetinfo", "name": "BeatmapSetInfo", "anchor": "class-beatmapsetinfo", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Record types for the beatmap library.

Responsibilities
----------------
- Describe the persisted shapes: :class:`BeatmapSetInfo` (a set), its
  :class:`BeatmapInfo` items, the :class:`BeatmapSetFile` records mapping
  archive filenames to :class:`StoredFile` blobs, and the shared
  :class:`BeatmapMetadata`.
- Keep relationships navigable without ownership cycles: an item refers to its
  set by ``beatmap_set_id``; ``beatmap_set`` is only filled in by
  :meth:`BeatmapLibrary.catalog.store.SQLiteBeatmapCatalog.populate`.

Design Notes
------------
- An ``id`` of ``0`` always means "not yet persisted".
- Metadata equality ignores the catalog ``id`` so freshly decoded metadata can
  be compared with stored metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import List, Optional

__all__ = [
    "BeatmapMetadata",
    "StoredFile",
    "BeatmapSetFile",
    "RulesetInfo",
    "BeatmapInfo",
    "BeatmapSetInfo",
    "storage_path_for",
]


def storage_path_for(sha256_hex: str) -> str:
    """Return the relative blob path for a hash (``a/ab/abcdef...``)."""
    return f"{sha256_hex[0]}/{sha256_hex[:2]}/{sha256_hex}"


@dataclass(eq=False)
class BeatmapMetadata:
    """Descriptive metadata shared by a set and (optionally) its items."""

    id: int = 0
    title: Optional[str] = None
    title_unicode: Optional[str] = None
    artist: Optional[str] = None
    artist_unicode: Optional[str] = None
    author: Optional[str] = None
    source: Optional[str] = None
    tags: Optional[str] = None
    preview_time: int = -1
    audio_file: Optional[str] = None
    background_file: Optional[str] = None
    online_beatmap_set_id: Optional[int] = None

    def content_equals(self, other: Optional["BeatmapMetadata"]) -> bool:
        """Compare every field except the catalog id."""
        if other is None:
            return False
        return all(
            getattr(self, f.name) == getattr(other, f.name) for f in fields(self) if f.name != "id"
        )

    def copy(self) -> "BeatmapMetadata":
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["id"] = 0
        return BeatmapMetadata(**values)


@dataclass
class StoredFile:
    """Handle to a content-addressed blob held by the file store."""

    hash: str
    reference_count: int = 0
    id: int = 0

    @property
    def storage_path(self) -> str:
        return storage_path_for(self.hash)


@dataclass
class BeatmapSetFile:
    """Maps a filename inside a set to its stored blob."""

    filename: str
    file: StoredFile
    id: int = 0
    beatmap_set_id: int = 0


@dataclass(frozen=True)
class RulesetInfo:
    """A ruleset (game mode) known to the ruleset store."""

    id: int
    name: str
    short_name: str
    available: bool = True


@dataclass(eq=False)
class BeatmapInfo:
    """One playable difficulty inside a set."""

    path: Optional[str] = None
    hash: Optional[str] = None
    md5_hash: Optional[str] = None
    version: Optional[str] = None
    ruleset_id: int = 0
    star_difficulty: float = 0.0
    metadata: Optional[BeatmapMetadata] = None
    id: int = 0
    beatmap_set_id: int = 0
    ruleset: Optional[RulesetInfo] = field(default=None, repr=False)
    beatmap_set: Optional["BeatmapSetInfo"] = field(default=None, repr=False)


@dataclass(eq=False)
class BeatmapSetInfo:
    """A group of beatmaps imported together from one archive."""

    hash: Optional[str] = None
    online_beatmap_set_id: Optional[int] = None
    metadata: Optional[BeatmapMetadata] = None
    beatmaps: List[BeatmapInfo] = field(default_factory=list)
    files: List[BeatmapSetFile] = field(default_factory=list)
    protected: bool = False
    delete_pending: bool = False
    id: int = 0

    @property
    def storyboard_file(self) -> Optional[str]:
        """Filename of the set-wide storyboard overlay, if the set ships one."""
        for record in self.files:
            if record.filename.lower().endswith(".osb"):
                return record.filename
        return None

    def find_file(self, filename: str) -> Optional[BeatmapSetFile]:
        for record in self.files:
            if record.filename == filename:
                return record
        return None
