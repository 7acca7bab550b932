# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.manager",
#   "purpose": "Public facade for importing, querying and retrieving beatmaps.",
#   "sections": [
#     {"id": "beatmapmanager", "name": "BeatmapManager", "anchor": "class-beatmapmanager", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Public facade for importing, querying and retrieving beatmaps.

:class:`BeatmapManager` wires the import pipeline, catalog and file store
together and is the only object the rest of an application needs. Every
query goes through the catalog (and its lock); working beatmaps are built
after the catalog lock is released.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Iterator, List, Optional

from BeatmapLibrary.archives import ArchiveReader
from BeatmapLibrary.catalog.events import CatalogListener
from BeatmapLibrary.catalog.store import SQLiteBeatmapCatalog
from BeatmapLibrary.config.models import ImportConfig
from BeatmapLibrary.decoding import BeatmapDecoder, get_decoder
from BeatmapLibrary.errors import InvariantViolation, NotFoundError
from BeatmapLibrary.files.store import ContentFileStore
from BeatmapLibrary.importer import ImportPipeline
from BeatmapLibrary.models import BeatmapInfo, BeatmapSetInfo
from BeatmapLibrary.notifications import NotificationSink, ProgressNotification, log_sink
from BeatmapLibrary.rulesets import RulesetStore
from BeatmapLibrary.working import WorkingBeatmap

logger = logging.getLogger(__name__)

SetPredicate = Callable[[BeatmapSetInfo], bool]
BeatmapPredicate = Callable[[BeatmapInfo], bool]


class BeatmapManager:
    """Handles the storage and retrieval of beatmap sets and working beatmaps."""

    def __init__(
        self,
        files: ContentFileStore,
        catalog: SQLiteBeatmapCatalog,
        rulesets: RulesetStore,
        config: Optional[ImportConfig] = None,
        *,
        storage_root: Optional[str] = None,
        post_notification: NotificationSink = log_sink,
        decoder_factory: Callable[[], BeatmapDecoder] = get_decoder,
    ):
        self.files = files
        self.catalog = catalog
        self.rulesets = rulesets
        self.config = config or ImportConfig()
        self.post_notification = post_notification
        self.decoder_factory = decoder_factory
        self.default_beatmap: Optional[WorkingBeatmap] = None
        self.importer = ImportPipeline(
            files,
            catalog,
            rulesets,
            self.config,
            storage_root=storage_root,
            decoder_factory=decoder_factory,
        )

    def subscribe(self, listener: CatalogListener) -> None:
        """Receive ``set_added`` / ``set_removed`` after each committed change."""
        self.catalog.subscribe(listener)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_paths(self, *paths: str) -> ProgressNotification:
        """Import archives or song folders from disk, posting one progress notification."""
        notification = ProgressNotification(text="Beatmap import is initialising...")
        self.post_notification(notification)
        for _ in self.importer.import_paths(paths, notification):
            pass
        return notification

    def iter_import(
        self, paths, notification: Optional[ProgressNotification] = None
    ) -> Iterator[ProgressNotification]:
        """Lazy variant of :meth:`import_paths` yielding after each archive."""
        return self.importer.import_paths(paths, notification)

    def import_archive(self, reader: ArchiveReader) -> BeatmapSetInfo:
        return self.importer.import_archive(reader)

    def import_set(self, beatmap_set: BeatmapSetInfo) -> bool:
        return self.importer.import_set(beatmap_set)

    def import_from_stable(self) -> Optional[ProgressNotification]:
        """Import every song folder of an osu!stable installation.

        A missing installation is logged and ignored.
        """
        stable_path = next((p for p in self.config.stable_paths if os.path.isdir(p)), None)
        if stable_path is None:
            logger.error("Couldn't find an osu!stable installation!")
            return None

        folders = sorted(
            os.path.join(stable_path, entry)
            for entry in os.listdir(stable_path)
            if os.path.isdir(os.path.join(stable_path, entry))
        )
        logger.info(f"Importing {len(folders)} folders from {stable_path}")
        return self.import_paths(*folders)

    # ------------------------------------------------------------------
    # Delete / undelete
    # ------------------------------------------------------------------

    def delete(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Delete a set. No-op (False) for already deleted sets."""
        return self.importer.delete(beatmap_set)

    def undelete(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Restore a deleted but not yet purged set. No-op (False) for usable sets."""
        return self.importer.undelete(beatmap_set)

    def delete_all(self) -> Optional[ProgressNotification]:
        """Delete every usable set except protected ones, honouring cancellation."""
        sets = self.catalog.query_and_populate(
            BeatmapSetInfo, lambda s: not s.delete_pending and not s.protected
        )
        if not sets:
            return None

        notification = ProgressNotification()
        self.post_notification(notification)

        for i, beatmap_set in enumerate(sets):
            if notification.cancelled:
                logger.info(f"Delete-all cancelled after {i} of {len(sets)} sets")
                return notification
            notification.update(f"Deleting ({i} of {len(sets)})", (i + 1) / len(sets))
            self.delete(beatmap_set)

        notification.complete()
        return notification

    def purge(self, *, dry_run: bool = False) -> int:
        """Remove deleted sets from the catalog and unreferenced blobs from disk.

        Protected sets keep their file references while deleted; those are
        released here, once the set is gone from the catalog.
        """
        if not dry_run:
            for beatmap_set in self.catalog.purge_deleted():
                if beatmap_set.protected:
                    self.files.dereference(record.file for record in beatmap_set.files)
        return self.files.purge_unreferenced(dry_run=dry_run)

    def reset(self) -> None:
        """Reset the manager to an empty state, dropping every set and blob."""
        self.catalog.reset()
        self.files.reset()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get_working_beatmap(
        self, beatmap_info: Optional[BeatmapInfo], previous: Optional[WorkingBeatmap] = None
    ) -> Optional[WorkingBeatmap]:
        """Build a :class:`WorkingBeatmap` for ``beatmap_info``.

        Args:
            beatmap_info: The beatmap to look up; ``None`` yields the default beatmap.
            previous: The currently loaded working beatmap; decoded resources
                it shares with the new one are handed over.

        Raises:
            InvariantViolation: If the beatmap's set is not in the catalog.
        """
        default = self.default_beatmap
        if beatmap_info is None or (default is not None and beatmap_info is default.beatmap_info):
            return default

        try:
            self.catalog.populate(beatmap_info)
        except NotFoundError as e:
            raise InvariantViolation(
                f"Beatmap set {beatmap_info.beatmap_set_id} is not in the local database.",
                context=e.context,
            ) from e

        if beatmap_info.beatmap_set is None:
            raise InvariantViolation(
                f"Beatmap set {beatmap_info.beatmap_set_id} is not in the local database."
            )
        if beatmap_info.metadata is None:
            beatmap_info.metadata = beatmap_info.beatmap_set.metadata

        working = WorkingBeatmap(beatmap_info, self.files, self.decoder_factory)
        if previous is not None:
            previous.transfer_to(working)
        return working

    def query_beatmap_set(self, predicate: SetPredicate) -> Optional[BeatmapSetInfo]:
        """First set matching ``predicate`` (populated), or None."""
        return self.catalog.first(BeatmapSetInfo, predicate)

    def query_beatmap_sets(self, predicate: SetPredicate) -> List[BeatmapSetInfo]:
        return self.catalog.query_and_populate(BeatmapSetInfo, predicate)

    def query_beatmap(self, predicate: BeatmapPredicate) -> Optional[BeatmapInfo]:
        """First beatmap matching ``predicate`` (populated), or None."""
        return self.catalog.first(BeatmapInfo, predicate)

    def query_beatmaps(self, predicate: BeatmapPredicate) -> List[BeatmapInfo]:
        return self.catalog.query_and_populate(BeatmapInfo, predicate)

    def get_all_usable_beatmap_sets(self, populate: bool = True) -> List[BeatmapSetInfo]:
        """All sets not pending deletion."""
        if populate:
            return self.catalog.query_and_populate(BeatmapSetInfo, lambda s: not s.delete_pending)
        return list(self.catalog.query(BeatmapSetInfo, lambda s: not s.delete_pending))
