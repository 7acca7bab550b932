# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.importer",
#   "purpose": "Archive import pipeline: hash, dedup, ingest, decode and commit beatmap sets.",
#   "sections": [
#     {"id": "importpipeline", "name": "ImportPipeline", "anchor": "class-importpipeline", "kind": "class"},
#     {"id": "compute-set-hash", "name": "compute_set_hash", "anchor": "function-compute-set-hash", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Archive import pipeline for beatmap sets.

Responsibilities
----------------
- Turn one :class:`~BeatmapLibrary.archives.ArchiveReader` into a committed
  :class:`~BeatmapLibrary.models.BeatmapSetInfo`: hash the beatmap
  descriptors, short-circuit on a known hash, ingest every entry into the
  :class:`~BeatmapLibrary.files.store.ContentFileStore`, decode each
  descriptor and hand the assembled set to the catalog.
- Run batch imports over filesystem paths as a lazy sequence of progress
  updates, skipping (and logging) archives that fail.
- Keep blob reference counts in step with the catalog on delete/undelete and
  when an import is abandoned part-way.

Design Notes
------------
- ``_import_lock`` is a plain (non re-entrant) lock held from hashing until
  the catalog add returns, so two imports of the same content can never both
  pass the dedup check. The catalog keeps its own lock; queries from other
  threads only wait for the short catalog-touching moments of an import.
- Nothing reaches the catalog until every descriptor decoded; a failing
  archive leaves no set behind and releases the blob references it took.
"""

from __future__ import annotations

import hashlib
import io
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from BeatmapLibrary.archives import ArchiveReader, get_reader_from
from BeatmapLibrary.catalog.store import SQLiteBeatmapCatalog
from BeatmapLibrary.config.models import ImportConfig, MetadataPolicy
from BeatmapLibrary.decoding import BeatmapDecoder, get_decoder
from BeatmapLibrary.errors import ArchiveError, DecodeError, log_import_failure
from BeatmapLibrary.files.store import ContentFileStore
from BeatmapLibrary.models import BeatmapInfo, BeatmapMetadata, BeatmapSetFile, BeatmapSetInfo
from BeatmapLibrary.notifications import ProgressNotification
from BeatmapLibrary.rulesets import RulesetStore

logger = logging.getLogger(__name__)

__all__ = ["ImportPipeline", "compute_set_hash"]


def compute_set_hash(reader: ArchiveReader, item_names: Sequence[str]) -> str:
    """SHA-256 over the concatenated bytes of ``item_names``, in the given order."""
    digest = hashlib.sha256()
    for name in item_names:
        with reader.get_stream(name) as stream:
            for chunk in iter(lambda: stream.read(1 << 16), b""):
                digest.update(chunk)
    return digest.hexdigest()


class ImportPipeline:
    """Imports archives into the file store and catalog, one at a time."""

    def __init__(
        self,
        files: ContentFileStore,
        catalog: SQLiteBeatmapCatalog,
        rulesets: RulesetStore,
        config: Optional[ImportConfig] = None,
        *,
        storage_root: Optional[str] = None,
        decoder_factory: Callable[[], BeatmapDecoder] = get_decoder,
    ):
        self.files = files
        self.catalog = catalog
        self.rulesets = rulesets
        self.config = config or ImportConfig()
        self.storage_root = Path(storage_root).resolve() if storage_root else None
        self.decoder_factory = decoder_factory
        self._import_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Single archive
    # ------------------------------------------------------------------

    def import_archive(self, reader: ArchiveReader) -> BeatmapSetInfo:
        """Import one archive, or return the already stored set with the same content.

        Raises:
            ArchiveError: If the archive cannot be read or holds no beatmaps.
            DecodeError: If any beatmap descriptor is malformed.
            StorageError: If a blob cannot be stored.
        """
        with self._import_lock:
            return self._import_to_storage(reader)

    def import_set(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Add an assembled set to the catalog; no-op for persisted sets."""
        if beatmap_set.id != 0:
            return False
        return self.catalog.add(beatmap_set)

    def _item_names(self, reader: ArchiveReader) -> List[str]:
        extension = self.config.item_extension
        return [name for name in reader.filenames if name.lower().endswith(extension)]

    def _import_to_storage(self, reader: ArchiveReader) -> BeatmapSetInfo:
        item_names = self._item_names(reader)
        if not item_names:
            raise ArchiveError(
                f"No {self.config.item_extension} files in archive",
                context={"path": reader.name},
            )

        set_hash = compute_set_hash(reader, item_names)

        existing = self.catalog.get_by_hash(set_hash)
        if existing is not None:
            logger.info(f"Beatmap set {set_hash} already imported as id={existing.id}")
            self.undelete(existing)
            return existing

        ingested: List[BeatmapSetFile] = []
        try:
            for name in reader.filenames:
                with reader.get_stream(name) as stream:
                    ingested.append(BeatmapSetFile(filename=name, file=self.files.add(stream)))
            beatmap_set = self._assemble(reader, set_hash, item_names, ingested)
            self.import_set(beatmap_set)
            return beatmap_set
        except BaseException:
            if ingested:
                logger.warning(
                    f"Abandoning import of {reader.name}; releasing {len(ingested)} file references"
                )
                self.files.dereference(record.file for record in ingested)
            raise

    def _assemble(
        self,
        reader: ArchiveReader,
        set_hash: str,
        item_names: Sequence[str],
        files: List[BeatmapSetFile],
    ) -> BeatmapSetInfo:
        decoder = self.decoder_factory()
        with reader.get_stream(item_names[0]) as stream:
            metadata = self._decode(decoder, stream, item_names[0], reader).metadata

        beatmap_set = BeatmapSetInfo(
            hash=set_hash,
            online_beatmap_set_id=metadata.online_beatmap_set_id if metadata else None,
            metadata=metadata,
            files=files,
        )

        for name in item_names:
            with reader.get_stream(name) as raw:
                data = raw.read()
            beatmap_set.beatmaps.append(self._build_beatmap(decoder, name, data, beatmap_set, reader))

        return beatmap_set

    def _build_beatmap(
        self,
        decoder: BeatmapDecoder,
        name: str,
        data: bytes,
        beatmap_set: BeatmapSetInfo,
        reader: ArchiveReader,
    ) -> BeatmapInfo:
        beatmap = self._decode(decoder, io.BytesIO(data), name, reader)
        info = beatmap.beatmap_info
        info.path = name
        info.hash = hashlib.sha256(data).hexdigest()
        info.md5_hash = hashlib.md5(data).hexdigest()
        info.metadata = self._inherit_metadata(info.metadata, beatmap_set.metadata)

        info.ruleset = self.rulesets.get(info.ruleset_id)
        info.star_difficulty = 0.0
        if info.ruleset is not None:
            try:
                calculator = self.rulesets.create_difficulty_calculator(info.ruleset, beatmap)
                info.star_difficulty = calculator.calculate() if calculator else 0.0
            except Exception:
                logger.warning(
                    f"Difficulty calculation failed for {name} ({info.ruleset.short_name})",
                    exc_info=True,
                )
        else:
            logger.debug(f"No ruleset with id {info.ruleset_id} for {name}")
        return info

    def _inherit_metadata(
        self, own: Optional[BeatmapMetadata], set_metadata: Optional[BeatmapMetadata]
    ) -> Optional[BeatmapMetadata]:
        policy = self.config.metadata_policy
        if policy == MetadataPolicy.ALWAYS:
            return None
        if policy == MetadataPolicy.IDENTICAL and own is not None and own.content_equals(set_metadata):
            return None
        return own

    @staticmethod
    def _decode(decoder: BeatmapDecoder, stream, name: str, reader: ArchiveReader):
        try:
            return decoder.decode(stream)
        except DecodeError as e:
            e.context.update({"path": reader.name, "entry": name})
            raise

    # ------------------------------------------------------------------
    # Delete / undelete with reference counting
    # ------------------------------------------------------------------

    def delete(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Soft-delete a set and release its file references (unless protected)."""
        if not beatmap_set.files:
            self.catalog.populate(beatmap_set)
        if not self.catalog.delete(beatmap_set):
            return False
        if not beatmap_set.protected:
            self.files.dereference(record.file for record in beatmap_set.files)
        return True

    def undelete(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Restore a soft-deleted set and re-take its file references (unless protected)."""
        if not beatmap_set.files:
            self.catalog.populate(beatmap_set)
        if not self.catalog.undelete(beatmap_set):
            return False
        if not beatmap_set.protected:
            self.files.reference(record.file for record in beatmap_set.files)
        return True

    # ------------------------------------------------------------------
    # Batch import
    # ------------------------------------------------------------------

    def import_paths(
        self, paths: Iterable[str], notification: Optional[ProgressNotification] = None
    ) -> Iterator[ProgressNotification]:
        """Import many archives, yielding the progress notification after each one.

        Failures are logged and skipped. Cancellation (``notification.cancel()``)
        is honoured between archives; sets already imported stay imported.
        """
        paths = list(paths)
        notification = notification or ProgressNotification()
        notification.update("Beatmap import is initialising...", 0.0)

        done = 0
        for path in paths:
            if notification.cancelled:
                logger.info(f"Import cancelled after {done} of {len(paths)} archives")
                return

            notification.update(f"Importing ({done} of {len(paths)})\n{os.path.basename(path)}")
            try:
                with get_reader_from(path) as reader:
                    self.import_archive(reader)
                done += 1
                notification.update(notification.text, done / len(paths))
                self._delete_original(path)
            except Exception as e:
                log_import_failure(logger, path, e)
            yield notification

        notification.complete()

    def _delete_original(self, path: str) -> None:
        if not self.config.delete_original or not os.path.isfile(path):
            return
        resolved = Path(path).resolve()
        if self.storage_root is not None and resolved.is_relative_to(self.storage_root):
            logger.debug(f"Keeping {path}: inside managed storage")
            return
        try:
            os.remove(resolved)
            logger.debug(f"Deleted original archive {path}")
        except OSError as e:
            logger.error(f"Could not delete original file after import ({os.path.basename(path)}): {e}")
