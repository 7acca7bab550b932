"""SQLite-based implementation of the beatmap catalog."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Type, TypeVar, Union

from BeatmapLibrary.catalog.events import CatalogEvents, CatalogListener
from BeatmapLibrary.errors import InvariantViolation, NotFoundError
from BeatmapLibrary.models import (
    BeatmapInfo,
    BeatmapMetadata,
    BeatmapSetFile,
    BeatmapSetInfo,
    StoredFile,
)
from BeatmapLibrary.rulesets import RulesetStore

logger = logging.getLogger(__name__)

T = TypeVar("T", BeatmapSetInfo, BeatmapInfo)
Predicate = Callable[[T], bool]

_METADATA_COLUMNS = (
    "title",
    "title_unicode",
    "artist",
    "artist_unicode",
    "author",
    "source",
    "tags",
    "preview_time",
    "audio_file",
    "background_file",
    "online_beatmap_set_id",
)

_BEATMAP_FIELDS = (
    "beatmap_set_id",
    "path",
    "hash",
    "md5_hash",
    "version",
    "ruleset_id",
    "star_difficulty",
)


class CatalogStore:
    """Protocol-like base class for beatmap catalogs.

    Implementations must make each mutating call atomic with respect to every
    other catalog call.
    """

    def add(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Persist a new set with its beatmaps and file records.

        Returns:
            False (and does nothing) if ``beatmap_set.id`` is already assigned.
        """
        raise NotImplementedError

    def delete(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Mark a set pending deletion. Returns False if it already was."""
        raise NotImplementedError

    def undelete(self, beatmap_set: BeatmapSetInfo) -> bool:
        """Clear a set's pending deletion. Returns False if it was not pending."""
        raise NotImplementedError

    def populate(self, item: Union[BeatmapSetInfo, BeatmapInfo]):
        """Load the relations of ``item`` in place (idempotent)."""
        raise NotImplementedError

    def query(self, kind: Type[T], predicate: Optional[Predicate] = None) -> Iterator[T]:
        raise NotImplementedError

    def query_and_populate(self, kind: Type[T], predicate: Optional[Predicate] = None) -> List[T]:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SQLiteBeatmapCatalog(CatalogStore):
    """SQLite-backed catalog of beatmap sets, beatmaps and file records.

    All calls are serialised by one re-entrant lock; each mutation runs in a
    single transaction. Queries snapshot matching rows under the lock and then
    yield lightweight objects, so a slow consumer never blocks writers.
    Relations (beatmaps, files, owning set) are only loaded by
    :meth:`populate`.
    """

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        rulesets: Optional[RulesetStore] = None,
    ):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.wal_mode = wal_mode
        self.rulesets = rulesets
        self.events = CatalogEvents()
        self._lock = threading.RLock()

        self.conn = sqlite3.connect(str(self.path), check_same_thread=False, timeout=30.0)
        self.conn.row_factory = sqlite3.Row

        if wal_mode:
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")

        self._init_schema()
        logger.info(f"Initialized beatmap catalog at {self.path}")

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def _init_schema(self) -> None:
        schema_path = Path(__file__).parent / "schema.sql"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        self.conn.executescript(schema_path.read_text())
        self.conn.commit()
        logger.debug("Schema initialized successfully")

    def subscribe(self, listener: CatalogListener) -> None:
        self.events.subscribe(listener)

    def unsubscribe(self, listener: CatalogListener) -> None:
        self.events.unsubscribe(listener)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, beatmap_set: BeatmapSetInfo) -> bool:
        if beatmap_set.id != 0:
            logger.debug(f"Set {beatmap_set.id} already persisted; add skipped")
            return False
        if not beatmap_set.hash:
            raise InvariantViolation("Cannot add a beatmap set without a hash")

        with self._lock:
            try:
                with self.conn:
                    set_id, beatmap_ids, file_ids = self._insert_set(beatmap_set)
            except sqlite3.IntegrityError as e:
                for metadata in [beatmap_set.metadata] + [b.metadata for b in beatmap_set.beatmaps]:
                    if metadata is not None:
                        metadata.id = 0
                raise InvariantViolation(
                    f"Beatmap set {beatmap_set.hash} could not be added: {e}",
                    context={"hash": beatmap_set.hash},
                ) from e

            beatmap_set.id = set_id
            for beatmap, beatmap_id in zip(beatmap_set.beatmaps, beatmap_ids):
                beatmap.id = beatmap_id
                beatmap.beatmap_set_id = set_id
            for record, file_id in zip(beatmap_set.files, file_ids):
                record.id = file_id
                record.beatmap_set_id = set_id

        logger.info(
            "Added beatmap set id=%d hash=%s beatmaps=%d files=%d",
            set_id,
            beatmap_set.hash,
            len(beatmap_set.beatmaps),
            len(beatmap_set.files),
        )
        self.events.publish_added(beatmap_set)
        return True

    def _insert_set(self, beatmap_set: BeatmapSetInfo):
        metadata_id = self._insert_metadata(beatmap_set.metadata)
        cursor = self.conn.execute(
            """
            INSERT INTO beatmap_sets
            (hash, online_beatmap_set_id, metadata_id, protected, delete_pending, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                beatmap_set.hash,
                beatmap_set.online_beatmap_set_id,
                metadata_id,
                int(beatmap_set.protected),
                int(beatmap_set.delete_pending),
                datetime.now(timezone.utc).isoformat(timespec="seconds"),
            ),
        )
        set_id = cursor.lastrowid

        beatmap_ids = []
        for beatmap in beatmap_set.beatmaps:
            own_metadata_id = self._insert_metadata(beatmap.metadata)
            cursor = self.conn.execute(
                """
                INSERT INTO beatmaps
                (beatmap_set_id, path, hash, md5_hash, version, ruleset_id,
                 star_difficulty, metadata_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    set_id,
                    beatmap.path,
                    beatmap.hash,
                    beatmap.md5_hash,
                    beatmap.version,
                    beatmap.ruleset_id,
                    beatmap.star_difficulty,
                    own_metadata_id,
                ),
            )
            beatmap_ids.append(cursor.lastrowid)

        file_ids = []
        for record in beatmap_set.files:
            cursor = self.conn.execute(
                "INSERT INTO beatmap_set_files (beatmap_set_id, filename, file_hash) VALUES (?, ?, ?)",
                (set_id, record.filename, record.file.hash),
            )
            file_ids.append(cursor.lastrowid)

        return set_id, beatmap_ids, file_ids

    def _insert_metadata(self, metadata: Optional[BeatmapMetadata]) -> Optional[int]:
        if metadata is None:
            return None
        cursor = self.conn.execute(
            f"""
            INSERT INTO beatmap_metadata ({", ".join(_METADATA_COLUMNS)})
            VALUES ({", ".join("?" for _ in _METADATA_COLUMNS)})
            """,
            tuple(getattr(metadata, column) for column in _METADATA_COLUMNS),
        )
        metadata.id = cursor.lastrowid
        return metadata.id

    def delete(self, beatmap_set: BeatmapSetInfo) -> bool:
        changed = self._set_delete_pending(beatmap_set, True)
        if changed:
            logger.info(f"Beatmap set {beatmap_set.id} marked for deletion")
            self.events.publish_removed(beatmap_set)
        return changed

    def undelete(self, beatmap_set: BeatmapSetInfo) -> bool:
        changed = self._set_delete_pending(beatmap_set, False)
        if changed:
            logger.info(f"Beatmap set {beatmap_set.id} restored")
            self.events.publish_added(beatmap_set)
        return changed

    def _set_delete_pending(self, beatmap_set: BeatmapSetInfo, pending: bool) -> bool:
        with self._lock:
            with self.conn:
                cursor = self.conn.execute(
                    "UPDATE beatmap_sets SET delete_pending = ? WHERE id = ? AND delete_pending = ?",
                    (int(pending), beatmap_set.id, int(not pending)),
                )
                if cursor.rowcount == 0:
                    exists = self.conn.execute(
                        "SELECT 1 FROM beatmap_sets WHERE id = ?", (beatmap_set.id,)
                    ).fetchone()
                    if exists is None:
                        raise NotFoundError(
                            f"Beatmap set {beatmap_set.id} is not in the catalog",
                            context={"set_id": beatmap_set.id},
                        )
                    beatmap_set.delete_pending = pending
                    return False
            beatmap_set.delete_pending = pending
            return True

    def purge_deleted(self) -> List[BeatmapSetInfo]:
        """Physically remove every set pending deletion.

        The returned sets are fully populated so the caller can release
        references still held by protected sets.
        """
        with self._lock:
            purged = self.query_and_populate(BeatmapSetInfo, lambda s: s.delete_pending)
            with self.conn:
                for beatmap_set in purged:
                    metadata_ids = [
                        row["metadata_id"]
                        for row in self.conn.execute(
                            "SELECT metadata_id FROM beatmaps WHERE beatmap_set_id = ?"
                            " AND metadata_id IS NOT NULL",
                            (beatmap_set.id,),
                        )
                    ]
                    row = self.conn.execute(
                        "SELECT metadata_id FROM beatmap_sets WHERE id = ?", (beatmap_set.id,)
                    ).fetchone()
                    if row["metadata_id"] is not None:
                        metadata_ids.append(row["metadata_id"])
                    self.conn.execute("DELETE FROM beatmap_sets WHERE id = ?", (beatmap_set.id,))
                    self.conn.executemany(
                        "DELETE FROM beatmap_metadata WHERE id = ?",
                        [(metadata_id,) for metadata_id in metadata_ids],
                    )
        logger.info(f"Purged {len(purged)} deleted beatmap sets")
        return purged

    def reset(self) -> None:
        """Remove every row from the catalog."""
        with self._lock:
            with self.conn:
                self.conn.execute("DELETE FROM beatmap_set_files")
                self.conn.execute("DELETE FROM beatmaps")
                self.conn.execute("DELETE FROM beatmap_sets")
                self.conn.execute("DELETE FROM beatmap_metadata")
        logger.info("Beatmap catalog reset")

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------

    def populate(self, item: Union[BeatmapSetInfo, BeatmapInfo]):
        """Load relations of a set or beatmap in place.

        For a set: metadata, flags, beatmaps and file records. For a beatmap:
        its own metadata, resolved ruleset and a populated ``beatmap_set``
        looked up by ``beatmap_set_id``.

        Raises:
            NotFoundError: If the set (or beatmap) is not in the catalog.
        """
        with self._lock:
            if isinstance(item, BeatmapSetInfo):
                return self._populate_set(item)
            if isinstance(item, BeatmapInfo):
                return self._populate_beatmap(item)
        raise TypeError(f"Cannot populate {type(item).__name__}")

    def _populate_set(self, beatmap_set: BeatmapSetInfo) -> BeatmapSetInfo:
        row = self.conn.execute(
            "SELECT * FROM beatmap_sets WHERE id = ?", (beatmap_set.id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(
                f"Beatmap set {beatmap_set.id} is not in the catalog",
                context={"set_id": beatmap_set.id},
            )
        self._apply_set_row(beatmap_set, row)

        beatmap_set.beatmaps = [
            self._row_to_beatmap(beatmap_row)
            for beatmap_row in self.conn.execute(
                "SELECT * FROM beatmaps WHERE beatmap_set_id = ? ORDER BY id", (beatmap_set.id,)
            )
        ]
        for beatmap in beatmap_set.beatmaps:
            self._resolve_ruleset(beatmap)

        beatmap_set.files = [
            BeatmapSetFile(
                id=file_row["id"],
                beatmap_set_id=file_row["beatmap_set_id"],
                filename=file_row["filename"],
                file=StoredFile(hash=file_row["file_hash"]),
            )
            for file_row in self.conn.execute(
                "SELECT * FROM beatmap_set_files WHERE beatmap_set_id = ? ORDER BY id",
                (beatmap_set.id,),
            )
        ]
        return beatmap_set

    def _populate_beatmap(self, beatmap: BeatmapInfo) -> BeatmapInfo:
        if beatmap.id != 0 and (beatmap.beatmap_set_id == 0 or beatmap.path is None):
            row = self.conn.execute("SELECT * FROM beatmaps WHERE id = ?", (beatmap.id,)).fetchone()
            if row is None:
                raise NotFoundError(
                    f"Beatmap {beatmap.id} is not in the catalog", context={"beatmap_id": beatmap.id}
                )
            stored = self._row_to_beatmap(row)
            for attr in _BEATMAP_FIELDS:
                setattr(beatmap, attr, getattr(stored, attr))
            if beatmap.metadata is None:
                beatmap.metadata = stored.metadata

        self._resolve_ruleset(beatmap)
        beatmap.beatmap_set = self._populate_set(BeatmapSetInfo(id=beatmap.beatmap_set_id))
        return beatmap

    def _resolve_ruleset(self, beatmap: BeatmapInfo) -> None:
        if self.rulesets is not None and beatmap.ruleset is None:
            beatmap.ruleset = self.rulesets.get(beatmap.ruleset_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, kind: Type[T], predicate: Optional[Predicate] = None) -> Iterator[T]:
        """Lazily yield unpopulated sets or beatmaps matching ``predicate``.

        Rows are read under the catalog lock when iteration starts; the
        predicate runs outside it.
        """
        with self._lock:
            if kind is BeatmapSetInfo:
                rows = self.conn.execute("SELECT * FROM beatmap_sets ORDER BY id").fetchall()
                convert = self._row_to_set
            elif kind is BeatmapInfo:
                rows = self.conn.execute("SELECT * FROM beatmaps ORDER BY id").fetchall()
                convert = self._row_to_beatmap
            else:
                raise TypeError(f"Cannot query {kind!r}")
            metadata = self._load_metadata(rows)

        for row in rows:
            obj = convert(row, metadata)
            if predicate is None or predicate(obj):
                yield obj

    def query_and_populate(self, kind: Type[T], predicate: Optional[Predicate] = None) -> List[T]:
        with self._lock:
            return [self.populate(obj) for obj in self.query(kind, predicate)]

    def first(self, kind: Type[T], predicate: Optional[Predicate] = None) -> Optional[T]:
        """Return the first populated match, or None."""
        with self._lock:
            obj = next(self.query(kind, predicate), None)
            return self.populate(obj) if obj is not None else None

    def get_by_hash(self, set_hash: str) -> Optional[BeatmapSetInfo]:
        """Return the populated set stored with ``set_hash``, deleted or not."""
        with self._lock:
            row = self.conn.execute(
                "SELECT id FROM beatmap_sets WHERE hash = ?", (set_hash,)
            ).fetchone()
            if row is None:
                return None
            return self._populate_set(BeatmapSetInfo(id=row["id"]))

    def stats(self) -> Dict[str, int]:
        with self._lock:
            total_sets = self.conn.execute("SELECT COUNT(*) FROM beatmap_sets").fetchone()[0]
            pending = self.conn.execute(
                "SELECT COUNT(*) FROM beatmap_sets WHERE delete_pending = 1"
            ).fetchone()[0]
            beatmaps = self.conn.execute("SELECT COUNT(*) FROM beatmaps").fetchone()[0]
            files = self.conn.execute("SELECT COUNT(*) FROM beatmap_set_files").fetchone()[0]
        return {
            "total_sets": total_sets,
            "delete_pending_sets": pending,
            "total_beatmaps": beatmaps,
            "total_set_files": files,
        }

    def close(self) -> None:
        with self._lock:
            if self.conn:
                self.conn.close()
                logger.debug("Database connection closed")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _load_metadata(self, rows: List[sqlite3.Row]) -> Dict[int, BeatmapMetadata]:
        ids = sorted({row["metadata_id"] for row in rows if row["metadata_id"] is not None})
        metadata: Dict[int, BeatmapMetadata] = {}
        # chunked to stay under SQLite's bound-parameter limit
        for start in range(0, len(ids), 500):
            chunk = ids[start : start + 500]
            for row in self.conn.execute(
                f"SELECT * FROM beatmap_metadata WHERE id IN ({', '.join('?' for _ in chunk)})",
                chunk,
            ):
                metadata[row["id"]] = self._row_to_metadata(row)
        return metadata

    def _metadata_for(
        self, metadata_id: Optional[int], cache: Optional[Dict[int, BeatmapMetadata]]
    ) -> Optional[BeatmapMetadata]:
        if metadata_id is None:
            return None
        if cache is not None:
            return cache.get(metadata_id)
        row = self.conn.execute(
            "SELECT * FROM beatmap_metadata WHERE id = ?", (metadata_id,)
        ).fetchone()
        return self._row_to_metadata(row) if row else None

    def _apply_set_row(self, beatmap_set: BeatmapSetInfo, row: sqlite3.Row) -> None:
        beatmap_set.hash = row["hash"]
        beatmap_set.online_beatmap_set_id = row["online_beatmap_set_id"]
        beatmap_set.protected = bool(row["protected"])
        beatmap_set.delete_pending = bool(row["delete_pending"])
        beatmap_set.metadata = self._metadata_for(row["metadata_id"], None)

    def _row_to_set(
        self, row: sqlite3.Row, cache: Optional[Dict[int, BeatmapMetadata]] = None
    ) -> BeatmapSetInfo:
        return BeatmapSetInfo(
            id=row["id"],
            hash=row["hash"],
            online_beatmap_set_id=row["online_beatmap_set_id"],
            metadata=self._metadata_for(row["metadata_id"], cache),
            protected=bool(row["protected"]),
            delete_pending=bool(row["delete_pending"]),
        )

    def _row_to_beatmap(
        self, row: sqlite3.Row, cache: Optional[Dict[int, BeatmapMetadata]] = None
    ) -> BeatmapInfo:
        return BeatmapInfo(
            id=row["id"],
            beatmap_set_id=row["beatmap_set_id"],
            path=row["path"],
            hash=row["hash"],
            md5_hash=row["md5_hash"],
            version=row["version"],
            ruleset_id=row["ruleset_id"],
            star_difficulty=row["star_difficulty"],
            metadata=self._metadata_for(row["metadata_id"], cache),
        )

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> BeatmapMetadata:
        return BeatmapMetadata(id=row["id"], **{column: row[column] for column in _METADATA_COLUMNS})

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
