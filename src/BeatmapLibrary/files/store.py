"""Content-addressed, reference-counted blob store.

Every file imported with a beatmap set is stored once per distinct SHA-256
and shared by all sets that contain it. The store keeps one row per blob in a
small SQLite database recording how many set files point at it; physical
removal happens only in :meth:`ContentFileStore.purge_unreferenced`, never as
a side effect of :meth:`ContentFileStore.dereference`.
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import threading
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional

from filelock import Timeout

from BeatmapLibrary.errors import StorageError
from BeatmapLibrary.files.layout import (
    INCOMING_DIR,
    blob_path,
    hash_file,
    promote,
    spool_and_hash,
)
from BeatmapLibrary.locks import blob_lock, lock_dir_for
from BeatmapLibrary.models import StoredFile

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hash TEXT NOT NULL UNIQUE,
    reference_count INTEGER NOT NULL DEFAULT 0 CHECK (reference_count >= 0)
);
CREATE INDEX IF NOT EXISTS idx_files_reference_count ON files(reference_count);
"""


class ContentFileStore:
    """SQLite-backed reference counts over a content-addressed blob tree.

    Reference count updates are single SQL statements executed under the
    store's own lock. The physical write of a blob is guarded by a per-hash
    file lock, so concurrent ingestion of different blobs proceeds in
    parallel while identical content is written at most once.
    """

    def __init__(
        self,
        root_dir: str,
        db_path: str,
        *,
        wal_mode: bool = True,
        lock_timeout: float = 30.0,
        chunk_size: int = 1 << 16,
    ):
        self.files_root = Path(root_dir)
        self.files_root.mkdir(parents=True, exist_ok=True)
        self.lock_dir = lock_dir_for(self.files_root)
        self.lock_timeout = lock_timeout
        self.chunk_size = chunk_size

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=30.0)
        self.conn.row_factory = sqlite3.Row
        if wal_mode:
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(_SCHEMA)
        self.conn.commit()
        logger.info(f"Initialized file store at {self.files_root}")

    # ------------------------------------------------------------------
    # Ingestion and reference counting
    # ------------------------------------------------------------------

    def add(self, stream: BinaryIO) -> StoredFile:
        """Store ``stream`` (if new) and take one reference on it.

        Raises:
            StorageError: If the blob cannot be written or its lock times out.
        """
        try:
            sha256_hex, tmp_path, size = spool_and_hash(
                stream, self.files_root, chunk_size=self.chunk_size
            )
        except OSError as e:
            raise StorageError(f"Failed to spool blob: {e}") from e

        try:
            with blob_lock(self.lock_dir, sha256_hex, timeout=self.lock_timeout):
                written = promote(tmp_path, blob_path(self.files_root, sha256_hex))
                with self._lock:
                    self.conn.execute(
                        """
                        INSERT INTO files (hash, reference_count) VALUES (?, 1)
                        ON CONFLICT(hash) DO UPDATE SET reference_count = reference_count + 1
                        """,
                        (sha256_hex,),
                    )
                    self.conn.commit()
                    row = self.conn.execute(
                        "SELECT id, hash, reference_count FROM files WHERE hash = ?",
                        (sha256_hex,),
                    ).fetchone()
        except Timeout as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(
                f"Timed out waiting for blob lock {sha256_hex}", context={"hash": sha256_hex}
            ) from e
        except (OSError, sqlite3.Error) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(
                f"Failed to store blob {sha256_hex}: {e}", context={"hash": sha256_hex}
            ) from e

        logger.debug(
            "blob-add hash=%s bytes=%d new=%s refs=%d",
            sha256_hex,
            size,
            written,
            row["reference_count"],
        )
        return self._row_to_file(row)

    def reference(self, files: Iterable[StoredFile]) -> None:
        """Take one additional reference on each file."""
        self._adjust(files, +1)

    def dereference(self, files: Iterable[StoredFile]) -> None:
        """Release one reference on each file.

        Unknown hashes are treated as already collected. Blobs reaching zero
        stay on disk until :meth:`purge_unreferenced` runs.
        """
        self._adjust(files, -1)

    def _adjust(self, files: Iterable[StoredFile], delta: int) -> None:
        with self._lock:
            for stored in files:
                cursor = self.conn.execute(
                    "UPDATE files SET reference_count = MAX(reference_count + ?, 0) WHERE hash = ?",
                    (delta, stored.hash),
                )
                if cursor.rowcount == 0:
                    logger.debug(f"Reference change on unknown blob ignored: {stored.hash}")
                    continue
                row = self.conn.execute(
                    "SELECT reference_count FROM files WHERE hash = ?", (stored.hash,)
                ).fetchone()
                stored.reference_count = row["reference_count"]
            self.conn.commit()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get(self, sha256_hex: str) -> Optional[StoredFile]:
        with self._lock:
            row = self.conn.execute(
                "SELECT id, hash, reference_count FROM files WHERE hash = ?", (sha256_hex,)
            ).fetchone()
        return self._row_to_file(row) if row else None

    def get_path(self, storage_path: str) -> Path:
        """Resolve a relative storage path to an absolute filesystem path."""
        return self.files_root / storage_path

    def get_stream(self, storage_path: str) -> BinaryIO:
        """Open a stored blob for reading.

        Raises:
            StorageError: If the blob is missing on disk.
        """
        path = self.get_path(storage_path)
        try:
            return open(path, "rb")
        except OSError as e:
            raise StorageError(
                f"Blob not readable: {storage_path}", context={"storage_path": storage_path}
            ) from e

    def get_bytes(self, storage_path: str) -> bytes:
        with self.get_stream(storage_path) as handle:
            return handle.read()

    def verify(self, sha256_hex: str) -> bool:
        """Return True if the blob exists and its content matches its hash."""
        path = blob_path(self.files_root, sha256_hex)
        if not path.exists():
            return False
        return hash_file(path, chunk_size=self.chunk_size) == sha256_hex

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def purge_unreferenced(self, *, dry_run: bool = False) -> int:
        """Physically remove blobs whose reference count is zero.

        Each candidate is rechecked under its write lock so a concurrent
        :meth:`add` of the same content either wins (blob kept) or observes
        the removal and writes the blob again.

        Returns:
            Number of blobs removed (or that would be removed in dry-run).
        """
        with self._lock:
            candidates = [
                row["hash"]
                for row in self.conn.execute("SELECT hash FROM files WHERE reference_count = 0")
            ]

        removed = 0
        for sha256_hex in candidates:
            if dry_run:
                logger.info(f"[DRY-RUN] Would purge blob {sha256_hex}")
                removed += 1
                continue
            with blob_lock(self.lock_dir, sha256_hex, timeout=self.lock_timeout):
                with self._lock:
                    cursor = self.conn.execute(
                        "DELETE FROM files WHERE hash = ? AND reference_count = 0", (sha256_hex,)
                    )
                    self.conn.commit()
                if cursor.rowcount == 0:
                    continue
                blob_path(self.files_root, sha256_hex).unlink(missing_ok=True)
                removed += 1

        action = "would purge" if dry_run else "purged"
        logger.info(f"File store {action} {removed}/{len(candidates)} unreferenced blobs")
        return removed

    def find_orphans(self) -> List[Path]:
        """Return blob files on disk that have no row in the store."""
        with self._lock:
            known = {row["hash"] for row in self.conn.execute("SELECT hash FROM files")}

        orphans: List[Path] = []
        for path in self.files_root.rglob("*"):
            if not path.is_file():
                continue
            relative = path.relative_to(self.files_root).parts
            if relative[0] in (INCOMING_DIR, self.lock_dir.name):
                continue
            if path.name not in known:
                orphans.append(path)
        logger.info(f"Found {len(orphans)} orphaned blobs in {self.files_root}")
        return orphans

    def stats(self) -> Dict[str, int]:
        with self._lock:
            total = self.conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
            unreferenced = self.conn.execute(
                "SELECT COUNT(*) FROM files WHERE reference_count = 0"
            ).fetchone()[0]
            references = self.conn.execute(
                "SELECT COALESCE(SUM(reference_count), 0) FROM files"
            ).fetchone()[0]
        return {
            "total_blobs": total,
            "unreferenced_blobs": unreferenced,
            "total_references": references,
        }

    def count(self) -> int:
        return self.stats()["total_blobs"]

    def reset(self) -> None:
        """Forget every blob and remove the blob tree (administrative/testing use)."""
        with self._lock:
            self.conn.execute("DELETE FROM files")
            self.conn.commit()
            for child in self.files_root.iterdir():
                if child.name == self.lock_dir.name:
                    continue
                if child.is_dir():
                    shutil.rmtree(child, ignore_errors=True)
                else:
                    os.unlink(child)
        logger.info("File store reset")

    def close(self) -> None:
        with self._lock:
            if self.conn:
                self.conn.close()
                logger.debug("File store connection closed")

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> StoredFile:
        return StoredFile(hash=row["hash"], reference_count=row["reference_count"], id=row["id"])

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
