"""Filesystem layout and atomic write helpers for the blob store.

Blobs live at ``<files_root>/<h0>/<h0h1>/<sha256>``: a two-level fan-out
keyed on the hash so no single directory grows hot. Incoming streams are
spooled into ``<files_root>/.incoming`` while they are hashed, then promoted
with an atomic rename.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Tuple

from BeatmapLibrary.models import storage_path_for

logger = logging.getLogger(__name__)

INCOMING_DIR = ".incoming"


def blob_path(files_root: Path, sha256_hex: str) -> Path:
    """Resolve the absolute path of a blob.

    Raises:
        ValueError: If ``sha256_hex`` is not a 64 character hex digest.
    """
    if not sha256_hex or len(sha256_hex) != 64:
        raise ValueError(f"Invalid SHA-256: {sha256_hex!r}")
    return files_root / storage_path_for(sha256_hex)


def spool_and_hash(
    stream: BinaryIO, files_root: Path, *, chunk_size: int = 1 << 16
) -> Tuple[str, Path, int]:
    """Copy ``stream`` into a temporary file while computing its SHA-256.

    The temporary file is created inside the blob tree so that promoting it is
    a same-filesystem rename.

    Returns:
        ``(sha256_hex, temp_path, size)``. The caller owns ``temp_path``.
    """
    incoming = files_root / INCOMING_DIR
    incoming.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=str(incoming), prefix=".part-", suffix=".tmp")
    digest = hashlib.sha256()
    size = 0
    try:
        with os.fdopen(fd, "wb") as handle:
            while True:
                chunk = stream.read(chunk_size)
                if not chunk:
                    break
                digest.update(chunk)
                handle.write(chunk)
                size += len(chunk)
            handle.flush()
            os.fsync(handle.fileno())
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    return digest.hexdigest(), Path(tmp_name), size


def promote(tmp_path: Path, final_path: Path) -> bool:
    """Move a spooled file into place unless the blob already exists.

    Must be called with the blob's write lock held.

    Returns:
        True if the blob was written, False if an existing blob was kept
        (the temporary file is discarded in that case).
    """
    if final_path.exists():
        tmp_path.unlink(missing_ok=True)
        logger.debug(f"Dedup hit: {final_path.name}")
        return False

    final_path.parent.mkdir(parents=True, exist_ok=True)
    os.replace(tmp_path, final_path)
    logger.debug(f"New blob: {final_path.name}")
    return True


def hash_file(path: Path, *, chunk_size: int = 1 << 16) -> str:
    """Compute the SHA-256 of a file on disk."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()
