# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.errors",
#   "purpose": "Error taxonomy and logging helpers for the beatmap library.",
#   "sections": [
#     {"id": "beatmaplibraryerror", "name": "BeatmapLibraryError", "anchor": "class-beatmaplibraryerror", "kind": "class"},
#     {"id": "archiveerror", "name": "ArchiveError", "anchor": "class-archiveerror", "kind": "class"},
#     {"id": "decodeerror", "name": "DecodeError", "anchor": "class-decodeerror", "kind": "class"},
#     {"id": "storageerror", "name": "StorageError", "anchor": "class-storageerror", "kind": "class"},
#     {"id": "notfounderror", "name": "NotFoundError", "anchor": "class-notfounderror", "kind": "class"},
#     {"id": "invariantviolation", "name": "InvariantViolation", "anchor": "class-invariantviolation", "kind": "class"},
#     {"id": "log-import-failure", "name": "log_import_failure", "anchor": "function-log-import-failure", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy and logging helpers for the beatmap library.

Responsibilities
----------------
- Define the exception types raised by the archive readers, decoder, file
  store and catalog so callers can tell "bad input" from "bad storage".
- Attach a ``context`` mapping to every error so log lines carry the archive
  path, filename or hash involved.
- Centralise the structured log line emitted when a batch import skips an
  archive (:func:`log_import_failure`).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

__all__ = [
    "BeatmapLibraryError",
    "ArchiveError",
    "DecodeError",
    "StorageError",
    "NotFoundError",
    "InvariantViolation",
    "log_import_failure",
]


class BeatmapLibraryError(Exception):
    """Base class for all library errors."""

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context or {})


class ArchiveError(BeatmapLibraryError):
    """The archive container is unreadable, corrupt or missing an entry."""


class DecodeError(BeatmapLibraryError):
    """A beatmap descriptor could not be parsed."""


class StorageError(BeatmapLibraryError):
    """A blob could not be written to or read from the file store."""


class NotFoundError(BeatmapLibraryError):
    """A catalog lookup referenced an id that is not stored."""


class InvariantViolation(BeatmapLibraryError):
    """The catalog is in a state the caller's operation cannot proceed from."""


def log_import_failure(logger: logging.Logger, path: str, exc: BaseException) -> None:
    """Emit one structured ERROR line for an archive skipped during batch import.

    Args:
        logger: Logger of the calling module.
        path: Archive path that failed.
        exc: The exception that aborted the import.
    """
    context = getattr(exc, "context", {}) or {}
    extra = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
    logger.error(
        "Could not import beatmap set path=%s error_type=%s error=%s %s",
        path,
        type(exc).__name__,
        exc,
        extra,
        exc_info=not isinstance(exc, BeatmapLibraryError),
    )
