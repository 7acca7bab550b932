# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.archives",
#   "purpose": "Readers giving name-addressed access to beatmap archive contents.",
#   "sections": [
#     {"id": "archivereader", "name": "ArchiveReader", "anchor": "class-archivereader", "kind": "class"},
#     {"id": "oszarchivereader", "name": "OszArchiveReader", "anchor": "class-oszarchivereader", "kind": "class"},
#     {"id": "legacyfilesystemreader", "name": "LegacyFilesystemReader", "anchor": "class-legacyfilesystemreader", "kind": "class"},
#     {"id": "get-reader-from", "name": "get_reader_from", "anchor": "function-get-reader-from", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Readers giving name-addressed access to beatmap archive contents.

Two container shapes are supported: ``.osz`` zip archives and legacy
osu!stable song folders. Both expose the same two operations used by the
import pipeline: the ordered list of entry names and a fresh byte stream per
entry. Entry names always use ``/`` separators.
"""

from __future__ import annotations

import io
import logging
import os
import zipfile
from pathlib import Path
from typing import BinaryIO, List, Union

from BeatmapLibrary.errors import ArchiveError

logger = logging.getLogger(__name__)

__all__ = ["ArchiveReader", "OszArchiveReader", "LegacyFilesystemReader", "get_reader_from"]


class ArchiveReader:
    """Protocol-like base class for archive readers."""

    name: str = "<archive>"

    @property
    def filenames(self) -> List[str]:
        """Entry names in archive order."""
        raise NotImplementedError

    def get_stream(self, name: str) -> BinaryIO:
        """Open a fresh, seekable stream over one entry.

        Raises:
            ArchiveError: If the entry is missing or unreadable.
        """
        raise NotImplementedError

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OszArchiveReader(ArchiveReader):
    """Reads entries from a zip (``.osz``) archive.

    Entries are decompressed into memory on open so callers always receive a
    seekable stream.
    """

    def __init__(self, source: Union[str, os.PathLike, BinaryIO]):
        self.name = str(source) if isinstance(source, (str, os.PathLike)) else "<stream>"
        try:
            self._zip = zipfile.ZipFile(source)
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveError(f"Unreadable archive: {e}", context={"path": self.name}) from e
        self._names = [info.filename for info in self._zip.infolist() if not info.is_dir()]

    @property
    def filenames(self) -> List[str]:
        return list(self._names)

    def get_stream(self, name: str) -> BinaryIO:
        try:
            return io.BytesIO(self._zip.read(name))
        except KeyError as e:
            raise ArchiveError(
                f"Entry not found: {name}", context={"path": self.name, "entry": name}
            ) from e
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
            raise ArchiveError(
                f"Corrupt entry {name}: {e}", context={"path": self.name, "entry": name}
            ) from e

    def close(self) -> None:
        self._zip.close()


class LegacyFilesystemReader(ArchiveReader):
    """Reads a song folder laid out the way osu!stable stores beatmaps."""

    def __init__(self, path: Union[str, os.PathLike]):
        self.root = Path(path)
        self.name = str(self.root)
        if not self.root.is_dir():
            raise ArchiveError(f"Not a directory: {path}", context={"path": self.name})
        self._names = sorted(
            p.relative_to(self.root).as_posix() for p in self.root.rglob("*") if p.is_file()
        )

    @property
    def filenames(self) -> List[str]:
        return list(self._names)

    def get_stream(self, name: str) -> BinaryIO:
        if name not in self._names:
            raise ArchiveError(
                f"Entry not found: {name}", context={"path": self.name, "entry": name}
            )
        try:
            return io.BytesIO((self.root / name).read_bytes())
        except OSError as e:
            raise ArchiveError(
                f"Unreadable entry {name}: {e}", context={"path": self.name, "entry": name}
            ) from e


def get_reader_from(path: Union[str, os.PathLike]) -> ArchiveReader:
    """Create the right reader for a file or folder path.

    Raises:
        ArchiveError: If ``path`` is neither a zip archive nor a directory.
    """
    if os.path.isdir(path):
        return LegacyFilesystemReader(path)
    if os.path.isfile(path) and zipfile.is_zipfile(path):
        return OszArchiveReader(path)
    raise ArchiveError(f"Not a beatmap archive: {path}", context={"path": str(path)})
