"""Decode-on-demand runtime view of a stored beatmap.

A :class:`WorkingBeatmap` is built from a populated
:class:`~BeatmapLibrary.models.BeatmapInfo` and reads everything it needs
straight from the file store: the decoded beatmap body (with the set's
storyboard layered on top), the background image and the audio track. Each
resource is decoded once, on first access, without touching the catalog.

Resource getters never raise for missing or damaged content: the body and
background degrade to ``None`` and the track to a silent
:meth:`Track.virtual` placeholder.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from BeatmapLibrary.decoding import Beatmap, BeatmapDecoder, get_decoder
from BeatmapLibrary.errors import BeatmapLibraryError, InvariantViolation, StorageError
from BeatmapLibrary.files.store import ContentFileStore
from BeatmapLibrary.models import BeatmapInfo, BeatmapMetadata, BeatmapSetInfo

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass(frozen=True)
class Texture:
    """Undecoded background image payload."""

    filename: str
    hash: str
    data: bytes


@dataclass(frozen=True)
class Track:
    """Audio payload; ``data is None`` marks the silent placeholder."""

    filename: Optional[str] = None
    hash: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def is_virtual(self) -> bool:
        return self.data is None

    @classmethod
    def virtual(cls) -> "Track":
        return cls()


class WorkingBeatmap:
    """Lazily decoded beatmap plus its background and audio resources."""

    def __init__(
        self,
        beatmap_info: BeatmapInfo,
        files: ContentFileStore,
        decoder_factory: Callable[[], BeatmapDecoder] = get_decoder,
    ):
        if beatmap_info.beatmap_set is None:
            raise InvariantViolation(
                f"Beatmap {beatmap_info.id} has no populated set",
                context={"beatmap_set_id": beatmap_info.beatmap_set_id},
            )
        self.beatmap_info = beatmap_info
        self.files = files
        self.decoder_factory = decoder_factory
        self._lock = threading.RLock()
        self._beatmap = _UNSET
        self._background = _UNSET
        self._track = _UNSET

    @property
    def beatmap_set(self) -> BeatmapSetInfo:
        return self.beatmap_info.beatmap_set

    @property
    def metadata(self) -> Optional[BeatmapMetadata]:
        return self.beatmap_info.metadata or self.beatmap_set.metadata

    @property
    def beatmap(self) -> Optional[Beatmap]:
        with self._lock:
            if self._beatmap is _UNSET:
                self._beatmap = self.get_beatmap()
            return self._beatmap

    @property
    def background(self) -> Optional[Texture]:
        with self._lock:
            if self._background is _UNSET:
                self._background = self.get_background()
            return self._background

    @property
    def track(self) -> Track:
        with self._lock:
            if self._track is _UNSET:
                self._track = self.get_track()
            return self._track

    @property
    def track_loaded(self) -> bool:
        return self._track is not _UNSET

    def _path_for(self, filename: str) -> str:
        record = self.beatmap_set.find_file(filename)
        if record is None:
            raise StorageError(
                f"{filename} is not part of set {self.beatmap_set.id}",
                context={"filename": filename},
            )
        return record.file.storage_path

    def _read_verified(self, filename: str) -> Tuple[str, bytes]:
        """Read a set file and check it against its recorded hash."""
        record = self.beatmap_set.find_file(filename)
        if record is None:
            raise StorageError(
                f"{filename} is not part of set {self.beatmap_set.id}",
                context={"filename": filename},
            )
        data = self.files.get_bytes(record.file.storage_path)
        if hashlib.sha256(data).hexdigest() != record.file.hash:
            raise StorageError(
                f"Blob for {filename} does not match its hash", context={"hash": record.file.hash}
            )
        return record.file.hash, data

    def get_beatmap(self) -> Optional[Beatmap]:
        """Decode the beatmap body, layering the set storyboard when present.

        Any decoder failure, including errors outside the library's own
        hierarchy, yields None rather than propagating.
        """
        decoder = self.decoder_factory()
        try:
            with self.files.get_stream(self._path_for(self.beatmap_info.path)) as stream:
                beatmap = decoder.decode(stream)
        except BeatmapLibraryError as e:
            logger.warning(f"Could not decode beatmap {self.beatmap_info.path}: {e}")
            return None
        except Exception:
            logger.warning(f"Decoder failed on beatmap {self.beatmap_info.path}", exc_info=True)
            return None

        storyboard = self.beatmap_set.storyboard_file
        if storyboard is None:
            return beatmap

        try:
            with self.files.get_stream(self._path_for(storyboard)) as stream:
                decoder.decode_into(stream, beatmap)
        except BeatmapLibraryError as e:
            logger.warning(f"Could not decode storyboard {storyboard}: {e}")
        except Exception:
            logger.warning(f"Decoder failed on storyboard {storyboard}", exc_info=True)
        return beatmap

    def get_background(self) -> Optional[Texture]:
        metadata = self.metadata
        if metadata is None or not metadata.background_file:
            return None
        try:
            blob_hash, data = self._read_verified(metadata.background_file)
        except StorageError as e:
            logger.warning(f"Background unavailable for {self.beatmap_info.path}: {e}")
            return None
        return Texture(filename=metadata.background_file, hash=blob_hash, data=data)

    def get_track(self) -> Track:
        metadata = self.metadata
        if metadata is None or not metadata.audio_file:
            return Track.virtual()
        try:
            blob_hash, data = self._read_verified(metadata.audio_file)
        except StorageError as e:
            logger.warning(f"Track unavailable for {self.beatmap_info.path}: {e}")
            return Track.virtual()
        return Track(filename=metadata.audio_file, hash=blob_hash, data=data)

    def _blob_hash(self, filename: Optional[str]) -> Optional[str]:
        if not filename:
            return None
        record = self.beatmap_set.find_file(filename)
        return record.file.hash if record else None

    def transfer_to(self, other: "WorkingBeatmap") -> None:
        """Hand already decoded resources to ``other`` when it uses the same blobs."""
        if other is self:
            return
        mine, theirs = self.metadata, other.metadata
        with self._lock:
            if (
                self._track is not _UNSET
                and not self._track.is_virtual
                and mine is not None
                and theirs is not None
                and self._blob_hash(mine.audio_file) == other._blob_hash(theirs.audio_file)
            ):
                other._track = self._track
                logger.debug(f"Transferred track {self._track.hash} to beatmap {other.beatmap_info.id}")
            if (
                self._background is not _UNSET
                and self._background is not None
                and mine is not None
                and theirs is not None
                and self._blob_hash(mine.background_file) == other._blob_hash(theirs.background_file)
            ):
                other._background = self._background
