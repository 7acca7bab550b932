# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.decoding",
#   "purpose": "Decoder for the .osu beatmap descriptor format and .osb storyboard overlays.",
#   "sections": [
#     {"id": "beatmapdifficulty", "name": "BeatmapDifficulty", "anchor": "class-beatmapdifficulty", "kind": "class"},
#     {"id": "hitobject", "name": "HitObject", "anchor": "class-hitobject", "kind": "class"},
#     {"id": "beatmap", "name": "Beatmap", "anchor": "class-beatmap", "kind": "class"},
#     {"id": "beatmapdecoder", "name": "BeatmapDecoder", "anchor": "class-beatmapdecoder", "kind": "class"},
#     {"id": "legacybeatmapdecoder", "name": "LegacyBeatmapDecoder", "anchor": "class-legacybeatmapdecoder", "kind": "class"},
#     {"id": "get-decoder", "name": "get_decoder", "anchor": "function-get-decoder", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Decoder for the ``.osu`` beatmap descriptor format.

Responsibilities
----------------
- Turn one descriptor stream into a :class:`Beatmap`: a populated
  :class:`BeatmapInfo` (ruleset id, difficulty name), its
  :class:`BeatmapMetadata` (title, artist, audio and background filenames,
  online set id), difficulty settings, timing points and hit objects.
- Layer a ``.osb`` storyboard overlay onto an already decoded beatmap via
  :meth:`BeatmapDecoder.decode_into`.

Design Notes
------------
- Only the sections the library needs are interpreted; unknown sections are
  skipped so newer format versions still import.
- Input is bytes; UTF-8 with or without BOM is accepted. Callers may pass a
  fresh entry stream or a buffered copy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple

from BeatmapLibrary.errors import DecodeError
from BeatmapLibrary.models import BeatmapInfo, BeatmapMetadata

logger = logging.getLogger(__name__)

__all__ = [
    "BeatmapDifficulty",
    "HitObject",
    "Beatmap",
    "BeatmapDecoder",
    "LegacyBeatmapDecoder",
    "get_decoder",
]

FORMAT_HEADER = "osu file format v"


@dataclass
class BeatmapDifficulty:
    drain_rate: float = 5.0
    circle_size: float = 5.0
    overall_difficulty: float = 5.0
    approach_rate: float = 5.0
    slider_multiplier: float = 1.4
    slider_tick_rate: float = 1.0


@dataclass
class HitObject:
    x: int
    y: int
    start_time: float
    type: int


@dataclass
class Beatmap:
    """A fully decoded beatmap."""

    beatmap_info: BeatmapInfo = field(default_factory=BeatmapInfo)
    difficulty: BeatmapDifficulty = field(default_factory=BeatmapDifficulty)
    timing_points: List[Tuple[float, float]] = field(default_factory=list)
    hit_objects: List[HitObject] = field(default_factory=list)
    storyboard: List[str] = field(default_factory=list)
    format_version: int = 0

    @property
    def metadata(self) -> Optional[BeatmapMetadata]:
        return self.beatmap_info.metadata


class BeatmapDecoder:
    """Protocol-like base class for descriptor decoders."""

    def decode(self, stream: BinaryIO) -> Beatmap:
        """Decode a descriptor into a new :class:`Beatmap`.

        Raises:
            DecodeError: If the content is not a valid descriptor.
        """
        raise NotImplementedError

    def decode_into(self, stream: BinaryIO, beatmap: Beatmap) -> Beatmap:
        """Decode additional content (e.g. a storyboard) into ``beatmap``."""
        raise NotImplementedError


def _read_lines(stream: BinaryIO) -> List[str]:
    try:
        raw = stream.read()
    except OSError as e:
        raise DecodeError(f"Unreadable descriptor stream: {e}") from e
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Descriptor is not valid UTF-8: {e}") from e
    return text.splitlines()


def _split_pair(line: str) -> Tuple[str, str]:
    key, _, value = line.partition(":")
    return key.strip(), value.strip()


def _optional_int(value: str) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise DecodeError(f"Expected integer, got {value!r}") from e


def _float(value: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise DecodeError(f"Expected number, got {value!r}") from e


class LegacyBeatmapDecoder(BeatmapDecoder):
    """Decoder for the versioned ``osu file format vN`` text format."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Callable[[Beatmap, str], None]] = {
            "General": self._handle_general,
            "Metadata": self._handle_metadata,
            "Difficulty": self._handle_difficulty,
            "Events": self._handle_events,
            "TimingPoints": self._handle_timing_point,
            "HitObjects": self._handle_hit_object,
        }

    def decode(self, stream: BinaryIO) -> Beatmap:
        lines = _read_lines(stream)
        header = next((line.strip() for line in lines if line.strip()), "")
        if not header.startswith(FORMAT_HEADER):
            raise DecodeError(f"Missing format header, found {header[:40]!r}")

        beatmap = Beatmap()
        beatmap.beatmap_info.metadata = BeatmapMetadata()
        try:
            beatmap.format_version = int(header[len(FORMAT_HEADER) :])
        except ValueError as e:
            raise DecodeError(f"Invalid format version in {header!r}") from e

        self._parse(lines, beatmap)
        return beatmap

    def decode_into(self, stream: BinaryIO, beatmap: Beatmap) -> Beatmap:
        self._parse(_read_lines(stream), beatmap)
        return beatmap

    def _parse(self, lines: List[str], beatmap: Beatmap) -> None:
        section: Optional[str] = None
        for raw_line in lines:
            line = raw_line.rstrip()
            stripped = line.strip()
            if not stripped or stripped.startswith("//") or stripped.startswith(FORMAT_HEADER):
                continue
            if stripped.startswith("[") and stripped.endswith("]"):
                section = stripped[1:-1]
                continue
            handler = self._handlers.get(section or "")
            if handler is not None:
                handler(beatmap, stripped)

    def _handle_general(self, beatmap: Beatmap, line: str) -> None:
        key, value = _split_pair(line)
        metadata = beatmap.beatmap_info.metadata
        if key == "AudioFilename":
            metadata.audio_file = value
        elif key == "PreviewTime":
            preview_time = _optional_int(value)
            metadata.preview_time = -1 if preview_time is None else preview_time
        elif key == "Mode":
            beatmap.beatmap_info.ruleset_id = _optional_int(value) or 0

    def _handle_metadata(self, beatmap: Beatmap, line: str) -> None:
        key, value = _split_pair(line)
        info = beatmap.beatmap_info
        metadata = info.metadata
        if key == "Title":
            metadata.title = value
        elif key == "TitleUnicode":
            metadata.title_unicode = value
        elif key == "Artist":
            metadata.artist = value
        elif key == "ArtistUnicode":
            metadata.artist_unicode = value
        elif key == "Creator":
            metadata.author = value
        elif key == "Version":
            info.version = value
        elif key == "Source":
            metadata.source = value
        elif key == "Tags":
            metadata.tags = value
        elif key == "BeatmapSetID":
            metadata.online_beatmap_set_id = _optional_int(value)

    def _handle_difficulty(self, beatmap: Beatmap, line: str) -> None:
        key, value = _split_pair(line)
        difficulty = beatmap.difficulty
        attribute = {
            "HPDrainRate": "drain_rate",
            "CircleSize": "circle_size",
            "OverallDifficulty": "overall_difficulty",
            "ApproachRate": "approach_rate",
            "SliderMultiplier": "slider_multiplier",
            "SliderTickRate": "slider_tick_rate",
        }.get(key)
        if attribute:
            setattr(difficulty, attribute, _float(value))

    def _handle_events(self, beatmap: Beatmap, line: str) -> None:
        parts = [part.strip() for part in line.split(",")]
        # background: 0,0,"filename",x,y
        metadata = beatmap.beatmap_info.metadata
        is_background = len(parts) >= 3 and parts[0] in ("0", "Background") and parts[1] == "0"
        if metadata is not None and is_background:
            metadata.background_file = parts[2].strip('"')
            return
        beatmap.storyboard.append(line)

    def _handle_timing_point(self, beatmap: Beatmap, line: str) -> None:
        parts = line.split(",")
        if len(parts) < 2:
            raise DecodeError(f"Invalid timing point: {line!r}")
        beatmap.timing_points.append((_float(parts[0]), _float(parts[1])))

    def _handle_hit_object(self, beatmap: Beatmap, line: str) -> None:
        parts = line.split(",")
        if len(parts) < 4:
            raise DecodeError(f"Invalid hit object: {line!r}")
        try:
            beatmap.hit_objects.append(
                HitObject(
                    x=int(parts[0]),
                    y=int(parts[1]),
                    start_time=float(parts[2]),
                    type=int(parts[3]),
                )
            )
        except ValueError as e:
            raise DecodeError(f"Invalid hit object: {line!r}") from e


def get_decoder() -> BeatmapDecoder:
    """Return the decoder for beatmap descriptors."""
    return LegacyBeatmapDecoder()
