"""Content-addressed file storage for imported beatmap sets."""

from BeatmapLibrary.files.store import ContentFileStore

__all__ = ["ContentFileStore"]
