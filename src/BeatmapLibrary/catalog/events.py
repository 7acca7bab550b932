"""Observer interface for committed catalog mutations."""

from __future__ import annotations

import logging
import threading
from typing import List

from BeatmapLibrary.models import BeatmapSetInfo

logger = logging.getLogger(__name__)


class CatalogListener:
    """Receives set lifecycle events after the catalog has committed them.

    Subclasses override the hooks they care about. Hooks run on the thread
    that performed the mutation, after the catalog lock has been released.
    """

    def set_added(self, beatmap_set: BeatmapSetInfo) -> None:
        """A set became usable (imported or undeleted)."""

    def set_removed(self, beatmap_set: BeatmapSetInfo) -> None:
        """A set was soft-deleted."""


class CatalogEvents:
    """Subscriber list with failure isolation between listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[CatalogListener] = []

    def subscribe(self, listener: CatalogListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: CatalogListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish_added(self, beatmap_set: BeatmapSetInfo) -> None:
        self._publish("set_added", beatmap_set)

    def publish_removed(self, beatmap_set: BeatmapSetInfo) -> None:
        self._publish("set_removed", beatmap_set)

    def _publish(self, hook: str, beatmap_set: BeatmapSetInfo) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                getattr(listener, hook)(beatmap_set)
            except Exception:
                logger.exception(
                    "Catalog listener %s failed on %s for set %s",
                    type(listener).__name__,
                    hook,
                    beatmap_set.id,
                )
