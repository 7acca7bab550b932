# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.bootstrap",
#   "purpose": "Bootstrap and initialization for the beatmap library.",
#   "sections": [
#     {"id": "build-file-store", "name": "build_file_store", "anchor": "function-build-file-store", "kind": "function"},
#     {"id": "build-catalog", "name": "build_catalog", "anchor": "function-build-catalog", "kind": "function"},
#     {"id": "librarybootstrap", "name": "LibraryBootstrap", "anchor": "class-librarybootstrap", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Bootstrap and initialization for the beatmap library.

Provides factory functions to initialize the file store, the catalog and the
manager from a :class:`~BeatmapLibrary.config.models.LibraryConfig`, plus a
context manager that closes both databases on exit.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from BeatmapLibrary.catalog.store import SQLiteBeatmapCatalog
from BeatmapLibrary.config.models import LibraryConfig
from BeatmapLibrary.files.store import ContentFileStore
from BeatmapLibrary.manager import BeatmapManager
from BeatmapLibrary.notifications import NotificationSink, log_sink
from BeatmapLibrary.rulesets import RulesetStore

logger = logging.getLogger(__name__)


def _under_root(config: LibraryConfig, path: str) -> str:
    return path if os.path.isabs(path) else os.path.join(config.storage.root_dir, path)


def build_file_store(config: LibraryConfig) -> ContentFileStore:
    return ContentFileStore(
        root_dir=_under_root(config, config.storage.files_dir),
        db_path=_under_root(config, config.catalog.files_db_path),
        wal_mode=config.catalog.wal_mode,
        lock_timeout=config.storage.lock_timeout_s,
        chunk_size=config.storage.chunk_size_bytes,
    )


def build_catalog(config: LibraryConfig, rulesets: RulesetStore) -> SQLiteBeatmapCatalog:
    return SQLiteBeatmapCatalog(
        path=_under_root(config, config.catalog.path),
        wal_mode=config.catalog.wal_mode,
        rulesets=rulesets,
    )


class LibraryBootstrap:
    """Orchestrates library initialization and cleanup."""

    def __init__(
        self,
        config: LibraryConfig,
        *,
        rulesets: Optional[RulesetStore] = None,
        post_notification: NotificationSink = log_sink,
    ):
        self.config = config
        self.rulesets = rulesets or RulesetStore()
        self.post_notification = post_notification
        self._files: Optional[ContentFileStore] = None
        self._catalog: Optional[SQLiteBeatmapCatalog] = None
        self._manager: Optional[BeatmapManager] = None

    def initialize(self) -> "LibraryBootstrap":
        os.makedirs(self.config.storage.root_dir, exist_ok=True)
        self._files = build_file_store(self.config)
        self._catalog = build_catalog(self.config, self.rulesets)
        self._manager = BeatmapManager(
            self._files,
            self._catalog,
            self.rulesets,
            self.config.imports,
            storage_root=self.config.storage.root_dir,
            post_notification=self.post_notification,
        )
        logger.info(f"Library bootstrap complete: root={self.config.storage.root_dir}")
        return self

    @property
    def manager(self) -> BeatmapManager:
        """Raises RuntimeError if not initialized."""
        if self._manager is None:
            raise RuntimeError("Library not initialized. Call initialize() first.")
        return self._manager

    @property
    def files(self) -> ContentFileStore:
        return self.manager.files

    @property
    def catalog(self) -> SQLiteBeatmapCatalog:
        return self.manager.catalog

    def close(self) -> None:
        if self._catalog:
            self._catalog.close()
        if self._files:
            self._files.close()
        logger.debug("Library connections closed")

    def __enter__(self) -> "LibraryBootstrap":
        return self.initialize()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
