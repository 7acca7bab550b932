"""
Pydantic v2 Configuration Models for BeatmapLibrary

Provides strict, typed configuration for the library subsystems:
- Blob storage layout and locking (StorageConfig)
- Catalog and file-reference databases (CatalogConfig)
- Import behaviour: descriptor extensions, metadata inheritance,
  original-archive cleanup, stable install discovery (ImportConfig)
- Top-level LibraryConfig as single source of truth

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import ClassVar, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MetadataPolicy(str, Enum):
    """When an imported beatmap drops its own metadata in favour of the set's."""

    IDENTICAL = "identical"
    ALWAYS = "always"
    NEVER = "never"


def _default_stable_paths() -> List[str]:
    local_app_data = os.environ.get("LOCALAPPDATA") or os.path.join(
        os.path.expanduser("~"), "AppData", "Local"
    )
    return [
        os.path.join(local_app_data, "osu!", "Songs"),
        os.path.join(os.path.expanduser("~"), ".osu", "Songs"),
    ]


class StorageConfig(BaseModel):
    """Blob storage layout for imported files."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    root_dir: str = Field(
        default="data/beatmaps",
        description="Managed storage root; archives inside it are never deleted after import",
    )
    files_dir: str = Field(
        default="files",
        description="Blob directory, relative to root_dir",
    )
    lock_timeout_s: float = Field(
        default=30.0,
        description="Timeout for the per-hash blob write lock",
    )
    chunk_size_bytes: int = Field(default=1 << 16, description="Copy/hash chunk size")

    @field_validator("lock_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("lock_timeout_s must be > 0")
        return v

    @field_validator("chunk_size_bytes")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("chunk_size_bytes must be > 0")
        return v


class CatalogConfig(BaseModel):
    """Catalog and file-reference database configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    path: str = Field(
        default="state/beatmaps.sqlite",
        description="SQLite database holding sets, beatmaps and metadata",
    )
    files_db_path: str = Field(
        default="state/files.sqlite",
        description="SQLite database holding blob reference counts",
    )
    wal_mode: bool = Field(default=True, description="Enable WAL mode for SQLite")


class ImportConfig(BaseModel):
    """Import pipeline behaviour."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    item_extension: str = Field(default=".osu", description="Beatmap descriptor extension")
    metadata_policy: MetadataPolicy = Field(
        default=MetadataPolicy.IDENTICAL,
        description="identical: drop beatmap metadata equal to the set's; always; never",
    )
    delete_original: bool = Field(
        default=True,
        description="Delete the source archive after a successful import (outside root_dir only)",
    )
    stable_paths: List[str] = Field(
        default_factory=_default_stable_paths,
        description="Candidate osu!stable Songs directories, first existing one wins",
    )

    @field_validator("item_extension")
    @classmethod
    def validate_extension(cls, v: str) -> str:
        if not v.startswith("."):
            raise ValueError("item_extension must start with '.'")
        return v.lower()


class LibraryConfig(BaseModel):
    """
    Single source of truth for BeatmapLibrary configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    log_level: str = Field(default="INFO", description="Root log level for the CLI")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    imports: ImportConfig = Field(default_factory=ImportConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    def config_hash(self) -> str:
        """Deterministic SHA256 of the normalised config."""
        import hashlib
        import json

        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
