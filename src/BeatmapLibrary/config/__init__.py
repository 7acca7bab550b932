"""
BeatmapLibrary Configuration Package

Public API for loading and validating library configuration.

Example:
    from BeatmapLibrary.config import load_config

    config = load_config(
        path="beatmaps.yaml",
        cli_overrides={"imports": {"metadata_policy": "always"}},
    )
"""

from .loader import export_config_schema, load_config
from .models import (
    CatalogConfig,
    ImportConfig,
    LibraryConfig,
    MetadataPolicy,
    StorageConfig,
)

__all__ = [
    "LibraryConfig",
    "StorageConfig",
    "CatalogConfig",
    "ImportConfig",
    "MetadataPolicy",
    "load_config",
    "export_config_schema",
]
