# === NAVMAP v1 ===
# {
#   "module": "BeatmapLibrary.config.loader",
#   "purpose": "Configuration loading with file/env/CLI precedence.",
#   "sections": [
#     {"id": "read-file", "name": "_read_file", "anchor": "function-read-file", "kind": "function"},
#     {"id": "set-dotted", "name": "_set_dotted", "anchor": "function-set-dotted", "kind": "function"},
#     {"id": "parse-env-value", "name": "_parse_env_value", "anchor": "function-parse-env-value", "kind": "function"},
#     {"id": "apply-env", "name": "_apply_env", "anchor": "function-apply-env", "kind": "function"},
#     {"id": "apply-overrides", "name": "_apply_overrides", "anchor": "function-apply-overrides", "kind": "function"},
#     {"id": "expand-library-paths", "name": "_expand_library_paths", "anchor": "function-expand-library-paths", "kind": "function"},
#     {"id": "load-config", "name": "load_config", "anchor": "function-load-config", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Configuration loading for the beatmap library.

Sources are layered, later ones winning:

1. a YAML or JSON file,
2. ``BEATMAPLIB_*`` environment variables (``__`` separates nesting levels),
3. overrides passed by the caller (the CLI).

Examples::

  BEATMAPLIB_STORAGE__ROOT_DIR=~/beatmaps           ->  storage.root_dir
  BEATMAPLIB_IMPORTS__METADATA_POLICY=never         ->  imports.metadata_policy
  BEATMAPLIB_IMPORTS__STABLE_PATHS=/mnt/a:/mnt/b    ->  imports.stable_paths (os.pathsep list)

``~`` and ``$VAR`` references in the library root and the stable install
candidates are expanded once all sources are merged.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from .models import LibraryConfig

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "BEATMAPLIB_"

# Keys holding a list of filesystem paths; a plain env string is split on os.pathsep.
_PATH_LIST_KEYS = frozenset({"imports.stable_paths"})
# Keys holding filesystem paths that get ~ / $VAR expansion.
_PATH_KEYS = frozenset({"storage.root_dir"})


def _read_file(path: str) -> dict[str, Any]:
    """
    Read a YAML or JSON config file into a dict.

    Raises:
        ValueError: If the file is missing, unreadable, malformed or of an
            unsupported type.
    """
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ValueError(f"Unsupported file format: {suffix}. Use .yaml or .json")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid config in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _set_dotted(data: dict[str, Any], dotted_key: str, value: Any) -> None:
    *parents, leaf = dotted_key.split(".")
    node = data
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = node[key] = {}
        node = child
    node[leaf] = value


def _parse_env_value(dotted_key: str, raw: str) -> Any:
    """
    Turn one environment string into a config value for ``dotted_key``.

    JSON literals (numbers, booleans, lists) are decoded; anything else stays a
    string. Path-list keys also accept an ``os.pathsep``-separated string.
    """
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw

    if dotted_key in _PATH_LIST_KEYS and isinstance(value, str):
        return [part for part in value.split(os.pathsep) if part]
    if dotted_key in _PATH_KEYS and not isinstance(value, str):
        return raw
    return value


def _apply_env(data: dict[str, Any], env_prefix: str = ENV_PREFIX) -> dict[str, Any]:
    for env_key in sorted(os.environ):
        if not env_key.startswith(env_prefix):
            continue
        dotted_key = env_key[len(env_prefix) :].lower().replace("__", ".")
        value = _parse_env_value(dotted_key, os.environ[env_key])
        _set_dotted(data, dotted_key, value)
        _LOGGER.debug(f"Environment override: {env_key} -> {dotted_key} = {value!r}")
    return data


def _apply_overrides(data: dict[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """Deep-merge caller overrides into ``data``; nested mappings merge key by key."""
    for key, value in (overrides or {}).items():
        current = data.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            data[key] = _apply_overrides(current, value)
        else:
            data[key] = dict(value) if isinstance(value, Mapping) else value
        _LOGGER.debug(f"CLI override: {key} = {value!r}")
    return data


def _expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def _expand_library_paths(data: dict[str, Any]) -> dict[str, Any]:
    storage = data.get("storage")
    if isinstance(storage, dict) and isinstance(storage.get("root_dir"), str):
        storage["root_dir"] = _expand(storage["root_dir"])

    imports = data.get("imports")
    if isinstance(imports, dict) and isinstance(imports.get("stable_paths"), list):
        imports["stable_paths"] = [
            _expand(p) if isinstance(p, str) else p for p in imports["stable_paths"]
        ]
    return data


def load_config(
    path: str | None = None,
    env_prefix: str = ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
) -> LibraryConfig:
    """
    Build a validated :class:`LibraryConfig` (file < environment < CLI).

    Args:
        path: YAML/JSON config file (optional)
        env_prefix: Environment variable prefix (default: BEATMAPLIB_)
        cli_overrides: Nested overrides from the command line (optional)

    Raises:
        ValueError: If the config file cannot be read or parsed
        pydantic.ValidationError: If the merged config is invalid
    """
    data: dict[str, Any] = {}
    if path:
        data = _read_file(path)
        _LOGGER.info(f"Loaded config from {path}")

    data = _apply_env(data, env_prefix)
    data = _apply_overrides(data, cli_overrides)
    data = _expand_library_paths(data)

    config = LibraryConfig.model_validate(data)
    _LOGGER.debug(f"Configuration validated. Config hash: {config.config_hash()[:8]}...")
    return config


def export_config_schema() -> dict[str, Any]:
    """Export the JSON Schema for LibraryConfig."""
    return LibraryConfig.model_json_schema()
