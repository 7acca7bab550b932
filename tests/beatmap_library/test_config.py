"""Tests for configuration models and the file < env < CLI loader."""

from __future__ import annotations

import json
import os

import pytest
from pydantic import ValidationError

from BeatmapLibrary.config import (
    ImportConfig,
    LibraryConfig,
    MetadataPolicy,
    export_config_schema,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop any BEATMAPLIB_ variables from the surrounding environment."""
    for key in list(os.environ):
        if key.startswith("BEATMAPLIB_"):
            monkeypatch.delenv(key)


class TestModels:
    """Validation of configuration models."""

    def test_defaults(self):
        config = LibraryConfig()

        assert config.storage.root_dir == "data/beatmaps"
        assert config.catalog.wal_mode is True
        assert config.imports.metadata_policy == MetadataPolicy.IDENTICAL
        assert config.imports.delete_original is True
        assert len(config.imports.stable_paths) == 2

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            LibraryConfig(unknown=True)

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            LibraryConfig(log_level="LOUD")

    def test_log_level_normalised(self):
        assert LibraryConfig(log_level="debug").log_level == "DEBUG"

    def test_extension_must_start_with_dot(self):
        with pytest.raises(ValidationError):
            ImportConfig(item_extension="osu")

    def test_config_hash_is_stable(self):
        assert LibraryConfig().config_hash() == LibraryConfig().config_hash()
        assert LibraryConfig().config_hash() != LibraryConfig(log_level="DEBUG").config_hash()


class TestLoader:
    """Precedence of configuration sources."""

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "library.yaml"
        path.write_text("storage:\n  root_dir: /srv/beatmaps\nimports:\n  metadata_policy: always\n")

        config = load_config(path=str(path))

        assert config.storage.root_dir == "/srv/beatmaps"
        assert config.imports.metadata_policy == MetadataPolicy.ALWAYS

    def test_json_file(self, tmp_path):
        path = tmp_path / "library.json"
        path.write_text(json.dumps({"catalog": {"wal_mode": False}}))

        assert load_config(path=str(path)).catalog.wal_mode is False

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "library.yaml"
        path.write_text("storage:\n  root_dir: from-file\n  lock_timeout_s: 5\n")
        monkeypatch.setenv("BEATMAPLIB_STORAGE__ROOT_DIR", "from-env")
        monkeypatch.setenv("BEATMAPLIB_IMPORTS__DELETE_ORIGINAL", "false")

        config = load_config(path=str(path))

        assert config.storage.root_dir == "from-env"
        assert config.storage.lock_timeout_s == 5
        assert config.imports.delete_original is False

    def test_cli_overrides_env(self, monkeypatch):
        monkeypatch.setenv("BEATMAPLIB_LOG_LEVEL", "WARNING")

        config = load_config(cli_overrides={"log_level": "ERROR"})

        assert config.log_level == "ERROR"

    def test_cli_nested_merge(self, tmp_path):
        path = tmp_path / "library.yaml"
        path.write_text("storage:\n  root_dir: keep\n  lock_timeout_s: 5\n")

        config = load_config(path=str(path), cli_overrides={"storage": {"lock_timeout_s": 9}})

        assert config.storage.root_dir == "keep"
        assert config.storage.lock_timeout_s == 9

    def test_stable_paths_from_pathsep_string(self, monkeypatch):
        monkeypatch.setenv("BEATMAPLIB_IMPORTS__STABLE_PATHS", os.pathsep.join(["/mnt/a", "/mnt/b"]))

        assert load_config().imports.stable_paths == ["/mnt/a", "/mnt/b"]

    def test_stable_paths_from_json_list(self, monkeypatch):
        monkeypatch.setenv("BEATMAPLIB_IMPORTS__STABLE_PATHS", '["/mnt/a"]')

        assert load_config().imports.stable_paths == ["/mnt/a"]

    def test_numeric_root_dir_stays_string(self, monkeypatch):
        monkeypatch.setenv("BEATMAPLIB_STORAGE__ROOT_DIR", "2024")

        assert load_config().storage.root_dir == "2024"

    def test_library_paths_expanded(self, monkeypatch, tmp_path):
        """Test ~ and $VAR references in library paths are expanded."""
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("SONGS_ROOT", "/mnt/songs")

        config = load_config(
            cli_overrides={
                "storage": {"root_dir": "~/beatmaps"},
                "imports": {"stable_paths": ["$SONGS_ROOT/osu"]},
            }
        )

        assert config.storage.root_dir == os.path.join(str(tmp_path), "beatmaps")
        assert config.imports.stable_paths == ["/mnt/songs/osu"]

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "library.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            load_config(path=str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(path=str(tmp_path / "absent.yaml"))

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "library.toml"
        path.write_text("x = 1")

        with pytest.raises(ValueError):
            load_config(path=str(path))

    def test_schema_export(self):
        schema = export_config_schema()

        assert "storage" in schema["properties"]
