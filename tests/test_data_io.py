"""Tests for atomic file writes, file loading and environment configuration."""

import json
from pathlib import Path

import pytest
import yaml

from thingstm.config import USER_ROOT, EngineConfig
from thingstm.data.io import DATA_JSON, DATA_YAML, atomic_write, load_data_file, load_json_file
from thingstm.recovery import CorruptionError, FatalError, FileOperationError


class TestAtomicWrite:
    """Test atomic_write."""

    def test_json_object(self, tmp_path):
        path = tmp_path / "out.json"
        assert atomic_write(DATA_JSON, path, {"tasks": [], "name": "Café"})
        assert json.loads(path.read_text(encoding="utf-8")) == {"tasks": [], "name": "Café"}

    def test_json_string_written_verbatim(self, tmp_path):
        path = tmp_path / "out.json"
        atomic_write(DATA_JSON, path, '{"a": 1}')
        assert path.read_text(encoding="utf-8") == '{"a": 1}'

    def test_yaml(self, tmp_path):
        path = tmp_path / "out.yml"
        atomic_write(DATA_YAML, path, {"b": [1, 2], "a": "x"})
        assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"b": [1, 2], "a": "x"}

    def test_creates_directories(self, tmp_path):
        path = tmp_path / "deep" / "nested" / "out.json"
        atomic_write(DATA_JSON, path, {}, create_dirs=True)
        assert path.exists()

    def test_missing_directory_without_create(self, tmp_path):
        with pytest.raises(FileOperationError):
            atomic_write(DATA_JSON, tmp_path / "missing" / "out.json", {})

    def test_unserializable_data_leaves_no_temp_file(self, tmp_path):
        """A failed write keeps the old file and removes the temporary one."""
        path = tmp_path / "out.json"
        path.write_text('{"old": true}', encoding="utf-8")
        with pytest.raises(FatalError):
            atomic_write(DATA_JSON, path, {"bad": object()})
        assert json.loads(path.read_text(encoding="utf-8")) == {"old": True}
        assert [p.name for p in tmp_path.iterdir()] == ["out.json"]

    def test_unknown_format(self, tmp_path):
        with pytest.raises(FatalError):
            atomic_write(9, tmp_path / "out.bin", {})


class TestLoadDataFile:
    """Test load_data_file and load_json_file."""

    def test_missing_and_empty_files(self, tmp_path):
        assert load_data_file(DATA_JSON, tmp_path / "missing.json") is None
        empty = tmp_path / "empty.json"
        empty.write_text("  \n", encoding="utf-8")
        assert load_data_file(DATA_JSON, empty) is None

    def test_syntax_errors_are_corruption(self, tmp_path):
        bad_json = tmp_path / "bad.json"
        bad_json.write_text("{nope", encoding="utf-8")
        bad_yaml = tmp_path / "bad.yml"
        bad_yaml.write_text("a: [1, 2", encoding="utf-8")
        with pytest.raises(CorruptionError):
            load_data_file(DATA_JSON, bad_json)
        with pytest.raises(CorruptionError):
            load_data_file(DATA_YAML, bad_yaml)

    def test_json_file_must_be_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1]", encoding="utf-8")
        with pytest.raises(CorruptionError):
            load_json_file(path)
        path.write_text('{"a": 1}', encoding="utf-8")
        assert load_json_file(path) == {"a": 1}


class TestEngineConfig:
    """Test THINGSTM_* environment configuration."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("DATA_DIR", "LOCAL_DIR", "BACKUP_DIR", "STORAGE_FORMAT", "SAVE_DEBOUNCE", "BACKUP_KEEP"):
            monkeypatch.delenv(f"THINGSTM_{name}", raising=False)

    def test_defaults_follow_data_dir(self, tmp_path):
        config = EngineConfig.from_env(tmp_path / "data")
        assert config.data_dir == tmp_path / "data"
        assert config.local_dir == tmp_path / "data" / "local"
        assert config.backup_dir == tmp_path / "data" / "backups"
        assert config.storage_format == "json"
        assert config.save_debounce == 0.25
        assert config.backup_keep == 10

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("THINGSTM_DATA_DIR", str(tmp_path / "d"))
        monkeypatch.setenv("THINGSTM_BACKUP_DIR", str(tmp_path / "b"))
        monkeypatch.setenv("THINGSTM_STORAGE_FORMAT", "YML")
        monkeypatch.setenv("THINGSTM_SAVE_DEBOUNCE", "1.5")
        monkeypatch.setenv("THINGSTM_BACKUP_KEEP", "3")
        config = EngineConfig.from_env()
        assert config.data_dir == tmp_path / "d"
        assert config.local_dir == tmp_path / "d" / "local"
        assert config.backup_dir == tmp_path / "b"
        assert config.storage_format == "yaml"
        assert config.save_debounce == 1.5
        assert config.backup_keep == 3

    def test_default_directories_share_a_root(self):
        config = EngineConfig.from_env()
        assert config.data_dir == USER_ROOT / "data"
        assert config.local_dir == USER_ROOT / "local"
        assert config.backup_dir == USER_ROOT / "backups"

    def test_explicit_data_dir_beats_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("THINGSTM_DATA_DIR", str(tmp_path / "env"))
        assert EngineConfig.from_env(tmp_path / "cli").data_dir == tmp_path / "cli"

    def test_bad_values_fall_back(self, tmp_path, monkeypatch):
        monkeypatch.setenv("THINGSTM_STORAGE_FORMAT", "xml")
        monkeypatch.setenv("THINGSTM_SAVE_DEBOUNCE", "-1")
        monkeypatch.setenv("THINGSTM_BACKUP_KEEP", "many")
        config = EngineConfig.from_env(Path(tmp_path))
        assert config.storage_format == "json"
        assert config.save_debounce == 0.25
        assert config.backup_keep == 10
