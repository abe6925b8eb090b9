"""
Unit tests for configuration loader functionality.

Tests config file discovery, validation errors, source path resolution,
environment overrides and starter config generation.
"""

import json
import shutil
import tempfile
import pytest
from pathlib import Path

from config.loader import ConfigurationLoader
from config.defaults import DEFAULT_CONFIG_FILENAME, DEFAULT_SETTINGS, ENV_VAR_MAPPING
from core.errors import ConfigurationError
from core.models.config import GlobalSettings, SyncConfig


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    for env_var in ENV_VAR_MAPPING:
        monkeypatch.delenv(env_var, raising=False)


class TestConfigurationLoader:
    """Test ConfigurationLoader functionality"""

    def setup_method(self):
        """Setup test environment"""
        self.temp_path = Path(tempfile.mkdtemp()).resolve()
        self.loader = ConfigurationLoader()

    def teardown_method(self):
        """Cleanup test environment"""
        shutil.rmtree(self.temp_path, ignore_errors=True)

    def _write_config(self, data, name=DEFAULT_CONFIG_FILENAME):
        config_path = self.temp_path / name
        config_path.write_text(json.dumps(data), encoding="utf-8")
        return config_path

    def test_loader_initialization(self):
        assert isinstance(self.loader.global_settings, GlobalSettings)

    def test_load_minimal_config(self):
        config_path = self._write_config({"node_red_url": "http://localhost:1880/"})

        config = self.loader.load(config_path)

        assert isinstance(config, SyncConfig)
        assert config.node_red_url == "http://localhost:1880"
        assert config.bearer_token is None
        assert config.allow_self_signed_certificates is False
        assert config.clean_on_start is False
        assert config.file_change_delay_ms == DEFAULT_SETTINGS["source"]["file_change_delay_ms"]
        assert config.source_path == self.temp_path / "src"
        assert config.config_dir == self.temp_path
        assert config.manifest_file == self.temp_path / "manifest.json"
        assert config.flows_backup_file == self.temp_path / "flows.json"

    def test_load_full_config(self):
        config_path = self._write_config({
            "node_red_url": "https://nr.example.com",
            "bearer_token": "secret",
            "allow_self_signed_certificates": True,
            "source_path": str(self.temp_path / "flows-src"),
            "clean_on_start": True,
            "file_change_delay_ms": 250,
            "backup_flows": False
        })

        config = self.loader.load(config_path)

        assert config.bearer_token == "secret"
        assert config.allow_self_signed_certificates is True
        assert config.source_path == self.temp_path / "flows-src"
        assert config.clean_on_start is True
        assert config.file_change_delay_s == 0.25
        assert config.backup_flows is False

    def test_relative_source_path_is_resolved_against_config_dir(self, monkeypatch):
        nested = self.temp_path / "project"
        nested.mkdir()
        config_path = nested / DEFAULT_CONFIG_FILENAME
        config_path.write_text(json.dumps({
            "node_red_url": "http://localhost:1880",
            "source_path": "../shared/src"
        }), encoding="utf-8")
        monkeypatch.chdir(self.temp_path)

        config = self.loader.load(config_path)

        assert config.source_path == self.temp_path / "shared" / "src"

    def test_tilde_source_path_is_expanded(self):
        config_path = self._write_config({
            "node_red_url": "http://localhost:1880",
            "source_path": "~/flows"
        })

        config = self.loader.load(config_path)

        assert config.source_path == (Path.home() / "flows").resolve()

    def test_missing_file(self):
        with pytest.raises(ConfigurationError, match="does not exist"):
            self.loader.load(self.temp_path / "nope.json")

    def test_directory_instead_of_file(self):
        with pytest.raises(ConfigurationError, match="not a file"):
            self.loader.load(self.temp_path)

    def test_invalid_json(self):
        config_path = self.temp_path / DEFAULT_CONFIG_FILENAME
        config_path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            self.loader.load(config_path)

    def test_non_object_json(self):
        config_path = self._write_config(["http://localhost:1880"])

        with pytest.raises(ConfigurationError, match="JSON object"):
            self.loader.load(config_path)

    def test_missing_url(self):
        config_path = self._write_config({"source_path": "./src"})

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            self.loader.load(config_path)

    def test_invalid_url_scheme(self):
        config_path = self._write_config({"node_red_url": "ftp://localhost"})

        with pytest.raises(ConfigurationError):
            self.loader.load(config_path)

    def test_delay_out_of_range(self):
        config_path = self._write_config({
            "node_red_url": "http://localhost:1880",
            "file_change_delay_ms": -5
        })

        with pytest.raises(ConfigurationError):
            self.loader.load(config_path)

    def test_default_file_in_working_directory(self, monkeypatch):
        self._write_config({"node_red_url": "http://localhost:1880"})
        monkeypatch.chdir(self.temp_path)

        assert self.loader.find_config_file() == self.temp_path / DEFAULT_CONFIG_FILENAME
        assert self.loader.load().node_red_url == "http://localhost:1880"

    def test_no_config_file_found(self, monkeypatch):
        monkeypatch.chdir(self.temp_path)

        assert self.loader.find_config_file() is None
        with pytest.raises(ConfigurationError, match="provide the path"):
            self.loader.load()


class TestEnvironmentOverrides:
    """Test environment variable overrides"""

    def setup_method(self):
        self.temp_path = Path(tempfile.mkdtemp()).resolve()
        self.loader = ConfigurationLoader()
        self.config_path = self.temp_path / DEFAULT_CONFIG_FILENAME
        self.config_path.write_text(json.dumps({
            "node_red_url": "http://localhost:1880",
            "bearer_token": "from-file"
        }), encoding="utf-8")

    def teardown_method(self):
        shutil.rmtree(self.temp_path, ignore_errors=True)

    def test_overrides_take_precedence(self, monkeypatch):
        monkeypatch.setenv("FLOWSRC_NODE_RED_URL", "https://override:1880")
        monkeypatch.setenv("FLOWSRC_CLEAN_ON_START", "yes")
        monkeypatch.setenv("FLOWSRC_FILE_CHANGE_DELAY_MS", "300")
        monkeypatch.setenv("FLOWSRC_RECONNECT_MAX_DELAY_S", "12.5")

        config = self.loader.load(self.config_path)

        assert config.node_red_url == "https://override:1880"
        assert config.clean_on_start is True
        assert config.file_change_delay_ms == 300
        assert config.reconnect_max_delay_s == 12.5

    def test_string_keys_are_not_converted(self, monkeypatch):
        monkeypatch.setenv("FLOWSRC_BEARER_TOKEN", "12345")

        config = self.loader.load(self.config_path)

        assert config.bearer_token == "12345"

    def test_source_path_override(self, monkeypatch):
        monkeypatch.setenv("FLOWSRC_SOURCE_PATH", "elsewhere")

        config = self.loader.load(self.config_path)

        assert config.source_path == self.temp_path / "elsewhere"

    def test_convert_env_value(self):
        assert self.loader._convert_env_value("true") is True
        assert self.loader._convert_env_value("OFF") is False
        assert self.loader._convert_env_value("1") == 1
        assert self.loader._convert_env_value("0.5") == 0.5
        assert self.loader._convert_env_value("abc") == "abc"


class TestWriteDefault:
    """Test starter config generation"""

    def setup_method(self):
        self.temp_path = Path(tempfile.mkdtemp()).resolve()
        self.loader = ConfigurationLoader()

    def teardown_method(self):
        shutil.rmtree(self.temp_path, ignore_errors=True)

    def test_written_config_loads(self):
        config_path = self.loader.write_default(self.temp_path / DEFAULT_CONFIG_FILENAME)

        config = self.loader.load(config_path)

        assert config.node_red_url == DEFAULT_SETTINGS["node_red"]["url"]
        assert config.source_path == self.temp_path / "src"

    def test_custom_url(self):
        config_path = self.loader.write_default(
            self.temp_path / "nested" / DEFAULT_CONFIG_FILENAME,
            node_red_url="https://nr.example.com"
        )

        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)

        assert data["node_red_url"] == "https://nr.example.com"
        assert data["source_path"] == "./src"

    def test_existing_file_is_kept(self):
        config_path = self.temp_path / DEFAULT_CONFIG_FILENAME
        config_path.write_text("{}", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="already exists"):
            self.loader.write_default(config_path)

        assert config_path.read_text(encoding="utf-8") == "{}"

    def test_overwrite(self):
        config_path = self.temp_path / DEFAULT_CONFIG_FILENAME
        config_path.write_text("{}", encoding="utf-8")

        self.loader.write_default(config_path, overwrite=True)

        assert json.loads(config_path.read_text(encoding="utf-8"))["node_red_url"]
