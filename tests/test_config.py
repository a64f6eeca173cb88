"""Tests for configuration loading and backend construction."""

import pytest
import yaml

from linkboard.config import Config, load_config
from linkboard.storage import HttpTier, MemoryTier, SQLiteTier
from linkboard.storage.factory import create_backend


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove LINKBOARD_ overrides from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith("LINKBOARD_"):
            monkeypatch.delenv(key)


def write_config(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config(None)

        assert config.state.max_history == 50
        assert config.sync.strategy == "merge"
        assert config.storage.shared_backend == "sqlite"
        assert config.storage.quota_bytes == 102400
        assert config.storage.quota_bytes_per_item == 8192
        assert config.storage.max_items == 512

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")

        assert config == Config()

    def test_yaml_sections(self, tmp_path):
        path = write_config(tmp_path, {
            "device": {"name": "laptop"},
            "state": {"max_history": 10},
            "storage": {"shared_backend": "memory", "quota_bytes": 2048},
            "sync": {"strategy": "remote", "sync_interval_minutes": 1},
            "dashboard": {"port": 9000},
        })

        config = load_config(path)

        assert config.device.name == "laptop"
        assert config.state.max_history == 10
        assert config.storage.shared_backend == "memory"
        assert config.storage.quota_bytes == 2048
        assert config.storage.quota_bytes_per_item == 8192
        assert config.sync.strategy == "remote"
        assert config.sync.sync_interval_minutes == 1
        assert config.dashboard.port == 9000
        assert config.dashboard.host == "127.0.0.1"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == Config()

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, {"sync": {"strategy": "remote"}})
        monkeypatch.setenv("LINKBOARD_SYNC_STRATEGY", "local")
        monkeypatch.setenv("LINKBOARD_SYNC_ENABLED", "no")
        monkeypatch.setenv("LINKBOARD_DASHBOARD_PORT", "8181")
        monkeypatch.setenv("LINKBOARD_DEVICE_NAME", "desktop")

        config = load_config(path)

        assert config.sync.strategy == "local"
        assert config.sync.enabled is False
        assert config.dashboard.port == 8181
        assert config.device.name == "desktop"

    def test_invalid_strategy(self, tmp_path):
        path = write_config(tmp_path, {"sync": {"strategy": "newest"}})

        with pytest.raises(ValueError, match="Invalid sync strategy"):
            load_config(path)

    def test_http_backend_requires_url(self, tmp_path):
        path = write_config(tmp_path, {"storage": {"shared_backend": "http"}})

        with pytest.raises(ValueError, match="shared_url"):
            load_config(path)

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("LINKBOARD_SHARED_BACKEND", "ftp")

        with pytest.raises(ValueError, match="Invalid shared backend"):
            load_config(None)


class TestCreateBackend:
    """Tests for building storage from configuration."""

    def test_sqlite_shared(self, tmp_path):
        config = Config()
        config.storage.local_db_path = str(tmp_path / "local.db")
        config.storage.shared_db_path = str(tmp_path / "shared.db")
        config.storage.namespace = "alice"

        backend = create_backend(config.storage)

        assert isinstance(backend.local, SQLiteTier)
        assert isinstance(backend.shared, SQLiteTier)
        assert backend.shared.namespace == "alice"
        assert backend.quota_limit("shared") == 102400
        assert backend.quota_limit("local") is None

    def test_memory_shared(self, tmp_path):
        config = Config()
        config.storage.local_db_path = str(tmp_path / "local.db")
        config.storage.shared_backend = "memory"
        config.storage.quota_bytes = 500

        backend = create_backend(config.storage)

        assert isinstance(backend.shared, MemoryTier)
        assert backend.quota_limit("shared") == 500

    def test_http_shared(self, tmp_path):
        config = Config()
        config.storage.local_db_path = str(tmp_path / "local.db")
        config.storage.shared_backend = "http"
        config.storage.shared_url = "http://kv.test/"
        config.storage.retry_max_attempts = 5

        backend = create_backend(config.storage)

        assert isinstance(backend.shared, HttpTier)
        assert backend.shared.base_url == "http://kv.test"
        assert backend.shared.max_retries == 5

    def test_unknown_backend(self):
        config = Config()
        config.storage.shared_backend = "ftp"

        with pytest.raises(ValueError):
            create_backend(config.storage)
