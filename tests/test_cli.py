"""Tests for the command line entry point."""

import json
import logging
import sys

import pytest

from linkboard import __main__ as cli
from linkboard.__main__ import JSONFormatter, main
from linkboard.config import Config, load_config
from linkboard.errors import StorageError
from linkboard.storage import MemoryTier, StorageBackend
from linkboard.sync import SyncCoordinator


@pytest.fixture
def node_env(tmp_path, monkeypatch):
    """Point the CLI at throwaway storage."""
    monkeypatch.setenv("LINKBOARD_LOCAL_DB_PATH", str(tmp_path / "local.db"))
    monkeypatch.setenv("LINKBOARD_SHARED_BACKEND", "sqlite")
    monkeypatch.setenv("LINKBOARD_SHARED_DB_PATH", str(tmp_path / "shared.db"))
    monkeypatch.setenv("LINKBOARD_DEVICE_NAME", "cli-test")
    return tmp_path


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["linkboard", *args])
    return main()


class TestJSONFormatter:
    """Tests for structured log output."""

    def test_format(self):
        record = logging.LogRecord(
            "linkboard.sync", logging.INFO, __file__, 1, "Synced %d links", (3,), None
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["component"] == "linkboard.sync"
        assert data["message"] == "Synced 3 links"
        assert "timestamp" in data


class TestCommands:
    """Tests for CLI commands against local SQLite files."""

    def test_no_command(self, monkeypatch):
        assert run_cli(monkeypatch) == 1

    def test_status_json(self, node_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, "status", "--json") == 0

        data = json.loads(capsys.readouterr().out)
        assert data["device"] == "cli-test"
        assert data["local_version"] == 0
        assert data["quota_limit"] == 102400

    def test_sync_then_show(self, node_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, "sync") == 0
        capsys.readouterr()

        assert run_cli(monkeypatch, "show", "--json") == 0

        state = json.loads(capsys.readouterr().out)
        assert state["categories"] == ["Default"]

    def test_push_without_local_data(self, node_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, "sync", "--push") == 1
        assert "both links and categories are missing" in capsys.readouterr().err

    def test_clear_sync(self, node_env, monkeypatch, capsys):
        assert run_cli(monkeypatch, "clear-sync") == 0
        assert "Sync data cleared" in capsys.readouterr().out

    def test_invalid_config_value(self, node_env, monkeypatch, capsys):
        monkeypatch.setenv("LINKBOARD_SYNC_STRATEGY", "newest")

        assert run_cli(monkeypatch, "status") == 1
        assert "Invalid sync strategy" in capsys.readouterr().err


class TestOpenNode:
    """Tests for wiring a node from configuration."""

    @pytest.mark.asyncio
    async def test_closes_storage_when_hydration_fails(self, monkeypatch):
        closed = []

        class ClosingTier(MemoryTier):
            async def close(self):
                closed.append(self.name)

        backend = StorageBackend(ClosingTier("local"), ClosingTier("shared"))
        monkeypatch.setattr(cli, "create_backend", lambda storage_config: backend)

        async def broken_load_state(self):
            raise StorageError("disk gone", "local")

        monkeypatch.setattr(SyncCoordinator, "load_state", broken_load_state)

        with pytest.raises(StorageError):
            await cli.open_node(Config())

        assert sorted(closed) == ["local", "shared"]

    @pytest.mark.asyncio
    async def test_hydrates_store(self, node_env):
        store, coordinator = await cli.open_node(load_config(None))
        try:
            assert store.get_state_property("categories") == ["Default"]
            assert coordinator.store is store
        finally:
            await coordinator.storage.close()
