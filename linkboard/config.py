"""Configuration loading for linkboard."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .storage.base import MAX_ITEMS, QUOTA_BYTES, QUOTA_BYTES_PER_ITEM

SHARED_BACKENDS = ("memory", "sqlite", "http")
STRATEGIES = ("local", "remote", "merge")


@dataclass
class DeviceConfig:
    name: str = "linkboard-device"


@dataclass
class StateConfig:
    """Configuration for the in-memory state store."""

    max_history: int = 50


@dataclass
class StorageConfig:
    """Configuration for the local and shared storage tiers.

    The local tier is always SQLite. The shared tier is selected by
    ``shared_backend``: ``sqlite`` (a file several devices can point at),
    ``http`` (a remote key/value service) or ``memory`` (single process).
    """

    local_db_path: str = "~/.linkboard/local.db"
    shared_backend: str = "sqlite"
    shared_db_path: str = "~/.linkboard/shared.db"
    shared_url: str = ""
    namespace: str = "default"
    request_timeout_seconds: float = 30.0
    retry_max_attempts: int = 3
    quota_bytes: int = QUOTA_BYTES
    quota_bytes_per_item: int = QUOTA_BYTES_PER_ITEM
    max_items: int = MAX_ITEMS


@dataclass
class SyncConfig:
    """Configuration for cross-device reconciliation."""

    enabled: bool = True
    strategy: str = "merge"  # "local", "remote" or "merge"
    sync_interval_minutes: int = 5
    debounce_seconds: float = 2.0
    max_backoff_minutes: int = 60


@dataclass
class DashboardConfig:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class Config:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    state: StateConfig = field(default_factory=StateConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with LINKBOARD_ prefix."""
    return os.environ.get(f"LINKBOARD_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("DEVICE_NAME"):
        config.device.name = name

    if max_history := _get_env("MAX_HISTORY"):
        config.state.max_history = int(max_history)

    # Storage overrides
    if local_db_path := _get_env("LOCAL_DB_PATH"):
        config.storage.local_db_path = local_db_path
    if shared_backend := _get_env("SHARED_BACKEND"):
        config.storage.shared_backend = shared_backend
    if shared_db_path := _get_env("SHARED_DB_PATH"):
        config.storage.shared_db_path = shared_db_path
    if shared_url := _get_env("SHARED_URL"):
        config.storage.shared_url = shared_url
    if namespace := _get_env("NAMESPACE"):
        config.storage.namespace = namespace

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _as_bool(sync_enabled)
    if strategy := _get_env("SYNC_STRATEGY"):
        config.sync.strategy = strategy
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = int(sync_interval)

    # Dashboard overrides
    if host := _get_env("DASHBOARD_HOST"):
        config.dashboard.host = host
    if port := _get_env("DASHBOARD_PORT"):
        config.dashboard.port = int(port)

    return config


def _validate(config: Config) -> None:
    if config.sync.strategy not in STRATEGIES:
        raise ValueError(
            f"Invalid sync strategy '{config.sync.strategy}', "
            f"expected one of {', '.join(STRATEGIES)}"
        )
    if config.storage.shared_backend not in SHARED_BACKENDS:
        raise ValueError(
            f"Invalid shared backend '{config.storage.shared_backend}', "
            f"expected one of {', '.join(SHARED_BACKENDS)}"
        )
    if config.storage.shared_backend == "http" and not config.storage.shared_url:
        raise ValueError("storage.shared_url is required for the http shared backend")
    if config.state.max_history < 1:
        raise ValueError("state.max_history must be at least 1")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If a setting has an unsupported value.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "device" in data:
                config.device = DeviceConfig(
                    name=data["device"].get("name", config.device.name)
                )

            if "state" in data:
                config.state = StateConfig(
                    max_history=data["state"].get("max_history", config.state.max_history)
                )

            # Parse storage config
            if "storage" in data:
                storage_data = data["storage"]
                defaults = config.storage
                config.storage = StorageConfig(
                    local_db_path=storage_data.get("local_db_path", defaults.local_db_path),
                    shared_backend=storage_data.get("shared_backend", defaults.shared_backend),
                    shared_db_path=storage_data.get("shared_db_path", defaults.shared_db_path),
                    shared_url=storage_data.get("shared_url", defaults.shared_url),
                    namespace=storage_data.get("namespace", defaults.namespace),
                    request_timeout_seconds=storage_data.get(
                        "request_timeout_seconds", defaults.request_timeout_seconds
                    ),
                    retry_max_attempts=storage_data.get(
                        "retry_max_attempts", defaults.retry_max_attempts
                    ),
                    quota_bytes=storage_data.get("quota_bytes", defaults.quota_bytes),
                    quota_bytes_per_item=storage_data.get(
                        "quota_bytes_per_item", defaults.quota_bytes_per_item
                    ),
                    max_items=storage_data.get("max_items", defaults.max_items),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    strategy=sync_data.get("strategy", config.sync.strategy),
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", config.sync.sync_interval_minutes
                    ),
                    debounce_seconds=sync_data.get(
                        "debounce_seconds", config.sync.debounce_seconds
                    ),
                    max_backoff_minutes=sync_data.get(
                        "max_backoff_minutes", config.sync.max_backoff_minutes
                    ),
                )

            if "dashboard" in data:
                dashboard_data = data["dashboard"]
                config.dashboard = DashboardConfig(
                    host=dashboard_data.get("host", config.dashboard.host),
                    port=dashboard_data.get("port", config.dashboard.port),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)
    return config
