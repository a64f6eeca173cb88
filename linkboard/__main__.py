"""CLI entry point for linkboard."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .state.store import StateStore
from .storage.factory import create_backend
from .sync.coordinator import SyncCoordinator

# Third-party loggers that report every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(log_data, default=str)


def setup_logging(
    verbose: bool = False,
    log_level: str | None = None,
    json_output: bool = False,
) -> None:
    """Configure the root logger.

    ``log_level`` (warning, info or debug) wins over ``verbose``. Request
    logs from httpx and uvicorn are only shown at debug level.
    """
    if log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    logging.basicConfig(level=level, handlers=[handler])

    if level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


async def open_node(config: Config) -> tuple[StateStore, SyncCoordinator]:
    """Create storage, store and coordinator, and hydrate the store.

    The storage backend is closed again if hydration fails.
    """
    storage = create_backend(config.storage)
    store = StateStore(max_history=config.state.max_history)
    coordinator = SyncCoordinator(
        storage,
        store,
        strategy=config.sync.strategy,
        auto_sync_delay=config.sync.debounce_seconds if config.sync.enabled else None,
    )
    try:
        await coordinator.initialize()
        await coordinator.load_state()
    except BaseException:
        await storage.close()
        raise
    coordinator.attach()
    return store, coordinator


async def cmd_status(args: argparse.Namespace) -> int:
    """Show sync status."""
    config = load_config(args.config)
    _, coordinator = await open_node(config)

    try:
        status = await coordinator.get_sync_status()
    finally:
        await coordinator.storage.close()

    if args.json:
        print(json.dumps({"device": config.device.name, **status}, indent=2))
        return 0

    last_sync = status["last_sync_time"]
    last_sync_text = (
        datetime.fromtimestamp(last_sync / 1000).isoformat() if last_sync else "never"
    )

    print(f"Device: {config.device.name} ({status['device_id']})")
    print(f"Shared backend: {config.storage.shared_backend}")
    print(f"Strategy: {status['strategy']}")
    print(f"Last sync: {last_sync_text}")
    print(
        f"Versions: local={status['local_version']} remote={status['remote_version']} "
        f"({'in sync' if status['is_in_sync'] else 'diverged'})"
    )
    if status["quota_limit"]:
        print(
            f"Shared quota: {status['bytes_in_use']}/{status['quota_limit']} bytes "
            f"({status['quota_percentage']}%)"
        )
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one reconciliation cycle."""
    config = load_config(args.config)
    _, coordinator = await open_node(config)

    try:
        if args.pull:
            result = await coordinator.force_pull_from_remote()
        elif args.push:
            result = await coordinator.force_push_to_remote()
        else:
            result = await coordinator.sync_data(args.strategy)
    finally:
        await coordinator.storage.close()

    if result.success:
        print(f"Sync {result.status.value}: {result.items_synced} links ({result.strategy})")
        return 0

    print(f"Sync {result.status.value}: {result.error}", file=sys.stderr)
    return 1


async def cmd_show(args: argparse.Namespace) -> int:
    """Print the current state."""
    config = load_config(args.config)
    store, coordinator = await open_node(config)
    await coordinator.storage.close()

    state = store.get_state()
    if args.json:
        print(json.dumps(state, indent=2))
        return 0

    print(f"Theme: {state['theme']} / {state['color_theme']}, view: {state['view']}")
    for category in state["categories"]:
        links = [link for link in state["links"] if link.get("category") == category]
        print(f"\n{category} ({len(links)})")
        for link in links:
            print(f"  {link['name']}: {link['url']}")
    return 0


async def cmd_clear_sync(args: argparse.Namespace) -> int:
    """Wipe the shared tier and sync bookkeeping."""
    config = load_config(args.config)
    _, coordinator = await open_node(config)

    try:
        cleared = await coordinator.clear_sync_data()
    finally:
        await coordinator.storage.close()

    if not cleared:
        print("Failed to clear sync data", file=sys.stderr)
        return 1
    print("Sync data cleared")
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the JSON dashboard and the periodic sync loop."""
    config = load_config(args.config)

    try:
        import uvicorn

        from .dashboard import create_app
    except ImportError as e:
        print(f"Dashboard dependencies not installed: {e}", file=sys.stderr)
        return 1

    store, coordinator = await open_node(config)
    host = args.host or config.dashboard.host
    port = args.port or config.dashboard.port

    print(f"Starting linkboard on http://{host}:{port}")
    print(f"Device: {config.device.name}")

    app = create_app(config, store=store, coordinator=coordinator)
    stop_event = asyncio.Event()
    sync_task = None
    if config.sync.enabled:
        sync_task = asyncio.create_task(
            coordinator.sync_loop(
                interval_seconds=config.sync.sync_interval_minutes * 60,
                stop_event=stop_event,
                max_backoff_seconds=config.sync.max_backoff_minutes * 60,
            )
        )

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        stop_event.set()
        if sync_task is not None:
            await sync_task
        await coordinator.flush_local_changes()
        await coordinator.storage.close()

    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="linkboard",
        description="Link dashboard state store with cross-device sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    sync_parser = subparsers.add_parser("sync", help="Synchronize with the shared tier")
    sync_parser.add_argument(
        "-s", "--strategy",
        choices=["local", "remote", "merge"],
        default=None,
        help="Conflict strategy (default: from config)",
    )
    direction = sync_parser.add_mutually_exclusive_group()
    direction.add_argument(
        "--pull",
        action="store_true",
        help="Replace local data with shared data",
    )
    direction.add_argument(
        "--push",
        action="store_true",
        help="Replace shared data with local data",
    )
    sync_parser.set_defaults(func=cmd_sync)

    show_parser = subparsers.add_parser("show", help="Print the current state")
    show_parser.add_argument(
        "--json",
        action="store_true",
        help="Output state as JSON",
    )
    show_parser.set_defaults(func=cmd_show)

    clear_parser = subparsers.add_parser("clear-sync", help="Clear shared sync data")
    clear_parser.set_defaults(func=cmd_clear_sync)

    serve_parser = subparsers.add_parser("serve", help="Start the dashboard and sync loop")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to run dashboard on (default: from config)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind dashboard to (default: from config)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
