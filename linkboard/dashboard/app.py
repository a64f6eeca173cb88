"""FastAPI JSON surface for inspecting and driving a linkboard node."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import Body, FastAPI, HTTPException

from ..config import Config
from ..state.store import StateStore
from ..sync.coordinator import SyncCoordinator
from ..sync.merge import ConflictStrategy

logger = logging.getLogger(__name__)


def create_app(
    config: Config,
    store: StateStore,
    coordinator: SyncCoordinator | None = None,
) -> FastAPI:
    """Create the FastAPI dashboard application.

    Args:
        config: Application configuration.
        store: State store the node serves.
        coordinator: Optional sync coordinator; sync routes answer 503
            without one.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Linkboard Dashboard",
        description="Sync status and state inspection for a linkboard device",
        version="0.1.0",
    )

    # Store references for route handlers
    app.state.config = config
    app.state.store = store
    app.state.coordinator = coordinator

    def require_coordinator() -> SyncCoordinator:
        if coordinator is None:
            raise HTTPException(status_code=503, detail="Sync is not configured")
        return coordinator

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint. Always returns 200 OK."""
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "device_name": config.device.name,
            "components": {
                "store": True,
                "sync": coordinator is not None,
            },
        }

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        """Sync status for status widgets."""
        return await require_coordinator().get_sync_status()

    @app.post("/api/sync")
    async def api_sync(strategy: str | None = None) -> dict[str, Any]:
        """Run a reconciliation cycle, optionally with a strategy override."""
        sync = require_coordinator()
        if strategy is not None:
            try:
                strategy = ConflictStrategy(strategy)
            except ValueError:
                raise HTTPException(
                    status_code=400, detail=f"Unknown strategy: {strategy}"
                ) from None

        result = await sync.sync_data(strategy)
        return result.to_dict()

    @app.get("/api/state")
    async def api_state() -> dict[str, Any]:
        return store.get_state()

    @app.patch("/api/state")
    async def api_update_state(delta: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Apply a validated partial update."""
        result = store.safe_update_state(delta, validate=True)
        if not result.success:
            raise HTTPException(
                status_code=422,
                detail={"error": result.error, "errors": result.errors},
            )
        return result.new_state

    @app.get("/api/history")
    async def api_history(limit: int = 20) -> dict[str, Any]:
        """Most recent history entries, newest last."""
        history = store.get_state_history()
        entries = history[-limit:] if limit > 0 else []
        return {
            "count": len(history),
            "max_history": store.max_history,
            "entries": [
                {"timestamp": entry.timestamp, "changes": entry.changes}
                for entry in entries
            ],
        }

    @app.post("/api/rollback")
    async def api_rollback(steps: int = 1) -> dict[str, Any]:
        result = store.rollback_state(steps)
        if not result.success:
            raise HTTPException(status_code=409, detail=result.error)
        return asdict(result)

    return app
