"""Reconciliation between the local and shared tiers and the state store.

One cycle runs identify -> flush -> inspect -> decide -> resolve -> validate
-> commit -> publish. Cycles never overlap: a caller that arrives while one
is running waits for that cycle's result.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ..errors import CorruptionError, StorageError, ValidationError
from ..listeners import ListenerRegistry
from ..state.store import HistoryEntry, StateStore, UpdateResult
from ..storage.base import StorageBackend, Tier
from ..storage.records import (
    CATEGORIES_KEY,
    DATA_KEYS,
    DEVICE_ID_KEY,
    LAST_SYNC_TIME_KEY,
    LINKS_KEY,
    STATE_KEYS,
    SYNC_METADATA_KEY,
    decode_categories,
    decode_links,
    decode_state,
    encode_state,
    has_state,
    parse_json_list,
)
from .merge import ConflictStrategy, resolve_conflict, validate_sync_data
from .metadata import (
    UNKNOWN_DEVICE_ID,
    SyncMetadata,
    TierMetadata,
    generate_device_id,
    now_ms,
)

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Outcome of a reconciliation cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # local tier committed, shared tier did not
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of one reconciliation cycle."""

    status: SyncStatus
    strategy: str | None = None
    conflict_detected: bool = False
    items_synced: int = 0
    error: str | None = None
    timestamp: int | None = None
    metadata: TierMetadata | None = None

    @property
    def success(self) -> bool:
        return self.status is SyncStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "strategy": self.strategy,
            "conflict_detected": self.conflict_detected,
            "items_synced": self.items_synced,
            "error": self.error,
            "timestamp": self.timestamp,
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


@dataclass
class MetadataUpdateResult:
    """Result of writing a payload and bumped metadata to one or both tiers."""

    success: bool
    metadata: SyncMetadata | None = None
    error: str | None = None
    failed_tiers: list[str] = field(default_factory=list)
    quota_exceeded: bool = False


@dataclass
class SyncEvent:
    """Notification delivered to sync listeners.

    ``type`` is one of ``initialized``, ``sync_start``, ``sync_complete``,
    ``sync_error``, ``storage_error`` or ``sync_cleared``.
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    result: SyncResult | None = None


class SyncCoordinator:
    """Keeps the local tier, the shared tier and a StateStore consistent.

    Supports:
    - Version-based divergence detection per tier
    - Conflict resolution by strategy (local, remote, merge)
    - Partial-failure reporting, including shared tier quota exhaustion
    - Debounced and periodic sync
    """

    def __init__(
        self,
        storage: StorageBackend,
        store: StateStore | None = None,
        strategy: ConflictStrategy | str = ConflictStrategy.MERGE,
        auto_sync_delay: float | None = None,
        clock: Callable[[], int] | None = None,
    ):
        """Initialize the coordinator.

        Args:
            storage: The local and shared tiers.
            store: State store that receives reconciled data.
            strategy: Default conflict resolution strategy.
            auto_sync_delay: If set, local state changes schedule a debounced
                sync after this many seconds (requires ``attach``).
            clock: Returns the current time in epoch milliseconds.
        """
        self.storage = storage
        self.store = store
        self.strategy = ConflictStrategy(strategy)
        self.auto_sync_delay = auto_sync_delay
        self._clock = clock or now_ms
        self._listeners = ListenerRegistry("sync")
        self._device_id: str | None = None
        self._last_sync_time: int | None = None
        self._cycle: asyncio.Future | None = None
        self._debounce_task: asyncio.Task | None = None
        self._pending_state: dict[str, Any] | None = None
        self._publishing = False
        self._detach: Callable[[], None] | None = None
        self._consecutive_failures = 0

    # ==================== Listeners ====================

    def add_sync_listener(self, listener: Callable[[SyncEvent], Any]) -> Callable[[], None]:
        """Subscribe to sync events.

        Returns:
            Function that removes the subscription.
        """
        return self._listeners.add(listener)

    def _emit(
        self, event_type: str, data: dict[str, Any] | None = None, result: SyncResult | None = None
    ) -> None:
        self._listeners.emit(SyncEvent(type=event_type, data=data or {}, result=result))

    def _report_storage_error(self, tier: Tier, error: StorageError) -> None:
        if error.quota_related:
            message = f"{tier.value} storage quota exceeded"
        else:
            message = f"Failed to access {tier.value} storage"
        self._emit(
            "storage_error",
            {
                "type": "quota_exceeded" if error.quota_related else "storage_error",
                "tier": tier.value,
                "message": message,
                "details": str(error),
            },
        )

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        """Load the device id and the last sync time from the local tier."""
        await self.get_device_id()
        try:
            items = await self.storage.get(Tier.LOCAL, [LAST_SYNC_TIME_KEY])
            value = items.get(LAST_SYNC_TIME_KEY)
            self._last_sync_time = value if isinstance(value, int) else None
        except StorageError as e:
            logger.error(f"Failed to initialize sync status: {e}")

        self._emit("initialized", {"last_sync_time": self._last_sync_time})

    def attach(self) -> None:
        """Watch the state store and queue local edits for persistence.

        Queued edits are written to the local tier (with a local version
        bump) by ``flush_local_changes`` or at the start of the next cycle.
        """
        if self.store is None:
            raise RuntimeError("No state store to attach to")
        if self._detach is None:
            self._detach = self.store.add_state_change_listener(self._on_state_change)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def _on_state_change(self, entry: HistoryEntry) -> None:
        if self._publishing:
            return
        if not entry.changes.get("rollback") and not set(entry.changes) & set(STATE_KEYS):
            return

        self._pending_state = entry.new_state
        if self.auto_sync_delay is not None:
            self.debounced_sync(self.auto_sync_delay)

    @property
    def has_pending_changes(self) -> bool:
        return self._pending_state is not None

    async def load_state(self) -> dict[str, Any]:
        """Hydrate the state store from storage.

        Links and categories come from the tier with the higher version
        (shared on a tie), falling back to the other tier when the preferred
        one holds nothing. Preferences come from the local tier. Corrupted
        records load as defaults.
        """
        local_items = await self._read_tier(Tier.LOCAL, STATE_KEYS + (SYNC_METADATA_KEY,))
        shared_items = await self._read_tier(Tier.SHARED, DATA_KEYS + (SYNC_METADATA_KEY,))

        local_version = SyncMetadata.from_dict(local_items.get(SYNC_METADATA_KEY)).version
        shared_version = SyncMetadata.from_dict(shared_items.get(SYNC_METADATA_KEY)).version

        preferred, fallback = shared_items, local_items
        if local_version > shared_version:
            preferred, fallback = local_items, shared_items
        source = preferred if has_state({k: preferred.get(k) for k in DATA_KEYS}) else fallback

        items = dict(local_items)
        for key in DATA_KEYS:
            items[key] = source.get(key)

        state = decode_state(items)
        if self.store is not None:
            self.store.reset(state)

        logger.info(
            f"Loaded state: {len(state['links'])} links, "
            f"{len(state['categories'])} categories"
        )
        return state

    async def _read_tier(self, tier: Tier, keys: tuple[str, ...]) -> dict[str, Any]:
        try:
            return await self.storage.get(tier, keys)
        except StorageError as e:
            logger.error(f"Failed to read {tier.value} tier: {e}")
            self._report_storage_error(tier, e)
            return {}

    # ==================== Identity and metadata ====================

    async def get_device_id(self) -> str:
        """Return this device's id, creating and persisting it on first use.

        Falls back to ``unknown_device`` when the local tier cannot be read
        or written; the next call tries again.
        """
        if self._device_id:
            return self._device_id

        try:
            items = await self.storage.get(Tier.LOCAL, [DEVICE_ID_KEY])
            device_id = items.get(DEVICE_ID_KEY)

            if not isinstance(device_id, str) or not device_id:
                device_id = generate_device_id(self._clock())
                await self.storage.set(Tier.LOCAL, {DEVICE_ID_KEY: device_id})
                logger.info(f"Created device id {device_id}")

            self._device_id = device_id
            return device_id

        except StorageError as e:
            logger.error(f"Failed to get device ID: {e}")
            return UNKNOWN_DEVICE_ID

    async def _read_metadata(self, tier: Tier) -> SyncMetadata:
        try:
            items = await self.storage.get(tier, [SYNC_METADATA_KEY])
        except StorageError as e:
            logger.error(f"Failed to read {tier.value} sync metadata: {e}")
            return SyncMetadata()
        return SyncMetadata.from_dict(items.get(SYNC_METADATA_KEY))

    async def get_sync_metadata(self) -> TierMetadata:
        """Read both tiers' metadata concurrently. Missing reads as version 0."""
        local, remote = await asyncio.gather(
            self._read_metadata(Tier.LOCAL),
            self._read_metadata(Tier.SHARED),
        )
        return TierMetadata(local=local, remote=remote)

    @staticmethod
    def _targets(target: str) -> list[Tier]:
        if target == "both":
            return [Tier.LOCAL, Tier.SHARED]
        try:
            return [Tier.parse(target)]
        except ValueError:
            raise ValueError(f"Unknown sync target: {target}") from None

    async def update_sync_metadata(
        self,
        target: str = "both",
        payload: dict[str, Any] | None = None,
    ) -> MetadataUpdateResult:
        """Write ``payload`` with freshly bumped metadata to the target tiers.

        The new version is one above the highest version of either tier.
        Each tier receives payload and metadata in a single write. A tier
        that fails does not undo a tier that succeeded.

        Args:
            target: ``local``, ``remote`` (or ``shared``), or ``both``.
            payload: Records to write with the metadata.

        Returns:
            MetadataUpdateResult; on failure ``error`` names each failed
            tier and carries its error text (quota errors contain "QUOTA").
        """
        tiers = self._targets(target)
        current = await self.get_sync_metadata()

        metadata = SyncMetadata(
            version=max(current.local.version, current.remote.version) + 1,
            last_modified=self._clock(),
            device_id=await self.get_device_id(),
        )
        records = {**(payload or {}), SYNC_METADATA_KEY: metadata.to_dict()}

        failures: list[tuple[Tier, StorageError]] = []
        for tier in tiers:
            try:
                await self.storage.set(tier, records)
            except StorageError as e:
                logger.error(f"Failed to update {tier.value} sync metadata: {e}")
                self._report_storage_error(tier, e)
                failures.append((tier, e))

        if failures:
            return MetadataUpdateResult(
                success=False,
                metadata=metadata,
                error="; ".join(f"{tier.value} tier: {e}" for tier, e in failures),
                failed_tiers=[tier.value for tier, _ in failures],
                quota_exceeded=any(e.quota_related for _, e in failures),
            )

        logger.debug(f"Sync metadata updated to version {metadata.version} ({target})")
        return MetadataUpdateResult(success=True, metadata=metadata)

    async def flush_local_changes(self) -> bool:
        """Persist queued local edits to the local tier.

        Returns:
            True if nothing was queued or the write succeeded.
        """
        state = self._pending_state
        if state is None:
            return True

        result = await self.update_sync_metadata("local", encode_state(state))
        if not result.success:
            return False

        # A newer edit may have been queued while we were writing
        if self._pending_state is state:
            self._pending_state = None
        return True

    # ==================== Resolution ====================

    def resolve_conflict(
        self,
        local_data: dict[str, Any],
        remote_data: dict[str, Any],
        metadata: TierMetadata,
        strategy: ConflictStrategy | str | None = None,
    ) -> dict[str, Any]:
        return resolve_conflict(local_data, remote_data, metadata, strategy or self.strategy)

    def validate_sync_data(self, data: Any):
        return validate_sync_data(data)

    # ==================== Reconciliation ====================

    @property
    def sync_in_progress(self) -> bool:
        return self._cycle is not None and not self._cycle.done()

    @property
    def last_sync_time(self) -> int | None:
        """Epoch milliseconds of the last completed cycle."""
        return self._last_sync_time

    async def sync_data(
        self,
        strategy: ConflictStrategy | str | None = None,
        force: bool = False,
    ) -> SyncResult:
        """Run one reconciliation cycle, or join the one already running.

        Args:
            strategy: Override the configured conflict strategy.
            force: Resolve and rewrite both tiers even when versions match.

        Returns:
            SyncResult. Never raises for sync failures.
        """
        if self.sync_in_progress:
            logger.info("Sync already in progress, waiting for it")
            return await asyncio.shield(self._cycle)

        self._cycle = asyncio.ensure_future(self._run_cycle(strategy, force))
        return await asyncio.shield(self._cycle)

    async def sync_now(self) -> SyncResult:
        """Manual trigger for UI status widgets."""
        return await self.sync_data()

    async def force_pull_from_remote(self) -> SyncResult:
        """Replace local data with the shared tier's data."""
        return await self.sync_data(ConflictStrategy.REMOTE, force=True)

    async def force_push_to_remote(self) -> SyncResult:
        """Replace shared data with the local tier's data."""
        return await self.sync_data(ConflictStrategy.LOCAL, force=True)

    async def _run_cycle(
        self, strategy: ConflictStrategy | str | None, force: bool
    ) -> SyncResult:
        self._emit("sync_start", {"time": self._clock()})
        metadata: TierMetadata | None = None
        strategy_name = str(getattr(strategy, "value", strategy or self.strategy.value))

        try:
            resolved_strategy = ConflictStrategy(strategy or self.strategy)
            strategy_name = resolved_strategy.value

            await self.get_device_id()
            if not await self.flush_local_changes():
                logger.warning("Could not persist pending local changes before sync")

            metadata = await self.get_sync_metadata()

            if metadata.in_sync and not force:
                logger.info("No conflict detected, tiers already in sync")
                result = SyncResult(
                    status=SyncStatus.SUCCESS,
                    strategy=strategy_name,
                    timestamp=self._clock(),
                    metadata=metadata,
                )
                await self._record_sync_time(result.timestamp)
                self._consecutive_failures = 0
                self._emit("sync_complete", result.to_dict(), result)
                return result

            local_data = await self.storage.get(Tier.LOCAL, DATA_KEYS)
            try:
                remote_data = await self.storage.get(Tier.SHARED, DATA_KEYS)
            except StorageError as e:
                self._report_storage_error(Tier.SHARED, e)
                if resolved_strategy is ConflictStrategy.REMOTE:
                    raise
                logger.warning("Shared storage unavailable, working with local data only")
                remote_data = {}

            logger.info(
                f"Versions differ (local={metadata.local.version}, "
                f"remote={metadata.remote.version}), resolving with {strategy_name}"
            )
            resolved = self.resolve_conflict(local_data, remote_data, metadata, resolved_strategy)
            if not resolved:
                raise ValidationError(
                    "Invalid resolved data: both links and categories are missing",
                    [f"{resolved_strategy.value} side holds no links or categories"],
                )

            validation = validate_sync_data(resolved)
            if not validation.valid:
                raise ValidationError(
                    f"Data validation failed: {', '.join(validation.errors)}",
                    validation.errors,
                )

            commit = await self.update_sync_metadata("both", resolved)
            if Tier.LOCAL.value in commit.failed_tiers:
                raise StorageError(commit.error or "Local write failed", Tier.LOCAL.value)

            publish = self._publish(resolved)
            if publish is not None and not publish.success:
                logger.warning(f"Reconciled data was not applied to state: {publish.error}")

            timestamp = self._clock()
            await self._record_sync_time(timestamp)

            result = SyncResult(
                status=SyncStatus.SUCCESS if commit.success else SyncStatus.PARTIAL,
                strategy=strategy_name,
                conflict_detected=True,
                items_synced=self._count_links(resolved),
                error=commit.error,
                timestamp=timestamp,
                metadata=metadata,
            )

            if result.success:
                self._consecutive_failures = 0
                logger.info(f"Sync completed successfully. Synced {result.items_synced} items.")
                self._emit("sync_complete", result.to_dict(), result)
            else:
                self._consecutive_failures += 1
                logger.warning(f"Sync only reached the local tier: {result.error}")
                self._emit("sync_error", result.to_dict(), result)
            return result

        except Exception as e:
            logger.error(f"Sync failed: {e}")
            self._consecutive_failures += 1
            result = SyncResult(
                status=SyncStatus.FAILED,
                strategy=strategy_name,
                conflict_detected=metadata is not None and not metadata.in_sync,
                error=str(e),
                timestamp=self._clock(),
                metadata=metadata,
            )
            self._emit("sync_error", result.to_dict(), result)
            return result

    def _publish(self, payload: dict[str, Any]) -> UpdateResult | None:
        """Push reconciled links and categories into the state store."""
        if self.store is None:
            return None
        if all(payload.get(key) is None for key in DATA_KEYS):
            return None

        current = self.store.get_state()
        raw_links = payload.get(LINKS_KEY)
        links = decode_links(raw_links) if raw_links is not None else current.get("links", [])

        raw_categories = payload.get(CATEGORIES_KEY)
        if raw_categories is None:
            raw_categories = current.get("categories")
        categories = decode_categories(raw_categories, links)

        self._publishing = True
        try:
            return self.store.safe_update_state(
                {"links": links, "categories": categories},
                validate=True,
                touch_links=False,
            )
        finally:
            self._publishing = False

    @staticmethod
    def _count_links(payload: dict[str, Any]) -> int:
        try:
            return len(parse_json_list(LINKS_KEY, payload.get(LINKS_KEY)) or [])
        except CorruptionError:
            return 0

    async def _record_sync_time(self, timestamp: int) -> None:
        self._last_sync_time = timestamp
        try:
            await self.storage.set(Tier.LOCAL, {LAST_SYNC_TIME_KEY: timestamp})
        except StorageError as e:
            logger.warning(f"Failed to persist last sync time: {e}")

    # ==================== Scheduling ====================

    def debounced_sync(self, delay: float = 2.0) -> asyncio.Task | None:
        """Schedule a sync after ``delay`` seconds, replacing a pending one.

        Only the timer is cancelled; a cycle that already started runs to
        completion. Returns None when no event loop is running.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, debounced sync skipped")
            return None

        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()

        self._debounce_task = loop.create_task(self._sync_after(delay))
        return self._debounce_task

    async def _sync_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.sync_data()

    async def sync_loop(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
        max_backoff_seconds: float = 3600,
    ) -> None:
        """Run continuous sync loop.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
            max_backoff_seconds: Ceiling for the back-off interval.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            result = await self.sync_data()
            logger.info(f"Sync: {result.status.value}, items={result.items_synced}")

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    max_backoff_seconds,
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    # ==================== Status ====================

    async def get_sync_status(self) -> dict[str, Any]:
        """Read-only summary for status widgets."""
        metadata = await self.get_sync_metadata()

        try:
            bytes_in_use = await self.storage.get_bytes_in_use(Tier.SHARED)
        except StorageError as e:
            logger.error(f"Failed to read shared storage usage: {e}")
            bytes_in_use = 0

        quota_limit = self.storage.quota_limit(Tier.SHARED)
        quota_percentage = (
            math.floor(bytes_in_use / quota_limit * 100) if quota_limit else 0
        )

        return {
            "last_sync_time": self._last_sync_time,
            "local_version": metadata.local.version,
            "remote_version": metadata.remote.version,
            "is_in_sync": metadata.in_sync,
            "sync_in_progress": self.sync_in_progress,
            "bytes_in_use": bytes_in_use,
            "quota_limit": quota_limit,
            "quota_percentage": quota_percentage,
            "strategy": self.strategy.value,
            "device_id": self._device_id,
            "pending_changes": self.has_pending_changes,
        }

    async def clear_sync_data(self) -> bool:
        """Wipe the shared tier and this device's sync bookkeeping.

        Returns:
            True on success.
        """
        try:
            await self.storage.clear(Tier.SHARED)
            await self.storage.remove(Tier.LOCAL, [SYNC_METADATA_KEY, LAST_SYNC_TIME_KEY])
        except StorageError as e:
            logger.error(f"Failed to clear sync data: {e}")
            return False

        self._last_sync_time = None
        self._emit("sync_cleared", {"time": self._clock()})
        return True
