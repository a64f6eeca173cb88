"""Storage tier abstraction.

Two tiers exist: ``local`` (large, device-only) and ``shared`` (small quota,
replicated across a user's devices by a transport outside our control).
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import StorageError, StorageQuotaError

logger = logging.getLogger(__name__)

# Quota of the shared tier, matching the browser sync storage area
QUOTA_BYTES = 102400
QUOTA_BYTES_PER_ITEM = 8192
MAX_ITEMS = 512


class Tier(str, Enum):
    """Named storage tier."""

    LOCAL = "local"
    SHARED = "shared"

    @classmethod
    def parse(cls, value: "str | Tier") -> "Tier":
        """Accept a Tier or its name. ``remote`` and ``sync`` mean shared."""
        if isinstance(value, Tier):
            return value
        name = str(value).lower()
        if name in ("remote", "sync"):
            return cls.SHARED
        return cls(name)


def encode_value(value: Any) -> str:
    """Serialize a stored value the way quota accounting measures it."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def item_size(key: str, value: Any) -> int:
    """Bytes an item occupies: key length plus its JSON encoding."""
    return len(key.encode("utf-8")) + len(encode_value(value).encode("utf-8"))


@dataclass
class QuotaPolicy:
    """Write limits enforced by a tier. ``None`` disables a limit."""

    quota_bytes: int | None = None
    quota_bytes_per_item: int | None = None
    max_items: int | None = None

    @classmethod
    def shared_default(cls) -> "QuotaPolicy":
        return cls(
            quota_bytes=QUOTA_BYTES,
            quota_bytes_per_item=QUOTA_BYTES_PER_ITEM,
            max_items=MAX_ITEMS,
        )

    def check(
        self,
        current: Mapping[str, Any],
        updates: Mapping[str, Any],
        tier: str | None = None,
    ) -> None:
        """Raise if writing ``updates`` over ``current`` breaks a limit.

        Raises:
            StorageQuotaError: With code ``QUOTA_MAX_ITEMS``,
                ``QUOTA_BYTES_PER_ITEM`` or ``QUOTA_BYTES``.
        """
        merged = {**current, **updates}

        if self.max_items is not None and len(merged) > self.max_items:
            raise StorageQuotaError(
                "QUOTA_MAX_ITEMS",
                f"{len(merged)} items, limit {self.max_items}",
                tier=tier,
            )

        if self.quota_bytes_per_item is not None:
            for key, value in updates.items():
                size = item_size(key, value)
                if size > self.quota_bytes_per_item:
                    raise StorageQuotaError(
                        "QUOTA_BYTES_PER_ITEM",
                        f"'{key}' needs {size} bytes, limit {self.quota_bytes_per_item}",
                        tier=tier,
                        bytes_needed=size,
                        limit=self.quota_bytes_per_item,
                    )

        if self.quota_bytes is not None:
            total = sum(item_size(k, v) for k, v in merged.items())
            if total > self.quota_bytes:
                raise StorageQuotaError(
                    "QUOTA_BYTES",
                    f"{total} bytes, limit {self.quota_bytes}",
                    tier=tier,
                    bytes_needed=total,
                    limit=self.quota_bytes,
                )


class StorageTier(ABC):
    """Abstract key/value store for one tier.

    Values are JSON-compatible. Implementations raise ``StorageError`` (or a
    subclass) on failure.
    """

    def __init__(self, name: str, quota: QuotaPolicy | None = None):
        self.name = name
        self.quota = quota or QuotaPolicy()

    @property
    def quota_bytes(self) -> int | None:
        """Total byte quota, or None when the tier is effectively unbounded."""
        return self.quota.quota_bytes

    @abstractmethod
    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        """Read items.

        Args:
            keys: Keys to read. None reads everything.

        Returns:
            Mapping of the keys that exist to their values.
        """
        pass

    @abstractmethod
    async def set(self, items: Mapping[str, Any]) -> None:
        """Write items atomically: all of them land or none do."""
        pass

    @abstractmethod
    async def remove(self, keys: Iterable[str]) -> None:
        """Delete keys. Missing keys are ignored."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete every item in the tier."""
        pass

    @abstractmethod
    async def get_bytes_in_use(self) -> int:
        """Bytes currently stored, measured with ``item_size``."""
        pass

    async def close(self) -> None:
        """Release resources held by the tier."""
        return None


class StorageBackend:
    """The pair of tiers the sync engine reconciles.

    Every operation names its tier. Unexpected exceptions from a tier are
    wrapped in ``StorageError`` so callers handle a single error type.
    """

    def __init__(self, local: StorageTier, shared: StorageTier):
        self._tiers = {Tier.LOCAL: local, Tier.SHARED: shared}

    @property
    def local(self) -> StorageTier:
        return self._tiers[Tier.LOCAL]

    @property
    def shared(self) -> StorageTier:
        return self._tiers[Tier.SHARED]

    def tier(self, tier: "str | Tier") -> StorageTier:
        return self._tiers[Tier.parse(tier)]

    async def _call(self, tier: "str | Tier", operation: str, *args: Any) -> Any:
        store = self.tier(tier)
        try:
            return await getattr(store, operation)(*args)
        except StorageError as e:
            if e.tier is None:
                e.tier = store.name
            raise
        except Exception as e:
            raise StorageError(
                f"{operation} failed on {store.name} tier: {e}", store.name
            ) from e

    async def get(
        self, tier: "str | Tier", keys: Iterable[str] | None = None
    ) -> dict[str, Any]:
        return await self._call(tier, "get", keys)

    async def set(self, tier: "str | Tier", items: Mapping[str, Any]) -> None:
        await self._call(tier, "set", items)

    async def remove(self, tier: "str | Tier", keys: Iterable[str]) -> None:
        await self._call(tier, "remove", keys)

    async def clear(self, tier: "str | Tier") -> None:
        await self._call(tier, "clear")

    async def get_bytes_in_use(self, tier: "str | Tier") -> int:
        return await self._call(tier, "get_bytes_in_use")

    def quota_limit(self, tier: "str | Tier") -> int | None:
        return self.tier(tier).quota_bytes

    async def close(self) -> None:
        for store in self._tiers.values():
            try:
                await store.close()
            except Exception as e:
                logger.warning(f"Failed to close {store.name} tier: {e}")
