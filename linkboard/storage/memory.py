"""In-process storage tier."""

import json
from collections.abc import Iterable, Mapping
from typing import Any

from ..errors import StorageError
from .base import QuotaPolicy, StorageTier, encode_value, item_size


class MemoryTier(StorageTier):
    """Dict-backed tier.

    Values are stored as JSON round-trips, so later mutation by the caller
    does not leak into storage (and vice versa), and non-JSON values fail on
    write just as they would against a real backend.
    """

    def __init__(self, name: str, quota: QuotaPolicy | None = None):
        super().__init__(name, quota)
        self._items: dict[str, str] = {}

    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        wanted = self._items.keys() if keys is None else list(keys)
        return {
            key: json.loads(self._items[key])
            for key in wanted
            if key in self._items
        }

    async def set(self, items: Mapping[str, Any]) -> None:
        try:
            encoded = {key: encode_value(value) for key, value in items.items()}
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value is not JSON-serializable: {e}", self.name) from e

        current = {key: json.loads(text) for key, text in self._items.items()}
        self.quota.check(current, dict(items), tier=self.name)
        self._items.update(encoded)

    async def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._items.pop(key, None)

    async def clear(self) -> None:
        self._items.clear()

    async def get_bytes_in_use(self) -> int:
        return sum(
            item_size(key, json.loads(text)) for key, text in self._items.items()
        )
