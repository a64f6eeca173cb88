"""Storage tier backed by a remote key/value service over HTTP.

Used for the shared tier when the devices' replication transport is a
key/value service. Retries 5xx responses and connection failures with
exponential backoff; maps 413/507 responses to quota errors.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from ..errors import StorageError, StorageQuotaError
from .base import QuotaPolicy, StorageTier

logger = logging.getLogger(__name__)

_QUOTA_STATUS_CODES = (413, 507)


class HttpTier(StorageTier):
    """Tier that reads and writes a namespace on a key/value server."""

    def __init__(
        self,
        name: str,
        base_url: str,
        namespace: str,
        quota: QuotaPolicy | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the tier.

        Args:
            name: Tier name used in errors and logs.
            base_url: Server base URL (e.g., "http://kv.local:8090").
            namespace: Namespace holding this user's items.
            quota: Limits checked client-side before a write is sent.
            timeout: Request timeout in seconds.
            max_retries: Maximum attempts per request.
            backoff_seconds: First retry delay; doubles each attempt.
            transport: Optional httpx transport (tests use MockTransport).
        """
        super().__init__(name, quota)
        self.base_url = base_url.rstrip("/")
        self.namespace = namespace
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> tuple[Any, str | None]:
        """Make HTTP request with exponential backoff retry.

        Returns:
            Tuple of (response_data, error_message).

        Raises:
            StorageQuotaError: If the server refuses the write for size.
        """
        client = await self._get_client()
        url = f"/v1/kv/{self.namespace}{path}"
        backoff = self.backoff_seconds

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, url, json=json_data)

                if response.status_code in (200, 204):
                    if response.status_code == 204 or not response.content:
                        return {}, None
                    return response.json(), None

                elif response.status_code in _QUOTA_STATUS_CODES:
                    raise StorageQuotaError(
                        "QUOTA_BYTES",
                        f"server refused write (HTTP {response.status_code}): {response.text}",
                        tier=self.name,
                    )

                elif response.status_code >= 500:
                    logger.warning(
                        f"Server error {response.status_code}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                else:
                    # Client error, don't retry
                    return None, f"HTTP {response.status_code}: {response.text}"

            except httpx.ConnectError:
                logger.warning(
                    f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TimeoutException:
                logger.warning(
                    f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                )
            except StorageQuotaError:
                raise
            except Exception as e:
                logger.error(f"Request error: {e}")
                return None, str(e)

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        return None, f"Max retries ({self.max_retries}) exceeded"

    async def _request(self, method: str, path: str = "", json_data: Any = None) -> Any:
        data, error = await self._request_with_retry(method, path, json_data)
        if error:
            raise StorageError(f"{method} {path or '/'} failed: {error}", self.name)
        return data

    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        data = await self._request("GET")
        items = data.get("items", {}) if isinstance(data, dict) else {}
        if not isinstance(items, dict):
            raise StorageError("Malformed response: 'items' is not an object", self.name)
        if keys is None:
            return items
        return {key: items[key] for key in keys if key in items}

    async def set(self, items: Mapping[str, Any]) -> None:
        if not items:
            return
        if self.quota.quota_bytes or self.quota.quota_bytes_per_item or self.quota.max_items:
            current = await self.get()
            self.quota.check(current, dict(items), tier=self.name)
        await self._request("PUT", json_data={"items": dict(items)})

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if keys:
            await self._request("POST", "/remove", {"keys": keys})

    async def clear(self) -> None:
        await self._request("DELETE")

    async def get_bytes_in_use(self) -> int:
        data = await self._request("GET", "/usage")
        try:
            return int(data.get("bytes_in_use", 0))
        except (AttributeError, TypeError, ValueError) as e:
            raise StorageError(f"Malformed usage response: {e}", self.name) from e
