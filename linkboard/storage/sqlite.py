"""SQLite-backed storage tier.

Several tiers may share one database file; each uses its own namespace.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import StorageError
from .base import QuotaPolicy, StorageTier, encode_value

logger = logging.getLogger(__name__)

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);

CREATE INDEX IF NOT EXISTS idx_kv_namespace ON kv_store(namespace);
"""


class SQLiteTier(StorageTier):
    """Key/value tier persisted in a SQLite table."""

    def __init__(
        self,
        name: str,
        db_path: str | Path,
        namespace: str | None = None,
        quota: QuotaPolicy | None = None,
    ):
        """Initialize the tier.

        Args:
            name: Tier name used in errors and logs.
            db_path: Path to the SQLite database file, or ":memory:".
            namespace: Row namespace inside the table. Defaults to ``name``.
            quota: Write limits to enforce.
        """
        super().__init__(name, quota)
        self.db_path = Path(db_path).expanduser()
        self.namespace = namespace or name
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(KV_SCHEMA)
        self._conn.commit()

        logger.info(f"SQLiteTier '{self.name}' connected to {self.db_path}")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _rows(self, keys: list[str] | None = None) -> dict[str, str]:
        conn = self._ensure_connected()

        if keys is None:
            cursor = conn.execute(
                "SELECT key, value FROM kv_store WHERE namespace = ?",
                (self.namespace,),
            )
        else:
            if not keys:
                return {}
            placeholders = ",".join("?" * len(keys))
            cursor = conn.execute(
                f"""
                SELECT key, value FROM kv_store
                WHERE namespace = ? AND key IN ({placeholders})
                """,
                (self.namespace, *keys),
            )

        return {row["key"]: row["value"] for row in cursor}

    def _decode(self, rows: dict[str, str]) -> dict[str, Any]:
        items = {}
        for key, text in rows.items():
            try:
                items[key] = json.loads(text)
            except json.JSONDecodeError as e:
                # An undecodable row reads as absent
                logger.warning(f"Skipping undecodable '{key}' in {self.name} tier: {e}")
        return items

    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        try:
            rows = self._rows(None if keys is None else list(keys))
        except sqlite3.Error as e:
            raise StorageError(f"Read failed: {e}", self.name) from e
        return self._decode(rows)

    async def set(self, items: Mapping[str, Any]) -> None:
        if not items:
            return

        try:
            encoded = {key: encode_value(value) for key, value in items.items()}
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value is not JSON-serializable: {e}", self.name) from e

        conn = self._ensure_connected()
        try:
            current = self._decode(self._rows())
            self.quota.check(current, dict(items), tier=self.name)

            now = datetime.now().isoformat()
            with conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO kv_store (namespace, key, value, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    [(self.namespace, key, text, now) for key, text in encoded.items()],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Write failed: {e}", self.name) from e

        logger.debug(f"Wrote {len(encoded)} item(s) to {self.name} tier")

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return

        conn = self._ensure_connected()
        placeholders = ",".join("?" * len(keys))
        try:
            with conn:
                conn.execute(
                    f"DELETE FROM kv_store WHERE namespace = ? AND key IN ({placeholders})",
                    (self.namespace, *keys),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Remove failed: {e}", self.name) from e

    async def clear(self) -> None:
        conn = self._ensure_connected()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM kv_store WHERE namespace = ?", (self.namespace,)
                )
        except sqlite3.Error as e:
            raise StorageError(f"Clear failed: {e}", self.name) from e

        logger.info(f"Cleared {cursor.rowcount} item(s) from {self.name} tier")

    async def get_bytes_in_use(self) -> int:
        try:
            rows = self._rows()
        except sqlite3.Error as e:
            raise StorageError(f"Read failed: {e}", self.name) from e
        return sum(
            len(key.encode("utf-8")) + len(text.encode("utf-8"))
            for key, text in rows.items()
        )
