"""Exception types raised inside linkboard.

None of these cross the ``StateStore.safe_update_state`` or
``SyncCoordinator.sync_data`` boundaries; they are converted to result
objects there.
"""


class LinkboardError(Exception):
    """Base class for all linkboard errors."""


class ValidationError(LinkboardError):
    """A state delta or persisted payload broke a structural rule."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class StorageError(LinkboardError):
    """A storage tier failed to read or write."""

    quota_related = False

    def __init__(self, message: str, tier: str | None = None):
        super().__init__(message)
        self.tier = tier


class StorageQuotaError(StorageError):
    """A write was refused because the tier's quota would be exceeded.

    The message always starts with the quota code (``QUOTA_BYTES``,
    ``QUOTA_BYTES_PER_ITEM`` or ``QUOTA_MAX_ITEMS``) so callers can
    pattern-match on ``"QUOTA"``.
    """

    quota_related = True

    def __init__(
        self,
        code: str,
        detail: str = "",
        tier: str | None = None,
        bytes_needed: int | None = None,
        limit: int | None = None,
    ):
        message = f"{code} quota exceeded"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, tier)
        self.code = code
        self.bytes_needed = bytes_needed
        self.limit = limit


class CorruptionError(LinkboardError):
    """A persisted value could not be decoded into the expected shape."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupted '{key}' record: {reason}")
        self.key = key
        self.reason = reason
