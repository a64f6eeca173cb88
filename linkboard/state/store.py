"""Authoritative in-memory application state with validation and rollback."""

import copy
import logging
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from ..listeners import ListenerRegistry
from .models import default_state, link_key
from .validator import (
    ValidationResult,
    validate_links,
    validate_state,
)
from .validator import validate_state_changes as _validate_state_changes

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 50


def _now_ms() -> int:
    return int(time.time() * 1000)


def _content(link: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in link.items() if k != "last_modified"}


def _touch_links(previous_links: Any, links: list[Any], now: int) -> list[Any]:
    """Return ``links`` with edited links stamped ``last_modified=now``."""
    before = {
        link_key(link): link
        for link in previous_links or []
        if isinstance(link, dict)
    }

    touched = []
    for link in links:
        old = before.get(link_key(link)) if isinstance(link, dict) else None
        if (
            old is not None
            and _content(link) != _content(old)
            and link.get("last_modified") == old.get("last_modified")
        ):
            link = {**link, "last_modified": now}
        touched.append(link)
    return touched


@dataclass
class HistoryEntry:
    """One committed mutation."""

    previous_state: dict[str, Any]
    changes: dict[str, Any]
    new_state: dict[str, Any]
    timestamp: int  # epoch milliseconds


@dataclass
class UpdateResult:
    """Result of a state update. Never raised, always returned."""

    success: bool
    new_state: dict[str, Any] | None = None
    error: str | None = None
    errors: list[str] = field(default_factory=list)
    rollback_state: dict[str, Any] | None = None


@dataclass
class RollbackResult:
    """Result of a rollback."""

    success: bool
    restored_state: dict[str, Any] | None = None
    error: str | None = None
    rolled_back_to: int | None = None


class StateStore:
    """Holds the single current state snapshot and its bounded history.

    The stored snapshot is never mutated in place: every commit builds a new
    dict, so history entries can share references with it safely. Everything
    handed to callers or listeners is a deep copy.
    """

    def __init__(
        self,
        initial_state: Mapping[str, Any] | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
        clock: Callable[[], int] | None = None,
    ):
        """Initialize the store.

        Args:
            initial_state: Starting snapshot. Defaults to ``default_state()``.
            max_history: Number of history entries kept before the oldest
                is evicted.
            clock: Returns the current time in epoch milliseconds.
        """
        if max_history < 1:
            raise ValueError("max_history must be at least 1")

        self.max_history = max_history
        self._clock = clock or _now_ms
        self._state: dict[str, Any] = self._initial(initial_state)
        self._history: deque[HistoryEntry] = deque(maxlen=max_history)
        self._change_listeners = ListenerRegistry("state-change")
        self._validation_listeners = ListenerRegistry("state-validation")

    @staticmethod
    def _initial(initial_state: Mapping[str, Any] | None) -> dict[str, Any]:
        state = default_state()
        if initial_state:
            state.update(copy.deepcopy(dict(initial_state)))
        return state

    def reset(self, initial_state: Mapping[str, Any] | None = None) -> None:
        """Replace the snapshot and drop all history. Listeners are kept."""
        self._state = self._initial(initial_state)
        self._history.clear()

    # ==================== Reads ====================

    def get_state(self) -> dict[str, Any]:
        """Return a copy of the current snapshot."""
        return copy.deepcopy(self._state)

    def get_state_property(self, key: str, default: Any = None) -> Any:
        """Return a copy of one field of the current snapshot."""
        return copy.deepcopy(self._state.get(key, default))

    def get_state_history(self) -> list[HistoryEntry]:
        """Return a copy of the retained history, oldest first."""
        return copy.deepcopy(list(self._history))

    def clear_state_history(self) -> None:
        self._history.clear()

    # ==================== Listeners ====================

    def add_state_change_listener(
        self, listener: Callable[[HistoryEntry], Any]
    ) -> Callable[[], None]:
        """Subscribe to committed changes and rollbacks.

        Returns:
            Function that removes the subscription.
        """
        return self._change_listeners.add(listener)

    def add_state_validation_listener(
        self, listener: Callable[[ValidationResult], Any]
    ) -> Callable[[], None]:
        """Subscribe to the result of every validated update attempt.

        Returns:
            Function that removes the subscription.
        """
        return self._validation_listeners.add(listener)

    # ==================== Validation ====================

    def validate_all_links(self, links: Any) -> ValidationResult:
        """Validate a list of links, e.g. a bulk import."""
        return validate_links(links)

    def validate_state_changes(self, changes: Any) -> ValidationResult:
        """Validate a partial state, e.g. a single-field UI edit."""
        return _validate_state_changes(changes)

    # ==================== Mutations ====================

    def update_state(
        self,
        delta: Mapping[str, Any],
        validate: bool = False,
        touch_links: bool = True,
    ) -> UpdateResult:
        """Shallow-merge ``delta`` into the current snapshot.

        Lists in ``delta`` replace the stored lists wholesale. When
        ``validate`` is set, the resulting state (not just the delta) must
        pass ``validate_state`` or nothing is committed.

        An existing link (same normalised URL) whose content changed gets
        ``last_modified`` set to the commit time, unless the delta already
        carries a different ``last_modified`` for it.

        Args:
            delta: Fields to change.
            validate: Validate the resulting state before committing.
            touch_links: Stamp edited links. Off when applying links that
                already carry their own timestamps, e.g. a sync result.

        Returns:
            UpdateResult with the new state on success.

        Raises:
            TypeError: If ``delta`` is not a mapping.
        """
        if not isinstance(delta, Mapping):
            raise TypeError(
                f"State delta must be a mapping, got {type(delta).__name__}"
            )

        previous = self._state
        changes = copy.deepcopy(dict(delta))
        candidate = copy.deepcopy(previous)
        candidate.update(copy.deepcopy(changes))

        if validate:
            result = validate_state(candidate)
            self._validation_listeners.emit(result)

            if not result.valid:
                error = f"State validation failed: {', '.join(result.errors)}"
                logger.warning(error)
                return UpdateResult(
                    success=False,
                    error=error,
                    errors=result.errors,
                    rollback_state=copy.deepcopy(previous),
                )

        now = self._clock()
        if touch_links and isinstance(changes.get("links"), list):
            changes["links"] = _touch_links(previous.get("links"), changes["links"], now)
            candidate["links"] = copy.deepcopy(changes["links"])

        entry = HistoryEntry(
            previous_state=previous,
            changes=changes,
            new_state=candidate,
            timestamp=now,
        )
        self._state = candidate
        self._history.append(entry)

        logger.debug(f"State updated: {sorted(changes)}")
        self._change_listeners.emit(copy.deepcopy(entry))

        return UpdateResult(
            success=True,
            new_state=copy.deepcopy(candidate),
            rollback_state=copy.deepcopy(previous),
        )

    def batch_update_state(self, delta: Mapping[str, Any]) -> UpdateResult:
        """Apply several fields as one validated, all-or-nothing commit.

        Produces exactly one history entry and one change notification, or
        none at all. Never raises.
        """
        return self.safe_update_state(delta, validate=True)

    def safe_update_state(
        self, delta: Any, validate: bool = False, touch_links: bool = True
    ) -> UpdateResult:
        """Update entry point for external mutators. Never raises.

        On failure the result carries ``rollback_state``, the last-known-good
        snapshot the caller can re-render from.
        """
        try:
            return self.update_state(delta, validate=validate, touch_links=touch_links)
        except Exception as e:
            logger.error(f"Safe state update failed: {e}")
            return UpdateResult(
                success=False,
                error=str(e) or type(e).__name__,
                rollback_state=copy.deepcopy(self._state),
            )

    def rollback_state(self, steps: int = 1) -> RollbackResult:
        """Restore the snapshot from ``steps`` commits ago.

        The rolled-back entries are removed from history. Fails without
        raising when history holds fewer than ``steps`` entries.
        """
        if steps < 1 or len(self._history) < steps:
            return RollbackResult(
                success=False,
                error=(
                    f"Cannot rollback {steps} steps. "
                    f"Only {len(self._history)} states in history."
                ),
            )

        for _ in range(steps):
            target = self._history.pop()

        current = self._state
        self._state = target.previous_state

        logger.info(f"Rolled back {steps} state change(s)")
        self._change_listeners.emit(
            copy.deepcopy(
                HistoryEntry(
                    previous_state=current,
                    changes={"rollback": True, "steps": steps},
                    new_state=self._state,
                    timestamp=self._clock(),
                )
            )
        )

        return RollbackResult(
            success=True,
            restored_state=copy.deepcopy(self._state),
            rolled_back_to=target.timestamp,
        )

    def create_state_updater(
        self,
        key: str,
        validator: Callable[[Any], bool | str] | None = None,
    ) -> Callable[..., UpdateResult]:
        """Build a setter for a single field.

        Args:
            key: State field the setter writes.
            validator: Optional check run before the update. Returns True to
                accept, or an error string / False to reject.

        Returns:
            ``setter(value, validate=True) -> UpdateResult``.
        """

        def setter(value: Any, validate: bool = True) -> UpdateResult:
            if validator is not None and validate:
                try:
                    verdict = validator(value)
                except Exception as e:
                    verdict = str(e)
                if verdict is not True:
                    return UpdateResult(
                        success=False,
                        error=verdict if isinstance(verdict, str) else f"Invalid {key}",
                        rollback_state=self.get_state(),
                    )
            return self.safe_update_state({key: value}, validate=validate)

        return setter
