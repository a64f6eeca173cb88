"""Handle-based listener registry shared by the state store and sync coordinator."""

import itertools
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ListenerRegistry:
    """Maps subscription handles to callbacks.

    Callbacks run synchronously in registration order. A callback that raises
    is logged and skipped; the remaining callbacks still run.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: dict[int, Callable[..., Any]] = {}
        self._handles = itertools.count(1)

    def add(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback.

        Args:
            callback: Function invoked on every ``emit``.

        Returns:
            A function that removes this subscription. Calling it twice is
            harmless.
        """
        if not callable(callback):
            raise TypeError(f"{self.name} listener must be callable")

        handle = next(self._handles)
        self._listeners[handle] = callback

        def unsubscribe() -> None:
            self._listeners.pop(handle, None)

        return unsubscribe

    def emit(self, *args: Any) -> None:
        """Invoke every registered callback with ``args``."""
        # Copy so callbacks may unsubscribe while we iterate
        for handle, callback in list(self._listeners.items()):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"{self.name} listener {handle} failed: {e}")

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
