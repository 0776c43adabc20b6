"""
nextup/observable.py - Single-value observer with replay-on-subscribe
"""

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    """Holds a current value and notifies listeners when it is set.

    New listeners are called immediately with the current value, so they
    never need a separate "get current" call. A listener that raises is
    logged and does not stop the others.
    """

    def __init__(self, value: T):
        self._value = value
        self._listeners: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.warning(f"Listener {listener!r} failed: {e}")

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Add a listener. Returns a callable that removes it."""
        self._listeners.append(listener)
        listener(self._value)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._listeners)
