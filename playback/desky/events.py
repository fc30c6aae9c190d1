"""
Typed event emission between components
"""

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Signal(Generic[T]):
    """A single event type with synchronous listeners.

    Listeners run on the caller's thread (the event loop) in registration
    order. A failing listener is logged and does not stop the others.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Callable[[T], None]] = []

    def connect(self, listener: Callable[[T], None]) -> Callable[[T], None]:
        if listener not in self._listeners:
            self._listeners.append(listener)
        return listener

    def disconnect(self, listener: Callable[[T], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, payload: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Listener {listener!r} failed handling {self.name}")

    def __len__(self) -> int:
        return len(self._listeners)
