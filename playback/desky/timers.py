"""
Single-instance timers on the asyncio event loop
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerSlot:
    """Holds at most one scheduled callback.

    Starting the slot cancels whatever was pending first, so a slot can never
    have two live timers.
    """

    def __init__(self, name: str, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.name = name
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None and not self._handle.cancelled()

    @property
    def handle(self) -> Optional[asyncio.TimerHandle]:
        return self._handle

    def start(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()

        def _fire() -> None:
            self._handle = None
            callback()

        self._handle = loop.call_later(max(delay, 0.0), _fire)
        logger.debug(f"Timer {self.name} scheduled in {delay:.2f}s")
        return self._handle

    def cancel(self) -> bool:
        """Cancel the pending timer; returns True if one was pending"""
        handle, self._handle = self._handle, None
        if handle is None or handle.cancelled():
            return False
        handle.cancel()
        logger.debug(f"Timer {self.name} cancelled")
        return True
