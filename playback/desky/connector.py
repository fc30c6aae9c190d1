"""
Session connector: connection state machine for the playback transport
"""

import asyncio
import time
from typing import Callable, Optional

from .config import Timings
from .errors import DeskyError, ErrorKind, as_desky_error
from .events import Signal
from .logging_utils import get_logger, log_error, log_state_change
from .models import SessionPhase, SessionState
from .timers import TimerSlot
from .transport import PlaybackTransport

logger = get_logger(__name__)


class SessionConnector:
    """Opens and keeps the playback session, retrying with bounded backoff.

    Transitions:
        DISCONNECTED -> CONNECTING     connect() with a token
        CONNECTING   -> CONNECTED      transport reports success
        CONNECTING   -> RETRYING       transport fails, budget remains
        RETRYING     -> CONNECTING     retry timer fires
        CONNECTING   -> ERROR          last attempt in the budget fails, or a terminal failure
        CONNECTED    -> DISCONNECTED   disconnect() or transport drop
        any          -> CONNECTING     connect() again

    All transitions run on the event loop. Each attempt is tagged with a
    generation number so that results of superseded attempts are ignored.
    """

    def __init__(self, transport: PlaybackTransport, timings: Optional[Timings] = None,
                 clock: Callable[[], float] = time.time):
        self.transport = transport
        self.timings = timings or Timings()
        self._clock = clock

        self.state_changed: Signal[SessionState] = Signal("session_state_changed")
        self._state = SessionState.disconnected()
        self._retry_timer = TimerSlot("connection_retry")
        self._attempt_task: Optional[asyncio.Task] = None
        self._access_token: Optional[str] = None
        self._generation = 0
        self.attempts = 0
        self.last_connected_at: Optional[float] = None
        self.last_disconnect_unexpected = False

        transport.disconnected.connect(self._on_transport_disconnected)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def retry_pending(self) -> bool:
        return self._retry_timer.pending

    @property
    def retry_timer(self) -> TimerSlot:
        return self._retry_timer

    def _set_state(self, new_state: SessionState) -> None:
        old_state, self._state = self._state, new_state
        if old_state == new_state:
            return
        log_state_change(logger, str(old_state), str(new_state), attempts=self.attempts)
        self.state_changed.emit(new_state)

    # ---- public operations ----

    def connect(self, access_token: Optional[str]) -> bool:
        """Start (or restart) connecting with ``access_token``.

        Returns False without a transition when the token is empty.
        """
        if not access_token:
            logger.warning("connect() called without an access token; staying disconnected")
            return False

        self._retry_timer.cancel()
        self._generation += 1
        if self._state.is_connected:
            self.transport.disconnect()
        self._access_token = access_token
        self.attempts = 0
        self.last_disconnect_unexpected = False
        self._begin_attempt()
        return True

    def disconnect(self) -> None:
        """Close the session and abandon any retry in progress"""
        self._retry_timer.cancel()
        self._generation += 1
        self._cancel_attempt()
        was_active = self._state.phase in (SessionPhase.CONNECTED, SessionPhase.CONNECTING)
        if was_active:
            self.transport.disconnect()
        self.last_disconnect_unexpected = False
        self._set_state(SessionState.disconnected())

    # ---- attempt handling ----

    def _begin_attempt(self) -> None:
        self.attempts += 1
        self._set_state(SessionState.connecting())
        self._cancel_attempt()
        generation = self._generation
        self._attempt_task = asyncio.get_running_loop().create_task(self._attempt(generation))

    def _cancel_attempt(self) -> None:
        task, self._attempt_task = self._attempt_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _attempt(self, generation: int) -> None:
        logger.info(f"Connecting playback session (attempt {self.attempts}/{self.timings.max_connection_retries})")
        try:
            await self.transport.connect(self._access_token)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation != self._generation:
                return
            if not isinstance(exc, DeskyError):
                log_error(logger, exc, {"operation": "connect", "attempt": self.attempts})
            self._on_attempt_failed(as_desky_error(exc))
        else:
            if generation != self._generation:
                logger.debug("Ignoring result of superseded connection attempt")
                return
            self._on_connected()

    def _on_connected(self) -> None:
        self.last_connected_at = self._clock()
        self.last_disconnect_unexpected = False
        logger.info("Playback session connected")
        self._set_state(SessionState.connected())

    def _on_attempt_failed(self, error: DeskyError) -> None:
        budget = self.timings.max_connection_retries
        if error.kind is not ErrorKind.TERMINAL and self.attempts < budget:
            delay = self.timings.retry_delay(self.attempts)
            logger.warning(f"Connection attempt {self.attempts} failed ({error.message}); retrying in {delay:.1f}s")
            self._set_state(SessionState.retrying())
            self._retry_timer.start(delay, self._on_retry_timer)
            return

        if error.kind is ErrorKind.TERMINAL:
            message = error.message
        else:
            message = f"Could not connect to Spotify after {self.attempts} attempts: {error.message}"
        logger.error(message)
        self._set_state(SessionState.error(message))

    def _on_retry_timer(self) -> None:
        if self._state.phase is not SessionPhase.RETRYING:
            return
        self._begin_attempt()

    def _on_transport_disconnected(self, reason: str) -> None:
        if not self._state.is_connected:
            return
        logger.warning(f"Playback session dropped: {reason}")
        self._generation += 1
        self.last_disconnect_unexpected = True
        self._set_state(SessionState.disconnected())

