"""
Now-playing poller/subscriber
"""

import asyncio
from typing import Optional, Set

from .connector import SessionConnector
from .errors import DeskyError, as_desky_error
from .events import Signal
from .logging_utils import get_logger, log_error
from .models import PlayerState, SessionState, TrackInfo
from .timers import TimerSlot
from .transport import PlaybackTransport, Subscription

logger = get_logger(__name__)


class PlaybackPoller:
    """Publishes TrackInfo while the session is connected.

    Uses the transport's push subscription when it has one, otherwise polls
    every ``interval_s``. Everything stops the moment the connector leaves
    CONNECTED, and the track is cleared.
    """

    def __init__(self, connector: SessionConnector, transport: Optional[PlaybackTransport] = None,
                 interval_s: float = 5.0, prefer_subscription: bool = True):
        self.connector = connector
        self.transport = transport or connector.transport
        self.interval_s = interval_s
        self.prefer_subscription = prefer_subscription

        self.track_changed: Signal[Optional[TrackInfo]] = Signal("track_changed")
        self.errors: Signal[DeskyError] = Signal("poll_error")
        self._track: Optional[TrackInfo] = None
        self._poll_timer = TimerSlot("now_playing_poll")
        self._subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

        connector.state_changed.connect(self._on_session_state)

    @property
    def track(self) -> Optional[TrackInfo]:
        return self._track if self.connector.is_connected else None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def poll_pending(self) -> bool:
        return self._poll_timer.pending

    def _on_session_state(self, state: SessionState) -> None:
        if state.is_connected:
            self.start()
        else:
            self.stop()

    def start(self) -> None:
        if self._running or not self.connector.is_connected:
            return
        self._running = True
        if self.prefer_subscription and self.transport.supports_subscription:
            logger.info("Subscribing to now-playing updates")
            self._subscription = self.transport.subscribe(self._apply_state)
            self._spawn(self._fetch())
        else:
            logger.info(f"Polling now-playing every {self.interval_s:.1f}s")
            self._poll_tick()

    def stop(self) -> None:
        """Cancel the poll timer, subscription and in-flight requests; clear the track"""
        was_running = self._running
        self._running = False
        self._poll_timer.cancel()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if was_running:
            logger.info("Stopped now-playing updates")
        self._set_track(None)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _poll_tick(self) -> None:
        if not self._running:
            return
        task = self._spawn(self._fetch())
        task.add_done_callback(self._schedule_next_poll)

    def _schedule_next_poll(self, task: asyncio.Task) -> None:
        if self._running and not task.cancelled():
            self._poll_timer.start(self.interval_s, self._poll_tick)

    async def _fetch(self) -> Optional[TrackInfo]:
        try:
            state = await self.transport.get_state()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not isinstance(exc, DeskyError):
                log_error(logger, exc, {"operation": "get_state"})
            error = as_desky_error(exc)
            logger.warning(f"Now-playing request failed: {error.message}")
            self.errors.emit(error)
            return self.track
        self._apply_state(state)
        return self.track

    def _apply_state(self, state: Optional[PlayerState]) -> None:
        if not self.connector.is_connected:
            # Late response after the session closed
            return
        self._set_track(TrackInfo.from_player_state(state) if state else None)

    def _set_track(self, track: Optional[TrackInfo]) -> None:
        if track == self._track:
            return
        self._track = track
        if track:
            logger.debug(f"Now playing: {track.title} - {track.artist}",
                         extra={"track": track.to_dict()})
        self.track_changed.emit(track)

    async def refresh(self) -> Optional[TrackInfo]:
        """User-triggered one-shot request; leaves the subscription/poll cadence alone"""
        if not self.connector.is_connected:
            logger.info("Manual refresh skipped: session not connected")
            return None
        task = self._spawn(self._fetch())
        await asyncio.wait({task})
        return None if task.cancelled() else task.result()
