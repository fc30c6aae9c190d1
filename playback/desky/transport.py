"""
Playback-control transport abstraction and the Spotify Web API implementation
"""

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import requests
from spotipy import Spotify, SpotifyException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .errors import DeskyError, TerminalError, as_desky_error
from .events import Signal
from .models import PlayerState

logger = logging.getLogger(__name__)

StateCallback = Callable[[Optional[PlayerState]], None]


class Subscription:
    """Handle returned by ``subscribe``; cancelling it stops push updates"""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_cancel:
            self._on_cancel()


class PlaybackTransport(ABC):
    """What the session connector and poller need from a playback service.

    ``disconnected`` is emitted with a reason when the remote side drops an
    open session on its own.
    """

    supports_subscription = False

    def __init__(self):
        self.disconnected: Signal[str] = Signal("transport_disconnected")

    @abstractmethod
    async def connect(self, access_token: str) -> None:
        """Open a session; raises DeskyError on failure"""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session; safe to call when already closed"""

    @abstractmethod
    async def get_state(self) -> Optional[PlayerState]:
        """One-shot now-playing request; None when nothing is playing"""

    def subscribe(self, callback: StateCallback) -> Subscription:
        """Push now-playing updates to ``callback`` until cancelled"""
        raise NotImplementedError(f"{type(self).__name__} has no push subscription")


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, SpotifyException):
        return exc.http_status == 429 or (exc.http_status or 0) >= 500
    return isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout))


class SpotifyWebTransport(PlaybackTransport):
    """Session over the Spotify Web API player endpoints via spotipy"""

    REQUEST_TIMEOUT_S = 8.0

    def __init__(self, client_factory: Callable[..., Spotify] = Spotify):
        super().__init__()
        self._client_factory = client_factory
        self._spotify: Optional[Spotify] = None

    @property
    def is_open(self) -> bool:
        return self._spotify is not None

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def connect(self, access_token: str) -> None:
        if not access_token:
            raise TerminalError("No access token available")

        client = self._client_factory(auth=access_token, requests_timeout=self.REQUEST_TIMEOUT_S)
        try:
            user_info = await self._run(client.current_user)
        except Exception as exc:
            error = as_desky_error(exc)
            logger.warning(f"Spotify session validation failed: {error.message}")
            raise error from exc

        user_id = user_info.get("id", "unknown") if user_info else "unknown"
        logger.info(f"Spotify session opened for user {user_id}")
        self._spotify = client

    def disconnect(self) -> None:
        if self._spotify is not None:
            logger.info("Spotify session closed")
        self._spotify = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    def _current_playback(self, client: Spotify) -> Optional[dict]:
        return client.current_playback()

    async def get_state(self) -> Optional[PlayerState]:
        client = self._spotify
        if client is None:
            raise TerminalError("Playback session is not open")

        try:
            playback = await self._run(self._current_playback, client)
        except SpotifyException as exc:
            error = as_desky_error(exc)
            if exc.http_status == 401 and self._spotify is client:
                logger.warning("Access token expired during playback request")
                self._spotify = None
                self.disconnected.emit("Access token expired")
            raise error from exc
        except DeskyError:
            raise
        except Exception as exc:
            raise as_desky_error(exc) from exc

        return PlayerState.from_spotify_dict(playback) if playback else None
