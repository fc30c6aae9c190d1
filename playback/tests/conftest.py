"""
Shared fixtures: an in-memory playback transport and fast timings
"""

import asyncio
import math
from typing import List, Optional

import pytest

from desky.config import Settings, Timings
from desky.context import AppSession
from desky.errors import TransientError
from desky.models import PlayerState
from desky.token_store import TokenStore
from desky.transport import PlaybackTransport, Subscription


class FakeTransport(PlaybackTransport):
    """Scriptable transport: fails the first ``fail_times`` connects"""

    def __init__(self, fail_times=0, error_factory=None, supports_subscription=False):
        super().__init__()
        self.fail_times = fail_times
        self.error_factory = error_factory or (lambda: TransientError("connection refused"))
        self.supports_subscription = supports_subscription
        self.connect_calls: List[str] = []
        self.disconnect_calls = 0
        self.get_state_calls = 0
        self.current: Optional[PlayerState] = None
        self.subscribers = []
        self.is_open = False
        self.connect_gate: Optional[asyncio.Event] = None
        self.state_gate: Optional[asyncio.Event] = None

    async def connect(self, access_token: str) -> None:
        self.connect_calls.append(access_token)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        await asyncio.sleep(0)
        if len(self.connect_calls) <= self.fail_times:
            raise self.error_factory()
        self.is_open = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.is_open = False

    async def get_state(self) -> Optional[PlayerState]:
        self.get_state_calls += 1
        if self.state_gate is not None:
            await self.state_gate.wait()
        await asyncio.sleep(0)
        return self.current

    def subscribe(self, callback) -> Subscription:
        self.subscribers.append(callback)
        return Subscription(lambda: self.subscribers.remove(callback))

    def push(self, state: Optional[PlayerState]) -> None:
        for callback in list(self.subscribers):
            callback(state)

    def drop(self, reason: str = "remote closed") -> None:
        self.is_open = False
        self.disconnected.emit(reason)


def make_state(title="Song", artist="Artist", paused=False, image="spotify:image:ab67616d0000b273abc"):
    return PlayerState(track_name=title, artist_name=artist, is_paused=paused,
                       image_id=image, position_ms=1000, duration_ms=200000)


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fast_timings():
    return Timings(
        max_connection_retries=3,
        retry_base_delay_s=0.01,
        retry_backoff_factor=1.0,
        retry_max_delay_s=0.02,
        reconnect_debounce_s=0.02,
        poll_interval_s=0.02,
        refresh_skew_s=300,
        reconnect_window_s=86400,
    )


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(str(tmp_path / "token.json"))


@pytest.fixture
def app_session(tmp_path, token_store):
    return AppSession(str(tmp_path / "state.json"), token_store, settings=Settings())


INFINITE = math.inf
