"""
Composition root wiring auth, session, now-playing and lifecycle together
"""

from typing import Callable, List, Optional
import webbrowser

from .config import DeskyConfig
from .connector import SessionConnector
from .context import AppSession
from .errors import DeskyError, TerminalError
from .lifecycle import LifecycleCoordinator
from .logging_utils import get_logger
from .models import SessionPhase, SessionState, TokenSet, TrackInfo
from .oauth import OAuthFlowHandler
from .poller import PlaybackPoller
from .token_store import TokenStore
from .transport import PlaybackTransport, SpotifyWebTransport

logger = get_logger(__name__)


class DeskyApplication:
    """Owns every component and is the boundary where errors become notifications.

    Construct it inside a running event loop; all public coroutine methods
    must run on that loop.
    """

    def __init__(self, config: DeskyConfig, transport: Optional[PlaybackTransport] = None,
                 opener: Callable[[str], bool] = webbrowser.open):
        self.config = config
        timings = config.timings

        self.tokens = TokenStore(config.token_file)
        self.session = AppSession(
            config.state_file, self.tokens,
            settings=config.settings,
            reconnect_window_s=timings.reconnect_window_s,
        )
        self.oauth = OAuthFlowHandler(
            config.spotify, self.session,
            refresh_skew_s=timings.refresh_skew_s,
            timeout_s=timings.request_timeout_s,
            opener=opener,
        )
        self.transport = transport or SpotifyWebTransport()
        self.connector = SessionConnector(self.transport, timings)
        self.poller = PlaybackPoller(self.connector, interval_s=timings.poll_interval_s)
        self.lifecycle = LifecycleCoordinator(self.session, self.oauth, self.connector, timings)

        self.on_track: List[Callable[[Optional[TrackInfo]], None]] = []

        self.tokens.changed.connect(self._on_token_changed)
        self.connector.state_changed.connect(self._on_session_state)
        self.poller.track_changed.connect(self._on_track_changed)
        self.poller.errors.connect(self._on_poll_error)

    # ---- wiring ----

    def _on_token_changed(self, tokens: Optional[TokenSet]) -> None:
        if tokens is None or not tokens.access_token:
            return
        if self.connector.is_connected:
            return
        if not self.lifecycle.token_connect_permitted():
            logger.info("Access token changed; leaving reconnect to the lifecycle coordinator")
            return
        logger.info("Access token changed; opening playback session")
        self.connector.connect(tokens.access_token)

    def _on_session_state(self, state: SessionState) -> None:
        if state.is_connected:
            self.session.mark_connected(self.connector.last_connected_at)
        elif state.phase is SessionPhase.DISCONNECTED and self.connector.last_disconnect_unexpected:
            if self.session.within_reconnect_window():
                self.session.mark_disconnected()
            else:
                self.session.mark_playback_logged_out()
        elif self.session.connected:
            self.session.mark_disconnected()

        if state.phase is SessionPhase.ERROR:
            self.session.notify(TerminalError(state.message or "Connection failed"))

    def _on_track_changed(self, track: Optional[TrackInfo]) -> None:
        for listener in list(self.on_track):
            listener(track)

    def _on_poll_error(self, error: DeskyError) -> None:
        if not error.retryable:
            self.session.notify(error)

    @property
    def notifications(self):
        return self.session.notifications

    @property
    def track(self) -> Optional[TrackInfo]:
        return self.poller.track

    @property
    def state(self) -> SessionState:
        return self.connector.state

    # ---- user operations ----

    def login(self) -> Optional[str]:
        """Open the consent page; returns its URL or None on failure"""
        try:
            return self.oauth.begin_authorization()
        except DeskyError as exc:
            self.session.notify(exc)
            return None

    async def handle_callback(self, url: str) -> bool:
        """Process a redirect URL; True once the session is authenticated"""
        try:
            handled = await self.oauth.handle_redirect(url)
        except DeskyError as exc:
            self.session.notify(exc)
            return False
        return handled and self.session.authenticated

    async def refresh_token(self) -> bool:
        try:
            return await self.oauth.refresh_if_needed()
        except DeskyError as exc:
            self.session.notify(exc)
            return False

    def connect(self) -> bool:
        """Explicit connect with the stored token"""
        token = self.tokens.access_token
        if not token:
            self.session.notify(TerminalError("Not logged in to Spotify"))
            return False
        return self.connector.connect(token)

    async def foreground(self) -> bool:
        return await self.lifecycle.on_foreground()

    def background(self) -> None:
        self.lifecycle.on_background()

    async def refresh_now_playing(self) -> Optional[TrackInfo]:
        return await self.poller.refresh()

    def logout(self) -> None:
        self.lifecycle.reconnect_timer.cancel()
        self.connector.disconnect()
        self.session.logout()
