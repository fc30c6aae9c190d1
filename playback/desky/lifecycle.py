"""
Foreground/background handling for the playback session
"""

from typing import Optional

from .config import Timings
from .connector import SessionConnector
from .context import AppSession
from .errors import DeskyError
from .logging_utils import get_logger
from .models import SessionPhase
from .oauth import OAuthFlowHandler
from .timers import TimerSlot

logger = get_logger(__name__)

_ACTIVE_PHASES = (SessionPhase.CONNECTING, SessionPhase.CONNECTED)


class LifecycleCoordinator:
    """Tears the session down on background and brings it back on foreground"""

    def __init__(self, session: AppSession, oauth: OAuthFlowHandler, connector: SessionConnector,
                 timings: Optional[Timings] = None):
        self.session = session
        self.oauth = oauth
        self.connector = connector
        self.timings = timings or Timings()
        self._reconnect_timer = TimerSlot("reconnect_debounce")
        self.in_foreground = False
        self.backgrounded = False
        self._refreshes = 0

    @property
    def refreshing(self) -> bool:
        return self._refreshes > 0

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer.pending

    @property
    def reconnect_timer(self) -> TimerSlot:
        return self._reconnect_timer

    def token_connect_permitted(self) -> bool:
        """Whether a changed access token may open a session right away.

        Not while backgrounded, and not while a foreground refresh is running:
        the debounced reconnect picks up the new token once its gates pass.
        """
        return not self.backgrounded and not self.refreshing

    def should_reconnect(self) -> bool:
        if not self.session.authenticated or not self.session.tokens.access_token:
            return False
        if self.connector.state.phase in _ACTIVE_PHASES:
            return False
        if not self.session.settings.auto_connect:
            logger.info("Auto-connect disabled; not reconnecting")
            return False
        if not self.session.within_reconnect_window():
            logger.info("Last connection is outside the reconnect window; not reconnecting")
            return False
        return True

    async def on_foreground(self) -> bool:
        """Returns True if a reconnect attempt was scheduled"""
        logger.info("App entered foreground")
        self.in_foreground = True
        self.backgrounded = False
        self._reconnect_timer.cancel()

        self._refreshes += 1
        try:
            await self.oauth.refresh_if_needed()
        except DeskyError as exc:
            self.session.notify(exc)
        finally:
            self._refreshes -= 1

        if not self.in_foreground:
            # Backgrounded again while the refresh was in flight
            return False
        if not self.should_reconnect():
            return False

        delay = self.timings.reconnect_debounce_s
        logger.info(f"Scheduling reconnect in {delay:.1f}s")
        self._reconnect_timer.start(delay, self._reconnect)
        return True

    def on_background(self) -> None:
        logger.info("App entered background")
        self.in_foreground = False
        self.backgrounded = True
        self._reconnect_timer.cancel()
        self.connector.disconnect()

    def _reconnect(self) -> None:
        if not self.in_foreground or self.connector.state.phase in _ACTIVE_PHASES:
            return
        self.connector.connect(self.session.tokens.access_token)
