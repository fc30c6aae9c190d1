"""
Application-session context shared by the auth, session and lifecycle components
"""

import json
import logging
import time
from pathlib import Path
from typing import Optional

from .config import Settings
from .errors import DeskyError
from .events import Signal
from .models import Notification
from .token_store import TokenStore

logger = logging.getLogger(__name__)


class AppSession:
    """Login and connection flags for the running app.

    This object is the single owner of the persisted flags (state.json);
    components receive it explicitly instead of reading globals.
    """

    def __init__(self, state_path: str, tokens: TokenStore, settings: Optional[Settings] = None,
                 reconnect_window_s: float = 86400.0):
        self.state_path = Path(state_path)
        self.tokens = tokens
        self.settings = settings or Settings()
        self.reconnect_window_s = reconnect_window_s
        self.notifications: Signal[Notification] = Signal("notification")

        self.authenticated = False
        self.connected = False
        self.last_connected_at: Optional[float] = None
        self.playback_logged_out = False
        self._load()

        if self.authenticated and not self.tokens.access_token:
            logger.warning("Stored state says authenticated but no token is stored; resetting")
            self.authenticated = False
            self._save()
        if self.authenticated:
            logger.info("Restored previous authentication state")

    def _load(self) -> None:
        try:
            if not self.state_path.exists():
                return
            data = json.loads(self.state_path.read_text())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load session state from {self.state_path}: {e}")
            return
        self.authenticated = bool(data.get("authenticated", False))
        # A connection never survives a restart
        self.connected = False
        self.last_connected_at = data.get("last_connected_at")
        self.playback_logged_out = bool(data.get("playback_logged_out", False))

    def _save(self) -> None:
        data = {
            "authenticated": self.authenticated,
            "connected": self.connected,
            "last_connected_at": self.last_connected_at,
            "playback_logged_out": self.playback_logged_out,
        }
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            self.state_path.write_text(json.dumps(data, indent=2))
        except OSError as exc:
            logger.warning(f"Failed to persist session state to {self.state_path}: {exc}")

    def set_authenticated(self, value: bool) -> None:
        if self.authenticated != value:
            logger.info(f"Authentication status updated to {value}")
        self.authenticated = value
        if value:
            self.playback_logged_out = False
        self._save()

    def mark_connected(self, now: Optional[float] = None) -> None:
        self.connected = True
        self.last_connected_at = time.time() if now is None else now
        self.playback_logged_out = False
        self._save()

    def mark_disconnected(self) -> None:
        self.connected = False
        self._save()

    def mark_playback_logged_out(self) -> None:
        """Unexpected disconnect too long after the last connection"""
        logger.info("Playback session treated as logged out")
        self.connected = False
        self.last_connected_at = None
        self.playback_logged_out = True
        self._save()

    def within_reconnect_window(self, now: Optional[float] = None) -> bool:
        if self.playback_logged_out or self.last_connected_at is None:
            return False
        now = time.time() if now is None else now
        return now - self.last_connected_at < self.reconnect_window_s

    def notify(self, error: DeskyError) -> Notification:
        """Surface an error to whoever displays alerts"""
        notification = Notification.from_error(error)
        logger.warning(f"{notification.title}: {notification.message}",
                       extra={"error_kind": error.kind.value})
        self.notifications.emit(notification)
        return notification

    def logout(self) -> None:
        """Clear tokens and every persisted flag"""
        logger.info("Logging out from Spotify")
        self.authenticated = False
        self.connected = False
        self.last_connected_at = None
        self.playback_logged_out = False
        self._save()
        self.tokens.clear()
