"""
Data models and enums for the Desky session core
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any
import time

from pydantic import BaseModel, Field

from .artwork import artwork_url
from .errors import DeskyError, ErrorKind


class SessionPhase(Enum):
    """Playback session connection phase"""
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RETRYING = "RETRYING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class SessionState:
    """Current connector state; ``message`` is only set for ERROR"""
    phase: SessionPhase = SessionPhase.DISCONNECTED
    message: Optional[str] = None

    @classmethod
    def disconnected(cls) -> "SessionState":
        return cls(SessionPhase.DISCONNECTED)

    @classmethod
    def connecting(cls) -> "SessionState":
        return cls(SessionPhase.CONNECTING)

    @classmethod
    def connected(cls) -> "SessionState":
        return cls(SessionPhase.CONNECTED)

    @classmethod
    def retrying(cls) -> "SessionState":
        return cls(SessionPhase.RETRYING)

    @classmethod
    def error(cls, message: str) -> "SessionState":
        return cls(SessionPhase.ERROR, message)

    @property
    def is_connected(self) -> bool:
        return self.phase is SessionPhase.CONNECTED

    def __str__(self) -> str:
        if self.message:
            return f"{self.phase.value}({self.message})"
        return self.phase.value


class TokenSet(BaseModel):
    """OAuth credential bundle"""
    access_token: str = Field(..., description="Bearer token for API calls")
    refresh_token: Optional[str] = Field(default=None, description="Long lived refresh token")
    expires_at: Optional[float] = Field(default=None, description="Expiry as epoch seconds")

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        """True if the token expires within ``seconds`` from now"""
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return self.expires_at - now <= seconds

    @classmethod
    def from_token_response(cls, payload: Dict[str, Any], now: Optional[float] = None,
                            previous: Optional["TokenSet"] = None) -> "TokenSet":
        """Build a TokenSet from a token endpoint JSON body.

        Refresh responses may omit ``refresh_token`` and ``expires_in``; the
        previous values are kept in that case.
        """
        now = time.time() if now is None else now
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token response has no access_token")

        refresh_token = payload.get("refresh_token") or (previous.refresh_token if previous else None)
        expires_at = previous.expires_at if previous else None
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            expires_at = now + float(expires_in)

        return cls(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)

    def redacted(self) -> Dict[str, Any]:
        """Loggable view; never includes full token material"""
        return {
            "access_token": f"{self.access_token[:6]}..." if self.access_token else None,
            "has_refresh_token": bool(self.refresh_token),
            "expires_at": self.expires_at,
        }


@dataclass
class PlayerState:
    """Raw now-playing state as reported by the playback transport"""
    track_name: str
    artist_name: str
    is_paused: bool
    image_id: Optional[str] = None
    position_ms: int = 0
    duration_ms: int = 0

    @classmethod
    def from_spotify_dict(cls, playback: Dict[str, Any]) -> Optional["PlayerState"]:
        """Create PlayerState from a Web API ``current_playback`` payload"""
        item = playback.get("item") if playback else None
        if not item:
            return None

        artists = item.get("artists") or []
        artist_name = ", ".join(a.get("name", "") for a in artists if a.get("name"))
        if not artist_name and item.get("show"):
            artist_name = item["show"].get("name", "")

        images = (item.get("album") or {}).get("images") or []
        image_id = images[0].get("url") if images else None

        return cls(
            track_name=item.get("name", ""),
            artist_name=artist_name,
            is_paused=not playback.get("is_playing", False),
            image_id=image_id,
            position_ms=playback.get("progress_ms") or 0,
            duration_ms=item.get("duration_ms") or 0,
        )


@dataclass(frozen=True)
class TrackInfo:
    """Display-ready now-playing model, replaced wholesale on each update"""
    title: str
    artist: str
    is_playing: bool
    artwork_url: Optional[str] = None
    position_ms: int = 0
    duration_ms: int = 0

    @classmethod
    def from_player_state(cls, state: PlayerState) -> "TrackInfo":
        return cls(
            title=state.track_name or "Unknown",
            artist=state.artist_name or "Unknown Artist",
            is_playing=not state.is_paused,
            artwork_url=artwork_url(state.image_id),
            position_ms=max(int(state.position_ms or 0), 0),
            duration_ms=max(int(state.duration_ms or 0), 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "artist": self.artist,
            "is_playing": self.is_playing,
            "artwork_url": self.artwork_url,
            "position_ms": self.position_ms,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class Notification:
    """User-visible alert raised from a DeskyError"""
    kind: ErrorKind
    title: str
    message: str
    timestamp: float = field(default_factory=time.time)

    @property
    def dismissible(self) -> bool:
        return self.kind is not ErrorKind.TERMINAL

    @classmethod
    def from_error(cls, error: DeskyError) -> "Notification":
        return cls(kind=error.kind, title=error.title, message=error.message)
