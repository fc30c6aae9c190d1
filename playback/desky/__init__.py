"""
Desky Session Module

Spotify login, playback session lifecycle and now-playing updates for the
Desky desk dashboard.
"""

__version__ = "1.0.0"
__author__ = "Desky"

from .app import DeskyApplication
from .config import DeskyConfig
from .connector import SessionConnector
from .errors import DeskyError, ErrorKind
from .models import SessionPhase, SessionState, TokenSet, TrackInfo

__all__ = [
    "DeskyApplication",
    "DeskyConfig",
    "DeskyError",
    "ErrorKind",
    "SessionConnector",
    "SessionPhase",
    "SessionState",
    "TokenSet",
    "TrackInfo",
]
