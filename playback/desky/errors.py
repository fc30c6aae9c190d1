"""
Error taxonomy for auth, session and playback failures

Every network or parse failure is converted into one of these before it
reaches application state.
"""

import json
from enum import Enum
from typing import Optional

import requests
from spotipy import SpotifyException


class ErrorKind(Enum):
    """How an error is surfaced and whether it may be retried"""
    USER_CANCELABLE = "USER_CANCELABLE"
    TRANSIENT = "TRANSIENT"
    TERMINAL = "TERMINAL"
    DECODE = "DECODE"


class DeskyError(Exception):
    """Base error carrying a kind and a user-facing message"""

    kind = ErrorKind.TERMINAL
    title = "Error"

    def __init__(self, message: str, *, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error = error

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class AuthorizationError(DeskyError):
    """Login could not be started or the callback was unusable"""
    kind = ErrorKind.USER_CANCELABLE
    title = "Authentication Error"


class AuthorizationCancelled(AuthorizationError):
    """User dismissed or declined the consent dialog"""


class TransientError(DeskyError):
    """Network or timeout failure"""
    kind = ErrorKind.TRANSIENT
    title = "Connection Problem"


class TerminalError(DeskyError):
    """Requires explicit re-authentication (invalid grant, retries exhausted)"""
    kind = ErrorKind.TERMINAL
    title = "Spotify Session Ended"


class DecodeError(DeskyError):
    """Malformed server response"""
    kind = ErrorKind.DECODE
    title = "Unexpected Response"


def as_desky_error(exc: BaseException) -> DeskyError:
    """Convert a foreign exception raised at a boundary into the taxonomy"""
    if isinstance(exc, DeskyError):
        return exc
    if isinstance(exc, SpotifyException):
        if exc.http_status in (401, 403):
            return TerminalError(f"Spotify rejected the session ({exc.http_status})", error=str(exc.code))
        if exc.http_status == 429 or (exc.http_status or 0) >= 500:
            return TransientError(f"Spotify is unavailable ({exc.http_status})")
        return DecodeError(f"Spotify request failed ({exc.http_status}): {exc.msg}")
    if isinstance(exc, json.JSONDecodeError):
        return DecodeError("Could not decode server response")
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return TransientError("Network error, please check your connection")
    if isinstance(exc, requests.exceptions.RequestException):
        return TransientError(f"Request failed: {exc}")
    if isinstance(exc, (TimeoutError, ConnectionError, OSError)):
        return TransientError(f"Network error: {exc}")
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return DecodeError(f"Unexpected response: {exc}")
    return TransientError(f"Unexpected error: {exc}")
