"""
Spotify authorization-code flow: login URL, redirect callback, token exchange and refresh
"""

import asyncio
import functools
import threading
import time
import webbrowser
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from .config import SpotifyAuth
from .context import AppSession
from .errors import (
    AuthorizationCancelled, AuthorizationError, DecodeError, DeskyError,
    TerminalError, TransientError,
)
from .logging_utils import get_logger, log_token_event
from .models import TokenSet

logger = get_logger(__name__)

SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

_SESSION: Optional[requests.Session] = None
_SESSION_LOCK = threading.Lock()


def _http_session() -> requests.Session:
    global _SESSION
    if _SESSION is None:
        with _SESSION_LOCK:
            if _SESSION is None:
                # No transport retries: one exchange attempt per authorization code
                session = requests.Session()
                session.headers.update({"User-Agent": "Desky/1.0"})
                _SESSION = session
    return _SESSION


class OAuthFlowHandler:
    """Drives login and keeps the TokenSet fresh.

    Network calls run in the loop's default executor; their results are
    applied to the TokenStore and AppSession back on the event loop.
    """

    def __init__(self, auth: SpotifyAuth, session: AppSession, *,
                 refresh_skew_s: float = 300.0,
                 timeout_s: float = 20.0,
                 opener: Callable[[str], bool] = webbrowser.open,
                 http: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.time):
        self.auth = auth
        self.session = session
        self.refresh_skew_s = refresh_skew_s
        self.timeout_s = timeout_s
        self._opener = opener
        self._http = http
        self._clock = clock

    @property
    def http(self) -> requests.Session:
        return self._http or _http_session()

    # ---- authorization ----

    def authorization_url(self) -> str:
        """Build the consent URL; raises AuthorizationError for a malformed redirect URI"""
        redirect = urlparse(self.auth.redirect_uri)
        if not redirect.scheme or not (redirect.netloc or redirect.path) or " " in self.auth.redirect_uri:
            raise AuthorizationError("Failed to create authentication URL")
        if not self.auth.client_id:
            raise AuthorizationError("Spotify client id is not configured")

        params = {
            "client_id": self.auth.client_id,
            "response_type": "code",
            "redirect_uri": self.auth.redirect_uri,
            "scope": self.auth.scope,
        }
        if self.auth.show_dialog:
            params["show_dialog"] = "true"
        return f"{SPOTIFY_AUTH_URL}?{urlencode(params)}"

    def begin_authorization(self) -> str:
        """Open the consent page in the system browser and return its URL"""
        url = self.authorization_url()
        logger.info("Starting Spotify authentication")
        try:
            opened = self._opener(url)
        except webbrowser.Error as exc:
            logger.error(f"Browser open failed: {exc}")
            opened = False
        if not opened:
            raise AuthorizationError("Failed to open Spotify authentication")
        return url

    def parse_redirect(self, url: str) -> Optional[str]:
        """Extract the authorization code from a callback URL.

        Returns None (and logs) when the URL is not on the registered scheme.
        """
        parsed = urlparse(url)
        expected = self.auth.redirect_scheme
        if (parsed.scheme or "").lower() != expected:
            logger.warning(f"URL scheme mismatch. Expected '{expected}', got '{parsed.scheme or None}'")
            return None

        params = parse_qs(parsed.query)
        if "error" in params:
            error = params["error"][0]
            description = params.get("error_description", [error])[0]
            if error == "access_denied":
                raise AuthorizationCancelled("Spotify login was cancelled", error=error)
            raise AuthorizationError(f"Spotify login failed: {description}", error=error)

        code = params.get("code", [""])[0]
        if not code:
            logger.warning(f"No authorization code found in URL parameters: {sorted(params)}")
            raise AuthorizationError("No authorization code found in callback")
        logger.info("Successfully extracted authorization code")
        return code

    async def handle_redirect(self, url: str) -> bool:
        """Parse the callback and exchange its code; False if the URL was ignored"""
        code = self.parse_redirect(url)
        if code is None:
            return False
        await self.exchange_code(code)
        return True

    # ---- token endpoint ----

    def _post_token(self, data: Dict[str, str]) -> Dict[str, Any]:
        """Blocking POST to the token endpoint; returns the decoded JSON body"""
        body = {
            **data,
            "redirect_uri": self.auth.redirect_uri,
            "client_id": self.auth.client_id,
            "client_secret": self.auth.client_secret,
        }
        try:
            response = self.http.post(SPOTIFY_TOKEN_URL, data=body, timeout=self.timeout_s)
        except requests.RequestException as exc:
            logger.error(f"Network error during token request: {exc}")
            raise TransientError("Network error, please check your connection") from exc

        logger.debug(f"Token endpoint HTTP status: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error(f"Token response is not JSON (HTTP {response.status_code})")
            if response.status_code >= 500:
                raise TransientError("Spotify accounts service is unavailable") from exc
            raise DecodeError("Could not decode token response") from exc

        if not isinstance(payload, dict):
            raise DecodeError("Could not decode token response")
        if "error" in payload:
            error = payload["error"]
            if isinstance(error, dict):
                # Web API style error object
                error = error.get("message") or "unknown_error"
            description = payload.get("error_description") or str(error)
            logger.error(f"Token error: {error} ({description})")
            raise TerminalError(description, error=str(error))
        if not payload.get("access_token"):
            raise DecodeError("Token response has no access token")
        return payload

    async def _request_token(self, data: Dict[str, str]) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._post_token, data))

    async def exchange_code(self, code: str) -> TokenSet:
        """Single authorization_code exchange; stores tokens and marks the session authenticated"""
        log_token_event(logger, "exchange_start")
        payload = await self._request_token({"grant_type": "authorization_code", "code": code})
        try:
            tokens = TokenSet.from_token_response(payload, now=self._clock())
        except ValueError as exc:
            raise DecodeError("Could not decode token response") from exc

        self.session.tokens.set(tokens)
        self.session.set_authenticated(True)
        log_token_event(logger, "exchange_success", **tokens.redacted())
        return tokens

    def needs_refresh(self, now: Optional[float] = None) -> bool:
        tokens = self.session.tokens.tokens
        if tokens is None:
            return False
        return tokens.expires_within(self.refresh_skew_s, self._clock() if now is None else now)

    async def refresh_if_needed(self) -> bool:
        """Refresh when inside the skew window; True if a new token was stored.

        On failure the error is raised and the stored token is left intact.
        """
        if not self.needs_refresh():
            return False

        current = self.session.tokens.tokens
        if not current.refresh_token:
            raise TerminalError("Spotify session expired, please log in again")

        log_token_event(logger, "refresh_start", expires_at=current.expires_at)
        try:
            payload = await self._request_token({
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token,
            })
            refreshed = TokenSet.from_token_response(payload, now=self._clock(), previous=current)
        except DeskyError:
            logger.error("Token refresh failed; keeping existing token")
            raise
        except ValueError as exc:
            logger.error("Token refresh returned an unusable payload; keeping existing token")
            raise DecodeError("Could not decode token response") from exc

        self.session.tokens.update_access_token(
            refreshed.access_token,
            expires_at=refreshed.expires_at,
            refresh_token=refreshed.refresh_token,
        )
        log_token_event(logger, "refresh_success", expires_at=refreshed.expires_at)
        return True
