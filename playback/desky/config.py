"""
Configuration models for the Desky session core
"""

from pydantic import BaseModel, Field
from typing import Optional
from urllib.parse import urlparse
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Use DESKY_DATA_DIR for all persisted files
DATA_DIR = os.getenv("DESKY_DATA_DIR", os.path.join(os.path.expanduser("~"), ".desky"))

DEFAULT_SCOPE = "user-read-playback-state user-read-currently-playing user-modify-playback-state"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class SpotifyAuth(BaseModel):
    """Spotify OAuth client configuration"""
    client_id: str = Field(default="", description="Spotify app client ID")
    client_secret: str = Field(default="", description="Spotify app client secret")
    redirect_uri: str = Field(default="desky://callback", description="Registered custom-scheme redirect URI")
    scope: str = Field(default=DEFAULT_SCOPE, description="Space separated OAuth scopes")
    show_dialog: bool = Field(default=True, description="Force the consent dialog on every login")

    @property
    def redirect_scheme(self) -> Optional[str]:
        """Scheme callbacks must arrive on (e.g. 'desky')"""
        scheme = urlparse(self.redirect_uri).scheme
        return scheme.lower() if scheme else None

    @classmethod
    def from_env(cls) -> "SpotifyAuth":
        """Create SpotifyAuth from environment variables"""
        return cls(
            client_id=os.getenv("SPOTIFY_CLIENT_ID", ""),
            client_secret=os.getenv("SPOTIFY_CLIENT_SECRET", ""),
            redirect_uri=os.getenv("SPOTIFY_REDIRECT_URI", "desky://callback"),
            scope=os.getenv("SPOTIFY_SCOPE", DEFAULT_SCOPE),
        )


class Timings(BaseModel):
    """Timer and retry configuration for the session lifecycle"""
    max_connection_retries: int = Field(default=3, ge=1, le=10, description="Connection attempts before giving up")
    retry_base_delay_s: float = Field(default=2.0, ge=0.0, le=60.0, description="Delay before the first retry")
    retry_backoff_factor: float = Field(default=2.0, ge=1.0, le=10.0, description="Multiplier applied per retry")
    retry_max_delay_s: float = Field(default=10.0, ge=0.0, le=300.0, description="Upper bound for a retry delay")
    reconnect_debounce_s: float = Field(default=0.5, ge=0.0, le=30.0, description="Delay before reconnecting on foreground")
    poll_interval_s: float = Field(default=5.0, ge=0.0, le=300.0, description="Now-playing poll period")
    refresh_skew_s: float = Field(default=300.0, ge=0.0, le=3600.0, description="Refresh tokens this close to expiry")
    reconnect_window_s: float = Field(default=86400.0, ge=0.0, description="Auto-reconnect allowed this long after last connection")
    request_timeout_s: float = Field(default=20.0, ge=0.1, le=120.0, description="HTTP request timeout")

    def retry_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt"""
        delay = self.retry_base_delay_s * (self.retry_backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.retry_max_delay_s)


class Settings(BaseModel):
    """User facing preferences"""
    auto_connect: bool = Field(default=True, description="Reconnect the playback session on foreground")
    use_24_hour_format: bool = Field(default=True, description="Clock uses 24 hour format")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            auto_connect=_env_flag("DESKY_AUTO_CONNECT", True),
            use_24_hour_format=_env_flag("DESKY_24_HOUR", True),
        )


class DeskyConfig(BaseModel):
    """Main configuration for the Desky client"""
    spotify: SpotifyAuth = Field(default_factory=SpotifyAuth.from_env, description="Spotify authentication")
    timings: Timings = Field(default_factory=Timings, description="Timing configuration")
    settings: Settings = Field(default_factory=Settings.from_env, description="User preferences")
    data_dir: str = Field(default_factory=lambda: DATA_DIR, description="Directory for token and state files")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format (json|text)")

    @property
    def token_file(self) -> str:
        return os.path.join(self.data_dir, "token.json")

    @property
    def state_file(self) -> str:
        return os.path.join(self.data_dir, "state.json")

    @classmethod
    def from_env(cls) -> "DeskyConfig":
        """Create configuration from environment variables (and a .env file if present)"""
        load_dotenv()
        config = cls(
            spotify=SpotifyAuth.from_env(),
            settings=Settings.from_env(),
            data_dir=os.getenv("DESKY_DATA_DIR", DATA_DIR),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )
        if not config.spotify.client_id:
            logger.warning("SPOTIFY_CLIENT_ID is not set; login will fail")
        return config
