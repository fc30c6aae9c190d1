"""
Persistent storage for the OAuth TokenSet
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .events import Signal
from .models import TokenSet

logger = logging.getLogger(__name__)


class TokenStore:
    """Owns the TokenSet and its token.json file.

    ``changed`` fires with the new TokenSet (or None after clear) whenever the
    access token value changes.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.changed: Signal[Optional[TokenSet]] = Signal("token_changed")
        self._tokens: Optional[TokenSet] = self._load_from_file()

    @property
    def tokens(self) -> Optional[TokenSet]:
        return self._tokens

    @property
    def access_token(self) -> Optional[str]:
        return self._tokens.access_token if self._tokens else None

    def _load_from_file(self) -> Optional[TokenSet]:
        """Load tokens from an existing token.json file"""
        try:
            if self.path.exists():
                tokens = TokenSet.model_validate(json.loads(self.path.read_text()))
                logger.info("Restored stored Spotify tokens")
                return tokens
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load tokens from {self.path}: {e}")
        return None

    def _save_to_file(self) -> None:
        try:
            if self._tokens is None:
                self.path.unlink(missing_ok=True)
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._tokens.model_dump(), indent=2))
        except OSError as exc:
            logger.warning(f"Failed to persist Spotify tokens to {self.path}: {exc}")

    def _replace(self, tokens: Optional[TokenSet]) -> None:
        previous = self.access_token
        self._tokens = tokens
        self._save_to_file()
        if self.access_token != previous:
            self.changed.emit(tokens)

    def set(self, tokens: TokenSet) -> None:
        """Store a freshly exchanged TokenSet"""
        logger.debug("Storing token set", extra={"tokens": tokens.redacted()})
        self._replace(tokens)

    def update_access_token(self, access_token: str, expires_at: Optional[float] = None,
                            refresh_token: Optional[str] = None) -> TokenSet:
        """Replace the access token in place after a refresh"""
        current = self._tokens
        updated = TokenSet(
            access_token=access_token,
            refresh_token=refresh_token or (current.refresh_token if current else None),
            expires_at=expires_at if expires_at is not None else (current.expires_at if current else None),
        )
        self._replace(updated)
        return updated

    def clear(self) -> None:
        """Invalidate all token fields (logout)"""
        self._replace(None)
