"""
Artwork URL derivation for now-playing images
"""

import re
import logging
from typing import Optional

logger = logging.getLogger(__name__)

CDN_IMAGE_BASE = "https://i.scdn.co/image/"
PLACEHOLDER_ARTWORK = "placeholder://artwork"

_KNOWN_PREFIXES = (
    "spotify:image:",
    "https://i.scdn.co/image/",
    "http://i.scdn.co/image/",
    "i.scdn.co/image/",
)
_IMAGE_ID = re.compile(r"^[A-Za-z0-9]+$")


def artwork_url(image_id: Optional[str]) -> Optional[str]:
    """Canonical CDN URL for an opaque image identifier, or None if it can't be built"""
    if not image_id:
        return None

    identifier = image_id.strip()
    for prefix in _KNOWN_PREFIXES:
        if identifier.lower().startswith(prefix):
            identifier = identifier[len(prefix):]
            break
    identifier = identifier.split("?", 1)[0].rstrip("/")

    if not _IMAGE_ID.match(identifier):
        logger.debug(f"Cannot derive artwork URL from image id {image_id!r}")
        return None
    return CDN_IMAGE_BASE + identifier


def artwork_or_placeholder(url: Optional[str]) -> str:
    return url or PLACEHOLDER_ARTWORK
