from __future__ import annotations

import re
from typing import Optional


_ALBUM_ID_PATTERNS = (
    re.compile(r"album/([a-zA-Z0-9]+)"),
    re.compile(r"spotify:album:([a-zA-Z0-9]+)"),
)
_WEB_URL_PATTERN = re.compile(r"open\.spotify\.com/(album|track|artist|playlist)/([a-zA-Z0-9]+)")

URI_SCHEME = "spotify"
WEB_BASE_URL = "https://open.spotify.com"


def normalize_id(value: Optional[str]) -> str:
    """Strip any ``scheme:type:`` prefix, leaving the bare id.

    Bare ids are returned unchanged, so the function is idempotent.
    """
    if not value:
        return ""
    if ":" in value:
        return value.rsplit(":", 1)[-1]
    return value


def ids_match(a: Optional[str], b: Optional[str]) -> bool:
    left = normalize_id(a)
    return bool(left) and left == normalize_id(b)


def to_uri(kind: str, value: str) -> str:
    return f"{URI_SCHEME}:{kind}:{normalize_id(value)}"


def to_track_uri(value: str) -> str:
    return to_uri("track", value)


def extract_album_id(url: Optional[str]) -> Optional[str]:
    """Pull the album id out of a web URL or a ``spotify:album:`` URI."""
    if not url:
        return None
    for pattern in _ALBUM_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def convert_to_spotify_uri(web_url: str) -> Optional[str]:
    """https://open.spotify.com/album/ABC -> spotify:album:ABC"""
    match = _WEB_URL_PATTERN.search(web_url or "")
    if not match:
        return None
    return f"{URI_SCHEME}:{match.group(1)}:{match.group(2)}"


def external_url_for(kind: str, value: str) -> str:
    return f"{WEB_BASE_URL}/{kind}/{normalize_id(value)}"
