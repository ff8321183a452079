"""
iTunes Search API lookup used to resolve Apple Music track IDs.
"""

import re
from typing import Any, Dict, Optional

import requests

from pulsefind.core.models import SourceKind
from pulsefind.providers.base import HTTPProvider

SEARCH_URL = "https://itunes.apple.com/search"
SEARCH_LIMIT = 10

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def _squash(value: str) -> str:
    return _NON_ALNUM.sub("", (value or "").lower())


def _contains_either(a: str, b: str) -> bool:
    return a in b or b in a


class ITunesCatalogProvider(HTTPProvider):
    """Resolves an Apple Music track ID for a title and artist. No credentials."""

    name = "itunes"
    platform = SourceKind.APPLE_MUSIC

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        super().__init__(timeout=timeout, session=session)

    def lookup(self, title: str, artist: str) -> Optional[str]:
        """
        First search result whose title and artist match, by containment.

        Raises:
            ProviderError: Request failed
        """
        data = self._request(
            "GET",
            SEARCH_URL,
            params={
                "term": f"{title} {artist}",
                "media": "music",
                "entity": "song",
                "limit": SEARCH_LIMIT,
            },
        )

        wanted_title = _squash(title)
        wanted_artist = _squash(artist)
        for result in data.get("results") or []:
            track_id = result.get("trackId")
            if track_id is None:
                continue
            if (
                _contains_either(_squash(result.get("trackName", "")), wanted_title)
                and _contains_either(_squash(result.get("artistName", "")), wanted_artist)
            ):
                self.logger.debug(f"Apple Music ID for {title} - {artist}: {track_id}")
                return str(track_id)

        return None


def create_itunes_provider(
    config: Optional[Dict[str, Any]] = None,
) -> Optional[ITunesCatalogProvider]:
    """Factory for ``providers.itunes``; None when disabled."""
    if config is None:
        config = {}

    if not config.get("enabled", True):
        return None

    return ITunesCatalogProvider(timeout=config.get("timeout", 10.0))
