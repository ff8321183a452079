"""
Spotify Web API search client (client-credentials flow).
"""

import base64
import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from pulsefind.core.models import PlatformResult, SourceKind
from pulsefind.providers.base import HTTPProvider, resolve_credential
from pulsefind.utils.errors import CredentialsMissingError, ProviderError

TOKEN_URL = "https://accounts.spotify.com/api/token"
API_BASE = "https://api.spotify.com/v1"
TOKEN_REFRESH_MARGIN = 60  # seconds
SEARCH_LIMIT = 10
MIN_CONFIDENCE = 50

logger = logging.getLogger("providers.spotify")


class SpotifySearchProvider(HTTPProvider):
    """
    Searches Spotify tracks by title and artist.

    The access token is cached and refreshed a minute before it expires;
    token refresh is serialized so concurrent searches share one token.
    """

    name = "spotify"
    platform = SourceKind.SPOTIFY

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        min_confidence: int = MIN_CONFIDENCE,
        session: Optional[requests.Session] = None,
    ):
        if not client_id or not client_secret:
            raise CredentialsMissingError("Spotify", "SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET")
        super().__init__(timeout=timeout, session=session)
        self.client_id = client_id
        self.client_secret = client_secret
        self.min_confidence = min_confidence
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            credentials = base64.b64encode(
                f"{self.client_id}:{self.client_secret}".encode("utf-8")
            ).decode("ascii")
            data = self._request(
                "POST",
                TOKEN_URL,
                headers={"Authorization": f"Basic {credentials}"},
                data={"grant_type": "client_credentials"},
            )

            token = data.get("access_token")
            if not token:
                raise ProviderError("Spotify token response had no access_token", provider=self.name)

            self._token = token
            self._token_expires_at = (
                time.time() + float(data.get("expires_in", 3600)) - TOKEN_REFRESH_MARGIN
            )
            return token

    def search(self, title: str, artist: str) -> List[PlatformResult]:
        """
        Search tracks matching title and artist.

        Confidence blends result position and popularity; results below
        min_confidence are dropped.

        Raises:
            ProviderError: Token or search request failed
        """
        query = f"track:{title} artist:{artist}" if artist else f"track:{title}"
        token = self._access_token()

        data = self._request(
            "GET",
            f"{API_BASE}/search",
            params={"q": query, "type": "track", "limit": SEARCH_LIMIT},
            headers={"Authorization": f"Bearer {token}"},
        )

        items = (data.get("tracks") or {}).get("items") or []
        results = []
        for position, track in enumerate(items):
            result = _track_to_result(track, position)
            if result is not None and result.confidence >= self.min_confidence:
                results.append(result)

        self.logger.info(
            f"Spotify found {len(results)}/{len(items)} matches for: {query}",
            extra={"platform": self.name},
        )
        return results


def _track_to_result(track: Dict[str, Any], position: int) -> Optional[PlatformResult]:
    track_id = track.get("id")
    name = track.get("name")
    if not track_id or not name:
        return None

    popularity = track.get("popularity") or 0
    position_score = 100 - position * 5
    confidence = min(100, round((position_score + popularity) / 2))

    album = track.get("album") or {}
    images = album.get("images") or []

    return PlatformResult(
        platform=SourceKind.SPOTIFY,
        title=name,
        artist=", ".join(a.get("name", "") for a in track.get("artists") or []),
        platform_id=track_id,
        confidence=confidence,
        album=album.get("name"),
        isrc=(track.get("external_ids") or {}).get("isrc"),
        popularity=popularity,
        artwork_url=images[0].get("url") if images else None,
        preview_url=track.get("preview_url"),
    )


def create_spotify_provider(
    config: Optional[Dict[str, Any]] = None,
) -> Optional[SpotifySearchProvider]:
    """Factory for ``providers.spotify``; None when disabled or unconfigured."""
    if config is None:
        config = {}

    if not config.get("enabled", True):
        return None

    client_id = resolve_credential(config.get("client_id")) or os.environ.get("SPOTIFY_CLIENT_ID")
    client_secret = resolve_credential(config.get("client_secret")) or os.environ.get("SPOTIFY_CLIENT_SECRET")

    if not client_id or not client_secret:
        logger.warning("Spotify credentials not configured; Spotify search disabled")
        return None

    return SpotifySearchProvider(
        client_id=client_id,
        client_secret=client_secret,
        timeout=config.get("timeout", 10.0),
        min_confidence=config.get("min_confidence", MIN_CONFIDENCE),
    )
