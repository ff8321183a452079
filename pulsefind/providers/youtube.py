"""
YouTube Data API v3 search client.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

import requests

from pulsefind.core.models import PlatformResult, SourceKind
from pulsefind.providers.base import HTTPProvider, resolve_credential
from pulsefind.utils.errors import CredentialsMissingError

SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
MUSIC_CATEGORY_ID = "10"
MIN_CONFIDENCE = 50

_TITLE_SUFFIXES = [
    re.compile(r"\s*\(official\s*(audio|video|music\s*video|lyric\s*video)\)", re.IGNORECASE),
    re.compile(r"\s*\[official\s*(audio|video|music\s*video|lyric\s*video)\]", re.IGNORECASE),
    re.compile(r"\s*-\s*(official\s*)?(audio|video|music\s*video|lyric\s*video)", re.IGNORECASE),
]

logger = logging.getLogger("providers.youtube")


def clean_title(title: str) -> str:
    """Strip 'official audio/video' style suffixes from a video title."""
    for pattern in _TITLE_SUFFIXES:
        title = pattern.sub("", title)
    return title.strip()


def title_match_confidence(query: str, title: str) -> int:
    """Percentage of query words (longer than 2 chars) found in the title."""
    query_lower = query.lower()
    title_lower = title.lower()
    if query_lower in title_lower:
        return 100

    query_words = [w for w in query_lower.split() if len(w) > 2]
    if not query_words:
        return 0
    title_words = title_lower.split()

    matched = [
        qw for qw in query_words
        if any(tw in qw or qw in tw for tw in title_words)
    ]
    return round(len(matched) / len(query_words) * 100)


class YouTubeSearchProvider(HTTPProvider):
    """Searches music-category videos for a title and artist."""

    name = "youtube"
    platform = SourceKind.YOUTUBE

    def __init__(
        self,
        api_key: str,
        max_results: int = 10,
        timeout: float = 10.0,
        min_confidence: int = MIN_CONFIDENCE,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise CredentialsMissingError("YouTube", "YOUTUBE_API_KEY")
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key
        self.max_results = max_results
        self.min_confidence = min_confidence

    def search(self, title: str, artist: str) -> List[PlatformResult]:
        """
        Search videos for '<artist> <title> official audio'.

        Raises:
            ProviderError: Request failed
        """
        query = f"{artist} {title}" if artist else title
        data = self._request(
            "GET",
            SEARCH_URL,
            params={
                "part": "snippet",
                "q": f"{query} official audio",
                "type": "video",
                "videoCategoryId": MUSIC_CATEGORY_ID,
                "maxResults": self.max_results,
                "key": self.api_key,
            },
        )

        items = data.get("items") or []
        results = []
        for item in items:
            result = _item_to_result(item, query)
            if result is not None and result.confidence >= self.min_confidence:
                results.append(result)

        self.logger.info(
            f"YouTube found {len(results)}/{len(items)} matches for: {query}",
            extra={"platform": self.name},
        )
        return results


def _item_to_result(item: Dict[str, Any], query: str) -> Optional[PlatformResult]:
    video_id = (item.get("id") or {}).get("videoId")
    snippet = item.get("snippet") or {}
    raw_title = snippet.get("title")
    if not video_id or not raw_title:
        return None

    thumbnails = snippet.get("thumbnails") or {}
    artwork = (thumbnails.get("high") or thumbnails.get("default") or {}).get("url")

    return PlatformResult(
        platform=SourceKind.YOUTUBE,
        title=clean_title(raw_title),
        artist=snippet.get("channelTitle", ""),
        platform_id=video_id,
        confidence=title_match_confidence(query, raw_title),
        artwork_url=artwork,
    )


def create_youtube_provider(
    config: Optional[Dict[str, Any]] = None,
) -> Optional[YouTubeSearchProvider]:
    """Factory for ``providers.youtube``; None when disabled or unconfigured."""
    if config is None:
        config = {}

    if not config.get("enabled", True):
        return None

    api_key = resolve_credential(config.get("api_key")) or os.environ.get("YOUTUBE_API_KEY")
    if not api_key:
        logger.warning("YouTube API key not configured; YouTube search disabled")
        return None

    return YouTubeSearchProvider(
        api_key=api_key,
        max_results=config.get("max_results", 10),
        timeout=config.get("timeout", 10.0),
        min_confidence=config.get("min_confidence", MIN_CONFIDENCE),
    )
