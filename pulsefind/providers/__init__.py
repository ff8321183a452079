"""
External collaborators: audio recognition, platform search and catalog lookup.
"""

from pulsefind.providers.acrcloud import ACRCloudProvider, create_acrcloud_provider
from pulsefind.providers.base import (
    CatalogLookupProvider,
    HTTPProvider,
    PlatformSearchProvider,
    RecognitionProvider,
)
from pulsefind.providers.itunes import ITunesCatalogProvider, create_itunes_provider
from pulsefind.providers.spotify import SpotifySearchProvider, create_spotify_provider
from pulsefind.providers.youtube import YouTubeSearchProvider, create_youtube_provider

__all__ = [
    "RecognitionProvider",
    "PlatformSearchProvider",
    "CatalogLookupProvider",
    "HTTPProvider",
    "ACRCloudProvider",
    "SpotifySearchProvider",
    "YouTubeSearchProvider",
    "ITunesCatalogProvider",
    "create_acrcloud_provider",
    "create_spotify_provider",
    "create_youtube_provider",
    "create_itunes_provider",
]
