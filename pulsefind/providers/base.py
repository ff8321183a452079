"""
Collaborator contracts and shared HTTP plumbing for external services.

The engine only depends on the three protocols below. Concrete clients
build on HTTPProvider, which turns every transport or HTTP failure into a
ProviderError so callers have a single exception to catch.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import requests

from pulsefind.core.models import PlatformResult, SourceKind
from pulsefind.utils.errors import ProviderError

DEFAULT_TIMEOUT: float = 10.0


class RecognitionProvider(Protocol):
    """Audio recognition service (e.g. ACRCloud)."""

    name: str

    def identify(self, sample_bytes: bytes, label: str) -> Dict[str, Any]:
        """Submit an audio byte range; return the raw response payload."""
        ...


class PlatformSearchProvider(Protocol):
    """Streaming/video platform searched by title and artist."""

    platform: SourceKind

    def search(self, title: str, artist: str) -> List[PlatformResult]:
        ...


class CatalogLookupProvider(Protocol):
    """Catalog resolving a single platform ID by title and artist."""

    platform: SourceKind

    def lookup(self, title: str, artist: str) -> Optional[str]:
        ...


class HTTPProvider:
    """
    Base class for requests-based collaborators.

    Subclasses call _request() and get parsed JSON back or a ProviderError.
    """

    name: str = "http"

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(f"providers.{self.name}")

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Perform an HTTP request and decode the JSON body.

        Raises:
            ProviderError: Transport failure, non-2xx status or invalid JSON
        """
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ProviderError(
                f"{self.name} request failed: {e}", provider=self.name, status=status
            ) from e
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} request failed: {e}", provider=self.name) from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.name} returned invalid JSON", provider=self.name,
                status=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.name} returned unexpected payload", provider=self.name,
                status=response.status_code,
            )
        return data

    def close(self) -> None:
        self.session.close()


def resolve_credential(value: Optional[str]) -> Optional[str]:
    """Treat empty and uninterpolated ${VAR} values as missing."""
    if not value or (value.startswith("${") and value.endswith("}")):
        return None
    return value
