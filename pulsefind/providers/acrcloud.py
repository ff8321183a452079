"""
ACRCloud audio recognition client.

Requests are signed with HMAC-SHA1 over the method, endpoint, access key,
data type, signature version and timestamp.
"""

import base64
import hashlib
import hmac
import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from pulsefind.providers.base import HTTPProvider, resolve_credential
from pulsefind.utils.errors import CredentialsMissingError

DEFAULT_HOST = "identify-eu-west-1.acrcloud.com"
ENDPOINT = "/v1/identify"
DATA_TYPE = "audio"
SIGNATURE_VERSION = "1"
MAX_SAMPLE_BYTES = 500 * 1024

logger = logging.getLogger("providers.acrcloud")


def sign_request(access_key: str, access_secret: str, timestamp: int) -> str:
    """Base64 HMAC-SHA1 signature for an identify request."""
    string_to_sign = "\n".join([
        "POST", ENDPOINT, access_key, DATA_TYPE, SIGNATURE_VERSION, str(timestamp),
    ])
    digest = hmac.new(
        access_secret.encode("utf-8"),
        string_to_sign.encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class ACRCloudProvider(HTTPProvider):
    """Identifies audio byte ranges against the ACRCloud music database."""

    name = "acrcloud"

    def __init__(
        self,
        access_key: str,
        access_secret: str,
        host: str = DEFAULT_HOST,
        max_sample_bytes: int = MAX_SAMPLE_BYTES,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        if not access_key or not access_secret:
            raise CredentialsMissingError(
                "ACRCloud", "ACRCLOUD_ACCESS_KEY and ACRCLOUD_ACCESS_SECRET"
            )
        super().__init__(timeout=timeout, session=session)
        self.access_key = access_key
        self.access_secret = access_secret
        self.host = host
        self.max_sample_bytes = max_sample_bytes

    @property
    def url(self) -> str:
        return f"https://{self.host}{ENDPOINT}"

    def identify(self, sample_bytes: bytes, label: str) -> Dict[str, Any]:
        """
        Submit up to max_sample_bytes of audio for recognition.

        Args:
            sample_bytes: Segment bytes
            label: Segment label, used for logging and the upload filename

        Returns:
            Raw ACRCloud response payload (``status`` + ``metadata``)

        Raises:
            ProviderError: Request failed or returned a non-JSON body
        """
        sample = sample_bytes[:self.max_sample_bytes]
        timestamp = int(time.time())
        signature = sign_request(self.access_key, self.access_secret, timestamp)

        self.logger.debug(
            f"Identifying {label}: {len(sample)} bytes",
            extra={"segment": label, "provider": self.name},
        )

        return self._request(
            "POST",
            self.url,
            files={"sample": ("sample.mp3", sample, "audio/mpeg")},
            data={
                "access_key": self.access_key,
                "data_type": DATA_TYPE,
                "signature_version": SIGNATURE_VERSION,
                "signature": signature,
                "sample_bytes": str(len(sample)),
                "timestamp": str(timestamp),
            },
        )


def create_acrcloud_provider(
    config: Optional[Dict[str, Any]] = None,
) -> Optional[ACRCloudProvider]:
    """
    Factory function for the ``providers.acrcloud`` section.

    Returns None when disabled or when credentials are missing, in which
    case scans fall back to the local cache only.
    """
    if config is None:
        config = {}

    if not config.get("enabled", True):
        return None

    access_key = resolve_credential(config.get("access_key")) or os.environ.get("ACRCLOUD_ACCESS_KEY")
    access_secret = resolve_credential(config.get("access_secret")) or os.environ.get("ACRCLOUD_ACCESS_SECRET")

    if not access_key or not access_secret:
        logger.warning("ACRCloud credentials not configured; external recognition disabled")
        return None

    return ACRCloudProvider(
        access_key=access_key,
        access_secret=access_secret,
        host=config.get("host", DEFAULT_HOST),
        max_sample_bytes=config.get("max_sample_bytes", MAX_SAMPLE_BYTES),
        timeout=config.get("timeout", 15.0),
    )
