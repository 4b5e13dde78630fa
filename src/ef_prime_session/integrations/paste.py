"""
Paste Service Client

Uploads exported credential bundles to a Pastebin-compatible API and returns
the paste URL. The session identifier handed to the user is derived from the
final path segment of that URL.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from ..config.schema import PasteConfig
from ..errors import ExportError

logger = logging.getLogger(__name__)


# Pastebin's api_paste_private values
VISIBILITY_CODES = {
    "public": "0",
    "unlisted": "1",
    "private": "2",
}

# Pastebin's api_paste_expire_date values
EXPIRATION_CODES = {
    "never": "N",
    "10m": "10M",
    "1h": "1H",
    "1d": "1D",
    "1w": "1W",
    "1m": "1M",
}


def paste_id_from_url(url: str) -> str:
    """
    Extract the paste id (final path segment) from a paste URL.

    Raises:
        ExportError: If the URL has no path segment to use as an id
    """
    path = urlparse(url.strip()).path
    paste_id = path.rstrip("/").rsplit("/", 1)[-1]
    if not paste_id:
        raise ExportError(f"Paste service returned no identifiable id: {url!r}")
    return paste_id


class PasteClient:
    """
    Client for the paste service.

    Usage:
        async with PasteClient(config.paste) as paste:
            url = await paste.create_paste(text, title="EF-PRIME-MD Session Credentials")
    """

    def __init__(
        self,
        config: Optional[PasteConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or PasteConfig()
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=self.config.timeout_seconds)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def create_paste(
        self,
        text: str,
        title: str,
        format: Optional[str] = None,
        visibility: Optional[str] = None,
        expiration: Optional[str] = None,
    ) -> str:
        """
        Create a paste and return its URL.

        Raises:
            ExportError: On transport failure, non-2xx status, or a response
                body that is not a paste URL
        """
        visibility = visibility or self.config.visibility
        expiration = expiration or self.config.expiration

        form = {
            "api_dev_key": self.config.api_key,
            "api_option": "paste",
            "api_paste_code": text,
            "api_paste_name": title,
            "api_paste_format": format or self.config.format,
            "api_paste_private": VISIBILITY_CODES.get(visibility, VISIBILITY_CODES["unlisted"]),
            "api_paste_expire_date": EXPIRATION_CODES.get(expiration, EXPIRATION_CODES["never"]),
        }

        try:
            response = await self.client.post(self.config.api_url, data=form)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Paste upload HTTP error: {e.response.status_code} - {e.response.text}")
            raise ExportError(f"Paste upload failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Paste upload transport error: {e}")
            raise ExportError(f"Paste upload failed: {e}") from e

        body = response.text.strip()
        if not body.startswith(self.config.url_prefix):
            # The API reports errors as plain text with a 200 status
            raise ExportError(f"Paste upload rejected: {body or 'empty response'}")

        logger.info(f"Uploaded paste '{title}'")
        return body
