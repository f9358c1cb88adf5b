"""HTTP client for reading uploaded scan photos from object storage."""

import logging
from functools import lru_cache

import httpx

from bodyscan_api.core.config import get_settings
from bodyscan_api.core.exceptions import TransientInfraError, ValidationError

logger = logging.getLogger(__name__)

# Status codes worth another attempt
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class PhotoFetcher:
    """Downloads photo bytes by URL (signed storage URLs or CDN links)."""

    def __init__(self, timeout: float = 20.0, max_bytes: int = 10 * 1024 * 1024) -> None:
        """
        Initialize the photo fetcher.

        Args:
            timeout: Request timeout in seconds
            max_bytes: Largest photo accepted
        """
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> bytes:
        """
        Download one photo.

        Args:
            url: Photo URL

        Returns:
            Raw image bytes

        Raises:
            TransientInfraError: Timeouts, connection errors, 5xx/429
            ValidationError: Photo missing, forbidden, empty or too large
        """
        client = await self._get_client()

        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise TransientInfraError(f"Timed out fetching photo: {e}") from e
        except httpx.TransportError as e:
            raise TransientInfraError(f"Failed to reach photo storage: {e}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientInfraError(
                f"Photo storage returned {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )
        if response.status_code != 200:
            raise ValidationError(
                f"Photo not accessible ({response.status_code})",
                details={"url": url, "status_code": response.status_code},
            )

        content = response.content
        if not content:
            raise ValidationError("Photo is empty", details={"url": url})
        if len(content) > self.max_bytes:
            raise ValidationError(
                f"Photo exceeds maximum size of {self.max_bytes // (1024 * 1024)} MB",
                details={"url": url, "size": len(content)},
            )

        logger.debug(f"Fetched photo ({len(content)} bytes)")
        return content


@lru_cache
def get_photo_fetcher() -> PhotoFetcher:
    """
    Get a cached photo fetcher instance.

    Returns:
        PhotoFetcher configured from settings
    """
    settings = get_settings()
    return PhotoFetcher(
        timeout=settings.photo_fetch_timeout,
        max_bytes=settings.max_photo_bytes,
    )
