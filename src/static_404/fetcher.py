"""
Retrieval of the live not-found page
"""
import logging
from typing import Optional

import httpx

from .config import PROBE_HEADER_NAME, Static404Config
from .models import FetchResult

logger = logging.getLogger(__name__)


class NotFoundFetcher:
    """
    Requests the site's reserved probe path and returns the raw response.

    Intent:
    The probe path can never resolve to real content, so whatever the site
    answers is its not-found page. The fetcher issues a single GET with a
    bounded timeout and does not follow redirects: a redirect is a
    misconfiguration that must reach the validator as a non-404 status, not
    be silently resolved into some other page.

    There is no retry. A failed fetch ends the current recache attempt and
    the next content change triggers another one.
    """

    def __init__(self, config: Static404Config, client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            config: Site configuration (probe URL and timeout)
            client: Optional shared client. When omitted the fetcher creates
                    its own on first use and closes it in ``aclose``.
        """
        self.config = config
        self._client = client
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return self.config.probe_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def fetch(self) -> FetchResult:
        """
        Issue the probe request.

        Returns:
            FetchResult with status and body, or with ``error`` set when the
            request could not be completed (connection failure, timeout)
        """
        client = self._get_client()
        try:
            response = await client.get(
                self.url,
                headers={PROBE_HEADER_NAME: "1"},
                timeout=self.config.http_timeout,
                follow_redirects=False,
            )
        except httpx.HTTPError as e:
            logger.warning("Probe request to %s failed: %s", self.url, e)
            return FetchResult(error=f"{type(e).__name__}: {e}")

        logger.debug("Probe request to %s returned %s", self.url, response.status_code)
        return FetchResult(status_code=response.status_code, body=response.content)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
