"""
In-application fallback for serving the cached not-found page
"""
import logging
from typing import Optional

from .config import PROBE_HEADER_NAME, Static404Config
from .interfaces import ICacheWriter
from .metrics import RecacheMetrics
from .models import CachedResponse, RequestContext

logger = logging.getLogger(__name__)


class LiveNotFoundHandler:
    """
    Serves the cached page once the application has decided a request is a 404.

    Intent:
    The server rules only catch missing static-looking assets. Everything
    else (pretty permalinks, missing pages) still reaches the application,
    which would normally render the full not-found template. When a cached
    copy exists this handler hands back its bytes instead, and the host
    stops processing the request.

    Two requests are never served from cache:
    - the probe request itself, which must see the live page or the cache
      would keep re-caching its own stale copy
    - feed requests, whose not-found response is not an HTML page
    """

    def __init__(
        self,
        config: Static404Config,
        cache: ICacheWriter,
        metrics: Optional[RecacheMetrics] = None,
    ):
        self.config = config
        self.cache = cache
        self.metrics = metrics or RecacheMetrics()

    def is_probe_request(self, request: RequestContext) -> bool:
        if request.header(PROBE_HEADER_NAME) is not None:
            return True
        return request.current_url == self.config.probe_url

    async def on_route_resolved_not_found(self, request: RequestContext) -> Optional[CachedResponse]:
        """
        Handle a request the application resolved as not found.

        Args:
            request: The current request

        Returns:
            CachedResponse to send as-is, or None to fall through to the
            host's normal not-found rendering
        """
        if self.is_probe_request(request):
            self.metrics.probe_passthroughs += 1
            logger.debug("Probe request %s, rendering live not-found page", request.current_url)
            return None

        if request.is_feed:
            return None

        if not await self.cache.exists():
            return None

        body = await self.cache.read()
        if body is None:
            return None

        self.metrics.cached_responses_served += 1
        return CachedResponse(status_code=404, body=body)
