"""
Main Static404 implementation
"""
import asyncio
import logging
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from .cache_writer import CacheWriter
from .config import Static404Config
from .exceptions import (
    CacheWriteError,
    Static404ConfigurationError,
    TransportError,
    ValidationFailure,
)
from .fetcher import NotFoundFetcher
from .handler import LiveNotFoundHandler
from .interfaces import ICacheWriter, IEventSink, INotFoundFetcher
from .metrics import RecacheMetrics, RecacheTimer
from .models import CachedResponse, RequestContext, RuleInstallStatus
from .rules import RuleInstaller
from .scheduler import AddAction, RecacheScheduler
from .validator import check_not_found

logger = logging.getLogger(__name__)

# Bare query string flag that forces an immediate recache
FORCE_RECACHE_FLAG = "cache"


class Static404:
    """
    Static not-found page cache for one site.

    Intent:
    Rendering a full not-found page through the application is expensive,
    and most not-found traffic is scanners probing for ``.php``, ``.env``
    or ``.zip`` files that never existed. This class keeps a static copy of
    the page on disk and the server rules that serve it, so those requests
    never reach the application.

    It wires together:
    - the fetcher, which requests a reserved path to capture the live page
    - the validator, which accepts only a non-empty 404 response
    - the cache writer, which persists the page
    - the scheduler, which turns bursts of content changes into one recache
    - the rule installer, which maintains this site's block in the shared
      rewrite file
    - the live handler, which serves the copy for not-found requests that
      still reach the application

    Failures in the recache pipeline are logged, counted and swallowed:
    the worst outcome is that visitors get the live-rendered page.
    """

    def __init__(
        self,
        config: Optional[Static404Config] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        fetcher: Optional[INotFoundFetcher] = None,
        cache: Optional[ICacheWriter] = None,
        event_sink: Optional[IEventSink] = None,
    ):
        """
        Args:
            config: Site configuration. If None, built from the environment.
            http_client: Client for the probe request, shared with the host
            fetcher: Replacement fetcher, takes precedence over ``http_client``
            cache: Replacement cache store
            event_sink: Receives structured events at each pipeline decision

        Raises:
            Static404ConfigurationError: If the home URL is not an absolute
                                         http(s) URL
        """
        self.config = config or Static404Config()
        self._validate_home_url()
        if self.config.debug:
            logging.getLogger(__package__).setLevel(logging.DEBUG)

        self.metrics = RecacheMetrics()
        self.event_sink = event_sink

        self.fetcher = fetcher or NotFoundFetcher(self.config, http_client)
        self.cache = cache or CacheWriter(
            self.config.cache_file_path, self.config.response_contents
        )
        self.scheduler = RecacheScheduler(
            self.perform_cache,
            delay=self.config.recache_delay,
            actions=self.config.recache_actions,
            metrics=self.metrics,
        )
        self.installer = RuleInstaller(self.config, self.cache, self.metrics)
        self.handler = LiveNotFoundHandler(self.config, self.cache, self.metrics)

        self._recache_lock = asyncio.Lock()

    def _validate_home_url(self) -> None:
        parts = urlsplit(self.config.home_url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise Static404ConfigurationError(
                f"Home URL must be an absolute http(s) URL: {self.config.home_url!r}"
            )

    def _emit(self, name: str, /, **details: Any) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(name, details)
        except Exception:
            logger.exception("Event sink failed on %s", name)

    async def perform_cache(self) -> bool:
        """
        Fetch, validate and store the not-found page.

        Intent:
        The single recache sequence behind the debounced job, the activation
        sequence and the ``?cache`` escape hatch. Attempts are serialized so
        an escape-hatch request cannot interleave with a scheduled job.
        The existing cache file is only replaced by a validated response.

        Returns:
            True if the cache file was written, False on any failure
        """
        async with self._recache_lock:
            with RecacheTimer(self.metrics) as timer:
                try:
                    result = await self.fetcher.fetch()
                    check_not_found(result)
                    path = await self.cache.write(result.body)
                except TransportError as e:
                    self.metrics.transport_errors += 1
                    self.metrics.record_error(type(e).__name__)
                    logger.warning("Recache aborted: %s", e)
                    self._emit("transport_error", error=str(e))
                    return False
                except ValidationFailure as e:
                    self.metrics.validation_failures += 1
                    self.metrics.record_error(type(e).__name__)
                    logger.warning("Recache aborted, response rejected: %s", e)
                    self._emit("validation_failure", error=str(e))
                    return False
                except CacheWriteError as e:
                    self.metrics.write_failures += 1
                    self.metrics.record_error(type(e).__name__)
                    logger.warning("Recache aborted: %s", e)
                    self._emit("write_failure", error=str(e))
                    return False

                timer.mark_written()

        self._emit("cache_written", path=str(path), size=len(result.body))
        return True

    async def maybe_install_rules(self, refresh: bool = False) -> RuleInstallStatus:
        """Install this site's server rules if the page is cached."""
        status = await self.installer.ensure_rules_installed(refresh=refresh)
        self._emit("rules", status=status.value, marker=self.config.marker)
        return status

    async def activate(self) -> RuleInstallStatus:
        """
        Activation sequence: cache the page, then install the rules.

        The rules are only installed when a cache file exists, so a failed
        first recache leaves the rewrite file untouched.
        """
        await self.perform_cache()
        return await self.maybe_install_rules()

    async def handle_request(self, request: RequestContext) -> Optional[bool]:
        """
        Run a synchronous recache when the request carries the ``cache`` flag.

        Returns:
            None when the flag is absent, otherwise the recache outcome
        """
        if not request.has_query_flag(FORCE_RECACHE_FLAG):
            return None
        logger.info("Forced recache requested by %s", request.current_url)
        self._emit("forced_recache", url=request.current_url)
        return await self.perform_cache()

    def on_content_change(self, event_name: str, *, autosave: bool = False) -> bool:
        """
        Feed a host content-change event to the scheduler.

        Returns:
            True if the event scheduled a new recache job
        """
        scheduled = self.scheduler.on_content_change(event_name, autosave=autosave)
        if scheduled:
            self._emit("recache_scheduled", event=event_name, delay=self.config.recache_delay)
        return scheduled

    def register_recache_actions(self, add_action: AddAction) -> int:
        """Subscribe the scheduler to the host's content-change events."""
        return self.scheduler.register(add_action, self.on_content_change)

    async def handle_not_found(self, request: RequestContext) -> Optional[CachedResponse]:
        return await self.handler.on_route_resolved_not_found(request)

    async def get_statistics(self) -> dict:
        """
        Metrics plus the current state of the cache file.
        """
        stats = self.metrics.to_dict()
        cached = await self.cache.exists()
        stats.update({
            "cached": cached,
            "cache_file": str(self.cache.path),
            "cache_file_size": await self.cache.get_size(),
            "recache_pending": self.scheduler.is_pending,
        })
        return stats

    def get_metrics_prometheus(self) -> str:
        return self.metrics.to_prometheus()

    async def close(self, drain: bool = False) -> None:
        """
        Shut down.

        Args:
            drain: Let a pending recache fire and finish instead of
                   cancelling it. A cancelled job that is already
                   running is awaited until it has stopped.
        """
        if not drain:
            self.scheduler.cancel()
        await self.scheduler.drain()
        await self.fetcher.aclose()

    async def __aenter__(self) -> "Static404":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
