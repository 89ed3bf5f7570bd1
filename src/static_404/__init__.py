"""
Static 404 Cache - serve a site's not-found page from a static file
"""
from .cache_writer import CacheWriter
from .config import Static404Config
from .exceptions import (
    CacheWriteError,
    RuleInstallError,
    Static404ConfigurationError,
    Static404Error,
    TransportError,
    ValidationFailure,
)
from .fetcher import NotFoundFetcher
from .handler import LiveNotFoundHandler
from .interfaces import ICacheWriter, IEventSink, INotFoundFetcher
from .metrics import RecacheMetrics
from .models import CachedResponse, FetchResult, RequestContext, RuleInstallStatus
from .plugin import Static404
from .rules import RuleBlock, RuleInstaller, build_rule_block, extract_from_markers
from .scheduler import RecacheScheduler
from .validator import is_valid_not_found

__version__ = "0.1.0"
__all__ = [
    "Static404",
    "Static404Config",
    "NotFoundFetcher",
    "CacheWriter",
    "RecacheScheduler",
    "RuleInstaller",
    "RuleBlock",
    "LiveNotFoundHandler",
    "RecacheMetrics",
    "FetchResult",
    "RequestContext",
    "CachedResponse",
    "RuleInstallStatus",
    "ICacheWriter",
    "IEventSink",
    "INotFoundFetcher",
    "build_rule_block",
    "extract_from_markers",
    "is_valid_not_found",
    "Static404Error",
    "Static404ConfigurationError",
    "TransportError",
    "ValidationFailure",
    "CacheWriteError",
    "RuleInstallError",
]
