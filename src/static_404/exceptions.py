"""
Custom exceptions for the static 404 cache
"""


class Static404Error(Exception):
    """
    Base exception for all static 404 errors.

    Intent:
    Provides a common base class so the orchestrator can catch every failure
    of the recache pipeline in one place. Nothing below this class is allowed
    to reach the host request: at worst visitors get the live-rendered
    not-found page instead of the cached one.
    """
    pass


class Static404ConfigurationError(Static404Error):
    """
    Raised when the configuration cannot describe a usable site.

    Intent:
    Startup-time error, e.g. a home URL with no scheme or host. Field level
    problems (negative timeouts, file names with separators) are rejected
    earlier by pydantic validation on the config model itself.
    """
    pass


class TransportError(Static404Error):
    """
    Raised when the probe request could not be completed.

    Intent:
    Covers connection failures and timeouts of the outbound request for the
    not-found page. The fetcher reports these as data on the fetch result;
    the orchestrator raises this class only to route the failure through
    the same logging and metrics path as the other pipeline errors.
    """
    pass


class ValidationFailure(Static404Error):
    """
    Raised when a fetched response is not a genuine not-found page.

    Intent:
    Wrong status code (including redirects) or an empty body. The current
    recache attempt is abandoned and the existing cache file, if any, is
    left untouched.
    """
    pass


class CacheWriteError(Static404Error):
    """
    Raised when the cache file cannot be written.

    Common scenarios:
    - Upload directory not writable
    - Disk full
    - Content filter returned something other than bytes
    """
    pass


class RuleInstallError(Static404Error):
    """
    Raised when the shared rewrite rules file cannot be read or written.

    Intent:
    Distinguishes a failed install from "nothing to do", which the
    installer reports through its status value.
    """
    pass
