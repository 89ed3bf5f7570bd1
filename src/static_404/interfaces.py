"""
Interface definitions for static 404 components.

Intent:
Protocols for the collaborators the orchestrator depends on, so tests and
hosts can swap in their own fetcher, cache store or event sink without
touching the pipeline itself.
"""
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from .models import FetchResult


@runtime_checkable
class INotFoundFetcher(Protocol):
    """
    Interface for retrieving the live not-found page.

    Implementations issue exactly one request and report transport failures
    on the returned result instead of raising.
    """

    async def fetch(self) -> FetchResult:
        ...

    async def aclose(self) -> None:
        ...


@runtime_checkable
class ICacheWriter(Protocol):
    """
    Interface for persisting the cached not-found page.

    Intent:
    Existence of the stored document is the only "is cached" signal the
    rest of the system uses, so ``exists`` must be cheap and accurate.
    """

    @property
    def path(self) -> Path:
        ...

    async def write(self, body: bytes) -> Path:
        """
        Replace the cached document with ``body``.

        Raises:
            CacheWriteError: If the document could not be written
        """
        ...

    async def read(self) -> Optional[bytes]:
        ...

    async def exists(self) -> bool:
        ...

    async def get_size(self) -> int:
        ...


@runtime_checkable
class IEventSink(Protocol):
    """
    Structured observability hook.

    Called with an event name and a details dict at every decision point of
    the pipeline. Must not raise; the pipeline does not change course based
    on what the sink does.
    """

    def __call__(self, event: str, details: dict[str, Any]) -> None:
        ...
