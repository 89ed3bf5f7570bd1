"""
Debounced recache scheduling
"""
import asyncio
import logging
from collections.abc import Awaitable, Iterable
from typing import Any, Callable, Optional

from .metrics import RecacheMetrics

logger = logging.getLogger(__name__)

RecacheJob = Callable[[], Awaitable[Any]]
AddAction = Callable[[str, Callable[..., None]], Any]
EventHandler = Callable[..., bool]


class RecacheScheduler:
    """
    Coalesces content-change events into a single deferred recache job.

    Intent:
    Editors change content in bursts: saving a post fires a handful of
    events, a bulk edit fires hundreds. Refetching the not-found page for
    each would be wasteful, so the first qualifying event opens a debounce
    window and every event inside it is absorbed by the one pending job.

    Key design decisions:
    - One optional task handle per scheduler (one scheduler per site), not
      a queue
    - The coalescing key is global: ten different event names inside one
      window still produce exactly one recache
    - A pending job is never pushed back by later events, so a steady
      stream of edits cannot starve the recache
    - Autosaves never count as content changes
    - The check and the scheduling happen without yielding to the event
      loop, so two events on the same loop cannot both schedule
    """

    def __init__(
        self,
        job: RecacheJob,
        delay: float,
        actions: Iterable[str],
        metrics: Optional[RecacheMetrics] = None,
    ):
        """
        Args:
            job: Coroutine function running fetch, validate and write
            delay: Debounce window in seconds
            actions: Event names that count as content changes
            metrics: Shared metrics object, a private one when omitted
        """
        self.job = job
        self.delay = delay
        self.actions = frozenset(actions)
        self.metrics = metrics or RecacheMetrics()
        self._pending: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def on_content_change(self, event_name: str, *, autosave: bool = False) -> bool:
        """
        Handle a content-change event.

        Must be called from within a running event loop.

        Args:
            event_name: Name of the host event that fired
            autosave: Whether the event came from an autosave

        Returns:
            True if this event scheduled a new job, False if it was ignored
            or absorbed by the pending one
        """
        self.metrics.events_received += 1

        if autosave:
            self.metrics.events_ignored += 1
            logger.debug("Ignoring %s from autosave", event_name)
            return False

        if event_name not in self.actions:
            self.metrics.events_ignored += 1
            logger.debug("Ignoring %s, not a recache action", event_name)
            return False

        if self.is_pending:
            self.metrics.events_coalesced += 1
            logger.debug("Recache already pending, coalescing %s", event_name)
            return False

        loop = asyncio.get_running_loop()
        self._pending = loop.create_task(self._run_after_delay(event_name))
        self._tasks.add(self._pending)
        self._pending.add_done_callback(self._tasks.discard)
        self.metrics.jobs_scheduled += 1
        logger.info("Recache scheduled in %ss after %s", self.delay, event_name)
        return True

    async def _run_after_delay(self, event_name: str) -> None:
        await asyncio.sleep(self.delay)

        # Free the slot before running so events during the job schedule a new one
        self._pending = None

        try:
            await self.job()
        except Exception:
            self.metrics.record_error("RecacheJobError")
            logger.exception("Recache job triggered by %s failed", event_name)

    def register(self, add_action: AddAction, handler: Optional[EventHandler] = None) -> int:
        """
        Subscribe to every configured action through the host's event system.

        Intent:
        The host supplies ``add_action(name, callback)``; the callback it
        receives accepts whatever arguments the host passes with the event
        and an optional ``autosave`` keyword.

        Args:
            add_action: Host hook registration function
            handler: Receives ``(event_name, autosave=...)`` for each event.
                     Defaults to this scheduler's ``on_content_change``.

        Returns:
            Number of actions registered
        """
        handler = handler or self.on_content_change
        count = 0
        for action in sorted(self.actions):
            add_action(action, self._make_listener(action, handler))
            count += 1
        return count

    @staticmethod
    def _make_listener(action: str, handler: EventHandler) -> Callable[..., None]:
        def listener(*args: Any, autosave: bool = False, **kwargs: Any) -> None:
            handler(action, autosave=autosave)

        return listener

    async def drain(self) -> None:
        """
        Wait until no job is pending or running.

        Jobs scheduled by events that arrive while waiting are waited for
        as well.
        """
        while True:
            live = [task for task in self._tasks if not task.done()]
            if not live:
                return
            await asyncio.gather(*live, return_exceptions=True)

    def cancel(self) -> bool:
        """
        Drop the pending job and stop any job already running.

        Returns:
            True if a job was cancelled
        """
        self._pending = None
        cancelled = False
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                cancelled = True
        return cancelled
