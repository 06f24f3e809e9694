"""Bridge from the synchronous Flask server to the asyncio triage core.

The event loop runs on a dedicated daemon thread.  Request handlers hand
events over with ``asyncio.run_coroutine_threadsafe`` and return at once;
the per-tenant queue decides when each event actually runs.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable

from triage_app.errors import MalformedEventError
from triage_app.job_queue import PerTenantJobQueue
from triage_app.log_utils import sanitize_log
from triage_app.models import IssueEvent
from triage_app.webhook_handler import ISSUE_CLOSED, ISSUE_OPENED

log = logging.getLogger(__name__)


class BackgroundLoop:
    def __init__(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run, name="triage-event-loop", daemon=True,
        )
        self._started = False

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def start(self) -> None:
        if not self._started:
            self._thread.start()
            self._started = True

    def submit(self, coro: Awaitable[Any]) -> concurrent.futures.Future:
        self.start()
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def stop(self, timeout: float = 5.0) -> None:
        if not self._started:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        self._started = False


class EventDispatcher:
    """Routes accepted events onto the installation's queue."""

    def __init__(
        self,
        queue: PerTenantJobQueue,
        handlers: dict[str, Callable[[IssueEvent], Awaitable[Any]]],
        loop: BackgroundLoop | None = None,
    ) -> None:
        self.queue = queue
        self._handlers = handlers
        self._loop = loop

    @classmethod
    def for_services(cls, queue, triage_service, outcome_service, loop=None) -> EventDispatcher:
        return cls(
            queue,
            {
                ISSUE_OPENED: triage_service.handle_issue_opened,
                ISSUE_CLOSED: outcome_service.handle_issue_closed,
            },
            loop,
        )

    async def dispatch(self, route: str, event: IssueEvent) -> Any:
        handler = self._handlers.get(route)
        if handler is None:
            raise MalformedEventError(f"no handler for {route}")
        return await self.queue.enqueue(event.installation_id, lambda: handler(event))

    def _log_failure(self, route: str, event: IssueEvent, future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        log.error(
            "%s task failed for %s#%d: %s",
            route, sanitize_log(event.repo), event.issue_number, exc,
            extra={
                "repo": event.repo,
                "issue_number": event.issue_number,
                "delivery_id": event.delivery_id,
                "installation_id": event.installation_id,
            },
        )

    def submit(self, route: str, event: IssueEvent) -> concurrent.futures.Future:
        if self._loop is None:
            self._loop = BackgroundLoop()
        future = self._loop.submit(self.dispatch(route, event))
        future.add_done_callback(lambda f: self._log_failure(route, event, f))
        return future

    def queue_stats(self, installation_id: int) -> dict:
        return {
            "installation_id": installation_id,
            "queued": self.queue.get_queue_size(installation_id),
            "running": self.queue.get_pending_count(installation_id),
        }

    def shutdown(self) -> None:
        if self._loop is not None:
            self._loop.stop()
