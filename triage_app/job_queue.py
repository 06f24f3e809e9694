"""Per-installation job serialisation.

Each GitHub App installation (tenant) gets its own FIFO slot so that two
webhooks for the same installation never run side by side, while different
installations proceed concurrently.  Tenant queues are created on first use
and dropped as soon as they are idle, so memory tracks the number of
currently active installations rather than every installation ever seen.

This is a throughput and politeness measure (one installation token, one
stream of GitHub calls at a time).  It is not what prevents double posting:
the datastore claim in ``idempotency`` is.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Hashable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class _TenantQueue:
    """One tenant's slot.  ``asyncio.Lock`` hands itself to waiters in FIFO order.

    Entries are immutable: a count change swaps in a new entry, so a reader
    never sees one count updated without the other.
    """

    lock: asyncio.Lock
    size: int = 0
    pending: int = 0

    @property
    def idle(self) -> bool:
        return self.size == 0 and self.pending == 0


class PerTenantJobQueue:
    def __init__(self) -> None:
        self._queues: dict[Hashable, _TenantQueue] = {}

    def _get_or_create(self, tenant_id: Hashable) -> _TenantQueue:
        queue = self._queues.get(tenant_id)
        if queue is None:
            queue = _TenantQueue(lock=asyncio.Lock())
            self._queues[tenant_id] = queue
            log.debug("Created job queue for installation %s", tenant_id,
                      extra={"installation_id": tenant_id})
        return queue

    def _adjust(self, tenant_id: Hashable, lock: asyncio.Lock, size: int = 0, pending: int = 0) -> _TenantQueue:
        current = self._queues.get(tenant_id)
        owned = current is not None and current.lock is lock
        if not owned:
            current = _TenantQueue(lock=lock)
        updated = replace(current, size=current.size + size, pending=current.pending + pending)
        if not updated.idle:
            self._queues[tenant_id] = updated
        elif owned:
            del self._queues[tenant_id]
            log.debug("Pruned idle job queue for installation %s", tenant_id,
                      extra={"installation_id": tenant_id})
        return updated

    async def enqueue(self, tenant_id: Hashable, task: Callable[[], Awaitable[T]]) -> T:
        """Run *task* after every task previously enqueued for *tenant_id*.

        The task's result is returned and its exception re-raised here; later
        tasks for the same tenant run regardless.
        """
        lock = self._get_or_create(tenant_id).lock
        queue = self._adjust(tenant_id, lock, size=1)
        log.debug(
            "Enqueuing job for installation %s (waiting=%d running=%d)",
            tenant_id, queue.size, queue.pending,
            extra={"installation_id": tenant_id},
        )
        started = False
        try:
            async with lock:
                self._adjust(tenant_id, lock, size=-1, pending=1)
                started = True
                try:
                    return await task()
                finally:
                    self._adjust(tenant_id, lock, pending=-1)
        finally:
            if not started:
                self._adjust(tenant_id, lock, size=-1)

    def get_queue_size(self, tenant_id: Hashable) -> int:
        """Tasks waiting for *tenant_id*.  Advisory only."""
        queue = self._queues.get(tenant_id)
        return queue.size if queue else 0

    def get_pending_count(self, tenant_id: Hashable) -> int:
        """Tasks currently running for *tenant_id* (0 or 1).  Advisory only."""
        queue = self._queues.get(tenant_id)
        return queue.pending if queue else 0

    def active_tenants(self) -> list[Hashable]:
        return list(self._queues)
