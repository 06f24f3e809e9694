"""Tests for triage_app/job_queue.py -- per-installation FIFO serialisation."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from triage_app.job_queue import PerTenantJobQueue


class TestPerTenantFifo:
    def test_same_tenant_runs_in_enqueue_order(self):
        async def scenario():
            queue = PerTenantJobQueue()
            order = []

            def job(name, delay):
                async def run():
                    order.append(f"start-{name}")
                    await asyncio.sleep(delay)
                    order.append(f"end-{name}")
                    return name
                return run

            results = await asyncio.gather(
                queue.enqueue(1, job("a", 0.03)),
                queue.enqueue(1, job("b", 0.0)),
                queue.enqueue(1, job("c", 0.01)),
            )
            return order, results

        order, results = asyncio.run(scenario())
        assert order == ["start-a", "end-a", "start-b", "end-b", "start-c", "end-c"]
        assert results == ["a", "b", "c"]

    def test_different_tenants_run_concurrently(self):
        async def scenario():
            queue = PerTenantJobQueue()
            started = asyncio.Event()
            second_ran = []

            async def blocker():
                started.set()
                await asyncio.sleep(0.05)
                return second_ran[:]

            async def other():
                second_ran.append(True)

            first = asyncio.create_task(queue.enqueue(1, blocker))
            await started.wait()
            await queue.enqueue(2, other)
            return await first

        assert asyncio.run(scenario()) == [True]

    def test_failure_propagates_and_tenant_continues(self):
        async def scenario():
            queue = PerTenantJobQueue()

            async def boom():
                raise RuntimeError("boom")

            async def ok():
                return "ok"

            results = await asyncio.gather(
                queue.enqueue(1, boom), queue.enqueue(1, ok), return_exceptions=True,
            )
            return results

        failed, succeeded = asyncio.run(scenario())
        assert isinstance(failed, RuntimeError)
        assert succeeded == "ok"


class TestQueueCounts:
    def test_counts_while_running(self):
        async def scenario():
            queue = PerTenantJobQueue()
            gate = asyncio.Event()
            snapshots = {}

            async def slow():
                await gate.wait()

            async def fast():
                return None

            t1 = asyncio.create_task(queue.enqueue(5, slow))
            t2 = asyncio.create_task(queue.enqueue(5, fast))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            snapshots["queued"] = queue.get_queue_size(5)
            snapshots["running"] = queue.get_pending_count(5)
            snapshots["active"] = queue.active_tenants()
            gate.set()
            await asyncio.gather(t1, t2)
            snapshots["after"] = queue.active_tenants()
            return snapshots

        snapshots = asyncio.run(scenario())
        assert snapshots["queued"] == 1
        assert snapshots["running"] == 1
        assert snapshots["active"] == [5]
        assert snapshots["after"] == []

    def test_unknown_tenant_counts_are_zero(self):
        queue = PerTenantJobQueue()
        assert queue.get_queue_size(42) == 0
        assert queue.get_pending_count(42) == 0

    def test_idle_queue_pruned_after_failure(self):
        queue = PerTenantJobQueue()

        async def boom():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            asyncio.run(queue.enqueue(3, boom))
        assert queue.active_tenants() == []

    def test_cancelled_waiter_does_not_leak(self):
        async def scenario():
            queue = PerTenantJobQueue()
            gate = asyncio.Event()

            async def slow():
                await gate.wait()

            async def never():
                return "never"

            running = asyncio.create_task(queue.enqueue(9, slow))
            waiting = asyncio.create_task(queue.enqueue(9, never))
            await asyncio.sleep(0)
            waiting.cancel()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            queued_after_cancel = queue.get_queue_size(9)
            gate.set()
            await running
            return queued_after_cancel, queue.active_tenants()

        queued, active = asyncio.run(scenario())
        assert queued == 0
        assert active == []

    def test_entries_are_replaced_not_mutated(self):
        async def scenario():
            queue = PerTenantJobQueue()
            gate = asyncio.Event()
            seen = {}

            async def slow():
                seen["entry"] = queue._queues[7]
                seen["counts"] = (seen["entry"].size, seen["entry"].pending)
                await gate.wait()

            async def fast():
                return None

            running = asyncio.create_task(queue.enqueue(7, slow))
            await asyncio.sleep(0)
            waiting = asyncio.create_task(queue.enqueue(7, fast))
            await asyncio.sleep(0)
            seen["current"] = queue._queues[7]
            gate.set()
            await asyncio.gather(running, waiting)
            return seen

        seen = asyncio.run(scenario())
        assert seen["counts"] == (0, 1)
        assert (seen["entry"].size, seen["entry"].pending) == (0, 1)
        assert seen["current"] is not seen["entry"]
        assert seen["current"].lock is seen["entry"].lock
        assert (seen["current"].size, seen["current"].pending) == (1, 1)
