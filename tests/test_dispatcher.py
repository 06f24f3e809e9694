"""Tests for triage_app/dispatcher.py."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from triage_app.dispatcher import BackgroundLoop, EventDispatcher
from triage_app.errors import MalformedEventError
from triage_app.job_queue import PerTenantJobQueue
from triage_app.models import IssueEvent


def _event(installation_id=1, number=1):
    return IssueEvent(
        delivery_id=f"d-{number}", installation_id=installation_id, action="opened",
        repo="o/r", issue_number=number, title="t", body="",
    )


class TestDispatch:
    def test_routes_to_handler(self):
        seen = []

        async def handler(event):
            seen.append(event.issue_number)
            return "done"

        dispatcher = EventDispatcher(PerTenantJobQueue(), {"issues.opened": handler})
        assert asyncio.run(dispatcher.dispatch("issues.opened", _event(number=3))) == "done"
        assert seen == [3]

    def test_unknown_route(self):
        dispatcher = EventDispatcher(PerTenantJobQueue(), {})
        with pytest.raises(MalformedEventError):
            asyncio.run(dispatcher.dispatch("issues.edited", _event()))

    def test_queue_stats_for_idle_installation(self):
        dispatcher = EventDispatcher(PerTenantJobQueue(), {})
        assert dispatcher.queue_stats(5) == {"installation_id": 5, "queued": 0, "running": 0}


class TestBackgroundSubmit:
    def test_submit_runs_on_loop_thread(self):
        loop = BackgroundLoop()
        order = []

        async def handler(event):
            await asyncio.sleep(0.01)
            order.append(event.issue_number)
            return event.issue_number

        dispatcher = EventDispatcher(PerTenantJobQueue(), {"issues.opened": handler}, loop)
        try:
            futures = [dispatcher.submit("issues.opened", _event(number=n)) for n in (1, 2, 3)]
            results = [f.result(timeout=5) for f in futures]
        finally:
            dispatcher.shutdown()
        assert results == [1, 2, 3]
        assert order == [1, 2, 3]

    def test_failed_task_surfaces_on_future(self):
        loop = BackgroundLoop()

        async def handler(event):
            raise RuntimeError("boom")

        dispatcher = EventDispatcher(PerTenantJobQueue(), {"issues.opened": handler}, loop)
        try:
            future = dispatcher.submit("issues.opened", _event())
            with pytest.raises(RuntimeError):
                future.result(timeout=5)
        finally:
            dispatcher.shutdown()
