"""Tests for triage_app/retry_utils.py."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from triage_app.errors import PermanentCollaboratorError, RateLimitedError, TransientCollaboratorError
from triage_app.retry_utils import exponential_backoff_delay, retry_after_seconds, retry_async


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _flaky(failures, result="ok"):
    calls = {"n": 0}

    async def operation():
        calls["n"] += 1
        if failures:
            raise failures.pop(0)
        return result

    return operation, calls


class TestExponentialBackoff:
    def test_delay_increases_with_attempt(self):
        d1 = exponential_backoff_delay(1, base=1.0, max_jitter=0)
        d2 = exponential_backoff_delay(2, base=1.0, max_jitter=0)
        assert d1 == 2.0
        assert d2 == 4.0

    def test_capped(self):
        assert exponential_backoff_delay(10, base=1.0, max_jitter=0, max_delay=30) == 30

    def test_jitter_within_bounds(self):
        for _ in range(50):
            assert 2.0 <= exponential_backoff_delay(1, base=1.0, max_jitter=0.5) <= 2.5


class TestRetryAfterSeconds:
    def test_retry_after_header(self):
        assert retry_after_seconds({"Retry-After": "12"}) == 12.0

    def test_rate_limit_reset(self):
        headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1100"}
        assert retry_after_seconds(headers, now=1000) == 100.0

    def test_reset_ignored_while_quota_remains(self):
        headers = {"X-RateLimit-Remaining": "10", "X-RateLimit-Reset": "1100"}
        assert retry_after_seconds(headers, now=1000) is None

    def test_garbage(self):
        assert retry_after_seconds({"Retry-After": "soon"}) is None


class TestRetryAsync:
    def test_success_first_try(self):
        sleep = RecordingSleep()
        op, calls = _flaky([])
        assert asyncio.run(retry_async(op, sleep=sleep)) == "ok"
        assert calls["n"] == 1
        assert sleep.delays == []

    def test_retries_transient(self):
        sleep = RecordingSleep()
        op, calls = _flaky([TransientCollaboratorError("502"), TransientCollaboratorError("503")])
        assert asyncio.run(retry_async(op, max_retries=3, sleep=sleep, max_jitter=0)) == "ok"
        assert calls["n"] == 3
        assert sleep.delays == [2.0, 4.0]

    def test_raises_after_exhaustion(self):
        sleep = RecordingSleep()
        op, calls = _flaky([TransientCollaboratorError("x")] * 5)
        with pytest.raises(TransientCollaboratorError):
            asyncio.run(retry_async(op, max_retries=3, sleep=sleep))
        assert calls["n"] == 3

    def test_permanent_not_retried(self):
        op, calls = _flaky([PermanentCollaboratorError("not_found")])
        with pytest.raises(PermanentCollaboratorError):
            asyncio.run(retry_async(op, sleep=RecordingSleep()))
        assert calls["n"] == 1

    def test_retry_after_honoured_and_capped(self):
        sleep = RecordingSleep()
        op, _ = _flaky([RateLimitedError("slow", retry_after=5), RateLimitedError("slow", retry_after=500)])
        asyncio.run(retry_async(op, max_retries=3, sleep=sleep, max_delay=30))
        assert sleep.delays == [5, 30]

    def test_retry_on_restricts_errors(self):
        op, calls = _flaky([TransientCollaboratorError("502")])
        with pytest.raises(TransientCollaboratorError):
            asyncio.run(retry_async(op, sleep=RecordingSleep(), retry_on=(RateLimitedError,)))
        assert calls["n"] == 1

    def test_zero_retries_still_attempts_once(self):
        op, calls = _flaky([])
        assert asyncio.run(retry_async(op, max_retries=0, sleep=RecordingSleep())) == "ok"
        assert calls["n"] == 1
