"""Async facades over the SQLite helpers in ``database``.

``sqlite3`` blocks, so every call runs in a worker thread with its own
short-lived connection.  The event loop never holds a connection across an
``await``.
"""

from __future__ import annotations

import asyncio
import math
import pathlib
from datetime import datetime
from typing import Any, Callable, TypeVar

from triage_app import database
from triage_app.models import (
    CandidateRecord,
    ClaimResult,
    IssueOutcome,
    ThresholdPosterior,
    TriageClaim,
)

T = TypeVar("T")


def _claim_from_row(row: dict) -> TriageClaim:
    return TriageClaim(
        id=row["id"],
        repo=row["repo"],
        issue_number=row["issue_number"],
        delivery_id=row["delivery_id"],
        triaged_at=database.parse_timestamp(row["triaged_at"]),
        duplicate_count=row["duplicate_count"],
        comment_external_id=row["comment_external_id"],
    )


class _SqliteBacked:
    def __init__(
        self,
        db_path: pathlib.Path | str | None = None,
        clock: Callable[[], datetime] = database.utcnow,
    ) -> None:
        self.db_path = pathlib.Path(db_path) if db_path else database.DB_PATH
        self._clock = clock

    def _run_sync(self, fn: Callable[..., T], *args: Any) -> T:
        with database.db_connection(self.db_path) as conn:
            return fn(conn, *args)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._run_sync, fn, *args)


class TriageStore(_SqliteBacked):
    """Claim store, threshold feedback store and outcome log in one database."""

    async def claim(
        self, repo: str, issue_number: int, delivery_id: str, cooldown_minutes: int,
    ) -> ClaimResult:
        row = await self._run(
            database.claim_issue_triage,
            repo, issue_number, delivery_id, cooldown_minutes, self._clock(),
        )
        if row is None:
            return ClaimResult(claimed=False)
        return ClaimResult(claimed=True, row=_claim_from_row(row))

    async def get_claim(self, repo: str, issue_number: int) -> TriageClaim | None:
        row = await self._run(database.get_triage_claim, repo, issue_number)
        return _claim_from_row(row) if row else None

    async def record_action(
        self,
        repo: str,
        issue_number: int,
        duplicate_count: int,
        comment_external_id: int | None,
    ) -> bool:
        return await self._run(
            database.record_triage_action,
            repo, issue_number, duplicate_count, comment_external_id,
        )

    async def get_posterior(self, repo: str) -> ThresholdPosterior | None:
        row = await self._run(database.get_threshold_posterior, repo)
        if row is None:
            return None
        return ThresholdPosterior(
            alpha=float(row["alpha"]),
            beta=float(row["beta"]),
            sample_count=int(row["sample_count"]),
        )

    async def record_observation(self, repo: str, correct: bool) -> None:
        await self._run(database.record_threshold_observation, repo, correct, self._clock())

    async def record_outcome(self, outcome: IssueOutcome) -> int | None:
        payload = {
            "repo": outcome.repo,
            "issue_number": outcome.issue_number,
            "triage_id": outcome.triage_id,
            "outcome": outcome.outcome,
            "predicted_duplicate": outcome.predicted_duplicate,
            "confirmed_duplicate": outcome.confirmed_duplicate,
            "state_reason": outcome.state_reason,
            "label_names": outcome.label_names,
            "delivery_id": outcome.delivery_id,
        }
        return await self._run(database.insert_issue_outcome, payload, self._clock())


def cosine_distance(a: list[float], b: list[float]) -> float:
    """``1 - cosine_similarity``; vectors of different length or zero norm are maximally distant."""
    if len(a) != len(b) or not a:
        return 1.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 1.0
    return 1.0 - dot / norm


class SqliteIssueIndex(_SqliteBacked):
    """Brute-force nearest-neighbour search over one repository's issues."""

    async def nearest_neighbors(
        self, repo: str, embedding: list[float], exclude_id: int | None, limit: int,
    ) -> list[CandidateRecord]:
        rows = await self._run(database.load_repo_embeddings, repo)
        scored = [
            CandidateRecord(
                id=row["issue_number"],
                distance=cosine_distance(embedding, row["embedding"]),
                metadata={"title": row["title"], "state": row["state"]},
            )
            for row in rows
            if row["issue_number"] != exclude_id
        ]
        scored.sort(key=lambda c: (c.distance, c.id))
        return scored[:max(0, limit)]

    async def upsert_issue(
        self, repo: str, issue_number: int, title: str, state: str, embedding: list[float],
    ) -> None:
        await self._run(
            database.upsert_issue_embedding,
            repo, issue_number, title, state, embedding, self._clock(),
        )

    async def mark_state(self, repo: str, issue_number: int, state: str) -> bool:
        return await self._run(database.update_issue_state, repo, issue_number, state)
