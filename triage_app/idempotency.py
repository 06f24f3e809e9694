"""At-most-one triage action per issue per cooldown window.

Webhooks are delivered at least once and may race each other across
processes.  Three layers sit between a delivery and the comment it may
produce:

1. **Marker scan** -- best effort.  A previous run that posted but crashed
   before recording state left a hidden marker in its comment; finding it
   means the issue was already handled.  A failure to list comments is
   inconclusive and moves on to layer 2.
2. **Atomic claim** -- the correctness guarantee.  A single conditional
   upsert succeeds for exactly one caller per cooldown window.  Errors here
   propagate so the task can be retried as a whole.
3. **Outcome recording** -- best effort, after the action.  A failure is
   logged; the claim is never reverted.

Each layer returns a tagged ``Outcome`` and ``claim`` sequences them, so a
layer can be exercised on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from triage_app.interfaces import ClaimStore, IssueCommentProvider
from triage_app.log_utils import sanitize_log
from triage_app.models import TriageClaim, TriageState
from triage_app.triage_comment import has_triage_marker

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Proceed:
    claim: TriageClaim | None = None


@dataclass(frozen=True)
class Skip:
    reason: str


@dataclass(frozen=True)
class Abort:
    error: BaseException


Outcome = Union[Proceed, Skip, Abort]


@dataclass(frozen=True)
class ClaimDecision:
    state: TriageState
    reason: str
    claim: TriageClaim | None = None

    @property
    def claimed(self) -> bool:
        return self.state == TriageState.CLAIMED


class IdempotencyCoordinator:
    def __init__(self, store: ClaimStore) -> None:
        self._store = store

    async def scan_markers(
        self, comments: IssueCommentProvider | None, repo: str, issue_number: int,
    ) -> Outcome:
        if comments is None:
            return Proceed()
        try:
            recent = await comments.list_recent_comments(repo, issue_number)
        except Exception as exc:
            log.warning(
                "Comment scan failed for %s#%d, continuing to claim: %s",
                sanitize_log(repo), issue_number, exc,
                extra={"repo": repo, "issue_number": issue_number},
            )
            return Proceed()
        if any(has_triage_marker(c.body, repo, issue_number) for c in recent):
            return Skip("marker_found")
        return Proceed()

    async def atomic_claim(
        self, repo: str, issue_number: int, delivery_id: str, cooldown_minutes: int,
    ) -> Outcome:
        try:
            result = await self._store.claim(repo, issue_number, delivery_id, cooldown_minutes)
        except Exception as exc:
            return Abort(exc)
        if not result.claimed:
            return Skip("cooldown")
        return Proceed(result.row)

    async def claim(
        self,
        comments: IssueCommentProvider | None,
        repo: str,
        issue_number: int,
        delivery_id: str,
        cooldown_minutes: int,
    ) -> ClaimDecision:
        """Run the layers in order; raise when the datastore claim itself fails."""
        layers: list[Callable[[], Awaitable[Outcome]]] = [
            lambda: self.scan_markers(comments, repo, issue_number),
            lambda: self.atomic_claim(repo, issue_number, delivery_id, cooldown_minutes),
        ]
        claim: TriageClaim | None = None
        for layer in layers:
            outcome = await layer()
            if isinstance(outcome, Skip):
                log.info(
                    "Skipping %s#%d: %s", sanitize_log(repo), issue_number, outcome.reason,
                    extra={"repo": repo, "issue_number": issue_number,
                           "delivery_id": delivery_id, "reason": outcome.reason},
                )
                return ClaimDecision(TriageState.SKIPPED, outcome.reason)
            if isinstance(outcome, Abort):
                log.error(
                    "Triage claim failed for %s#%d: %s",
                    sanitize_log(repo), issue_number, outcome.error,
                    extra={"repo": repo, "issue_number": issue_number, "delivery_id": delivery_id},
                )
                raise outcome.error
            if outcome.claim is not None:
                claim = outcome.claim
        return ClaimDecision(TriageState.CLAIMED, "claimed", claim)

    async def record_action(
        self,
        repo: str,
        issue_number: int,
        duplicate_count: int,
        comment_external_id: int | None,
    ) -> TriageState:
        try:
            await self._store.record_action(repo, issue_number, duplicate_count, comment_external_id)
        except Exception as exc:
            log.warning(
                "Failed to record triage outcome for %s#%d (claim kept): %s",
                sanitize_log(repo), issue_number, exc,
                extra={"repo": repo, "issue_number": issue_number},
            )
        return TriageState.ACTION_TAKEN
