"""Outcome capture for closed issues.

Each ``issues.closed`` delivery is classified and stored once (keyed by
delivery id).  When the issue had been triaged the outcome also becomes an
observation for the repository's threshold posterior.  The handler fails
open: nothing here can affect what users see.
"""

from __future__ import annotations

import logging
from typing import Callable

from triage_app.config import TriageSettings
from triage_app.log_utils import sanitize_log
from triage_app.models import IssueEvent, IssueOutcome
from triage_app.threshold_learner import record_observation

log = logging.getLogger(__name__)

DUPLICATE_LABEL = "duplicate"
_STATE_REASONS = ("duplicate", "completed", "not_planned")


def classify_closure(state_reason: str | None, labels: tuple[str, ...] | list[str]) -> tuple[str, bool]:
    """Return ``(outcome, confirmed_duplicate)``.

    ``state_reason`` wins when present.  Otherwise only an exact
    ``duplicate`` label counts; ``possible-duplicate`` is our own guess.
    """
    if state_reason in _STATE_REASONS:
        return state_reason, state_reason == "duplicate"
    if DUPLICATE_LABEL in labels:
        return "duplicate", True
    return "unknown", False


class IssueOutcomeService:
    def __init__(self, store, index=None, settings: Callable[[], TriageSettings] | None = None) -> None:
        self._store = store
        self._index = index
        self._settings = settings

    def _learning_enabled(self, repo: str) -> bool:
        if self._settings is None:
            return True
        return self._settings().for_repo(repo).learning_enabled

    async def handle_issue_closed(self, event: IssueEvent) -> IssueOutcome | None:
        ctx = {"repo": event.repo, "issue_number": event.issue_number, "delivery_id": event.delivery_id}
        if event.is_pull_request:
            log.debug("Pull request closure, skipping", extra=ctx)
            return None
        try:
            return await self._capture(event, ctx)
        except Exception as exc:
            log.error(
                "Issue closed handler failed for %s#%d (non-fatal): %s",
                sanitize_log(event.repo), event.issue_number, exc, extra=ctx,
            )
            return None

    async def _capture(self, event: IssueEvent, ctx: dict) -> IssueOutcome | None:
        outcome_name, confirmed = classify_closure(event.state_reason, event.labels)
        claim = await self._store.get_claim(event.repo, event.issue_number)
        predicted = claim is not None and claim.duplicate_count > 0

        outcome = IssueOutcome(
            repo=event.repo,
            issue_number=event.issue_number,
            outcome=outcome_name,
            predicted_duplicate=predicted,
            confirmed_duplicate=confirmed,
            state_reason=event.state_reason,
            label_names=list(event.labels),
            delivery_id=event.delivery_id,
            triage_id=claim.id if claim else None,
        )
        inserted = await self._store.record_outcome(outcome)
        if inserted is None:
            log.info("Outcome already recorded for delivery, skipping", extra=ctx)
            return None

        log.info(
            "Issue outcome captured for %s#%d: %s (predicted=%s confirmed=%s)",
            sanitize_log(event.repo), event.issue_number, outcome_name, predicted, confirmed,
            extra=ctx,
        )

        if claim is not None and self._learning_enabled(event.repo):
            try:
                await record_observation(self._store, event.repo, predicted, confirmed)
            except Exception as exc:
                log.warning("Threshold observation failed: %s", exc, extra=ctx)

        if self._index is not None:
            try:
                await self._index.mark_state(event.repo, event.issue_number, "closed")
            except Exception as exc:
                log.warning("Failed to mark indexed issue closed: %s", exc, extra=ctx)
        return outcome
