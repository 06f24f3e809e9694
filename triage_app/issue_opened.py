"""Duplicate triage for newly opened issues.

One ``issues.opened`` delivery becomes at most one triage comment:

1. claim the issue (marker scan, then the atomic cooldown claim);
2. embed the issue text and look up its nearest neighbours;
3. resolve the distance cutoff (learned, adaptive or configured) and filter;
4. index the new issue so later issues can match it;
5. rank the surviving candidates and post a single comment;
6. record the action and apply the duplicate label.

The claim, the neighbour lookup and the comment post propagate errors.
Indexing and everything after the post fail open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from triage_app.config import TriageSettings
from triage_app.duplicate_detector import DuplicateDetector
from triage_app.embeddings import build_issue_embedding_text
from triage_app.finding_prioritizer import candidate_features, prioritize_findings
from triage_app.idempotency import IdempotencyCoordinator
from triage_app.interfaces import EmbeddingProvider, IssueCommentProvider, ThresholdFeedbackStore
from triage_app.log_utils import sanitize_log
from triage_app.models import CandidateRecord, IssueEvent, TriageState
from triage_app.threshold_learner import ThresholdResolution, ThresholdResolver
from triage_app.triage_comment import build_triage_marker, format_triage_comment

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriageResult:
    state: TriageState
    reason: str
    candidates: list[CandidateRecord] = field(default_factory=list)
    resolution: ThresholdResolution | None = None
    comment_external_id: int | None = None


class IssueTriageService:
    def __init__(
        self,
        coordinator: IdempotencyCoordinator,
        detector: DuplicateDetector,
        comments_factory: Callable[[int], IssueCommentProvider],
        settings: Callable[[], TriageSettings],
        embedder: EmbeddingProvider | None = None,
        feedback_store: ThresholdFeedbackStore | None = None,
        index=None,
    ) -> None:
        self._coordinator = coordinator
        self._detector = detector
        self._comments_factory = comments_factory
        self._settings = settings
        self._embedder = embedder
        self._feedback_store = feedback_store
        self._index = index

    def _resolver(self, settings: TriageSettings) -> ThresholdResolver:
        return ThresholdResolver(
            self._feedback_store,
            min_samples=settings.learning_min_samples,
            adaptive_config=settings.adaptive,
            learning_enabled=settings.learning_enabled,
        )

    async def _index_issue(self, event: IssueEvent, embedding: list[float]) -> None:
        if self._index is None:
            return
        try:
            await self._index.upsert_issue(
                event.repo, event.issue_number, event.title, event.state, embedding,
            )
        except Exception as exc:
            log.warning(
                "Failed to index %s#%d: %s", sanitize_log(event.repo), event.issue_number, exc,
                extra={"repo": event.repo, "issue_number": event.issue_number},
            )

    async def _apply_label(
        self, comments: IssueCommentProvider, event: IssueEvent, label: str,
    ) -> bool:
        try:
            await comments.apply_label(event.repo, event.issue_number, label)
            return True
        except Exception as exc:
            log.warning(
                "Failed to apply label %r to %s#%d: %s",
                label, sanitize_log(event.repo), event.issue_number, exc,
                extra={"repo": event.repo, "issue_number": event.issue_number},
            )
            return False

    async def handle_issue_opened(self, event: IssueEvent) -> TriageResult:
        ctx = {
            "repo": event.repo,
            "issue_number": event.issue_number,
            "delivery_id": event.delivery_id,
            "installation_id": event.installation_id,
        }
        settings = self._settings().for_repo(event.repo)
        if not settings.enabled or not settings.auto_triage_on_open:
            log.debug("Triage disabled for %s", sanitize_log(event.repo), extra=ctx)
            return TriageResult(TriageState.SKIPPED, "disabled")
        if event.is_pull_request:
            return TriageResult(TriageState.SKIPPED, "pull_request")

        comments = self._comments_factory(event.installation_id)
        decision = await self._coordinator.claim(
            comments, event.repo, event.issue_number, event.delivery_id, settings.cooldown_minutes,
        )
        if not decision.claimed:
            return TriageResult(TriageState.SKIPPED, decision.reason)

        embedding = None
        if self._embedder is not None:
            embedding = await self._embedder.generate(
                build_issue_embedding_text(event.title, event.body)
            )
        if embedding is None:
            log.info("No embedding for %s#%d, nothing to compare",
                     sanitize_log(event.repo), event.issue_number, extra=ctx)
            await self._coordinator.record_action(event.repo, event.issue_number, 0, None)
            return TriageResult(TriageState.ACTION_TAKEN, "no_embedding")

        detection = await self._detector.detect(
            embedding,
            event.repo,
            event.issue_number,
            settings.duplicate_threshold,
            settings.max_duplicate_candidates,
            self._resolver(settings),
        )
        await self._index_issue(event, embedding)

        if not detection.candidates:
            await self._coordinator.record_action(event.repo, event.issue_number, 0, None)
            return TriageResult(TriageState.ACTION_TAKEN, "no_duplicates", resolution=detection.resolution)

        ranking = prioritize_findings(
            detection.candidates,
            max_comments=settings.max_duplicate_candidates,
            weights=settings.priority_weights,
            features=candidate_features(detection.resolution.threshold),
        )
        body = format_triage_comment(
            ranking.selected, build_triage_marker(event.repo, event.issue_number),
        )
        posted = await comments.post_comment(event.repo, event.issue_number, body)
        selected = [s.item for s in ranking.selected]

        state = await self._coordinator.record_action(
            event.repo, event.issue_number, len(selected), posted.external_id,
        )
        await self._apply_label(comments, event, settings.duplicate_label)

        log.info(
            "Triaged %s#%d: %d possible duplicate(s)",
            sanitize_log(event.repo), event.issue_number, len(selected),
            extra={**ctx, **detection.resolution.log_fields()},
        )
        return TriageResult(
            state,
            "duplicates_found",
            candidates=selected,
            resolution=detection.resolution,
            comment_external_id=posted.external_id,
        )
