"""Nearest-neighbour duplicate detection for new issues.

Distances are embedding dissimilarities: lower means more similar, so a
candidate qualifies when its distance is at or below the cutoff.  The
adaptive cutoff is the last distance before the largest gap, and that
neighbour belongs to the cluster.  An empty result is the normal "no
duplicates" outcome, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from triage_app.interfaces import VectorSimilarityProvider
from triage_app.log_utils import sanitize_log
from triage_app.models import CandidateRecord
from triage_app.threshold_learner import ThresholdResolution, ThresholdResolver

log = logging.getLogger(__name__)

# Neighbours fetched per requested candidate; the surplus feeds the adaptive
# engine enough distances to find a gap.
LOOKUP_POOL_FACTOR = 4
MIN_LOOKUP_POOL = 10


@dataclass(frozen=True)
class DetectionResult:
    candidates: list[CandidateRecord]
    resolution: ThresholdResolution
    neighbors_scanned: int


def filter_candidates(
    neighbors: list[CandidateRecord],
    exclude_id: int | None,
    threshold: float,
    max_candidates: int,
) -> list[CandidateRecord]:
    kept = [
        c for c in neighbors
        if c.id != exclude_id and c.distance <= threshold
    ]
    kept.sort(key=lambda c: c.distance)
    return kept[:max(0, max_candidates)]


class DuplicateDetector:
    def __init__(self, vectors: VectorSimilarityProvider) -> None:
        self._vectors = vectors

    async def find(
        self,
        embedding: list[float],
        repo: str,
        exclude_id: int | None,
        threshold: float,
        max_candidates: int,
    ) -> list[CandidateRecord]:
        if max_candidates <= 0:
            return []
        neighbors = await self._vectors.nearest_neighbors(
            repo, embedding, exclude_id, max_candidates * 2,
        )
        return filter_candidates(neighbors, exclude_id, threshold, max_candidates)

    async def detect(
        self,
        embedding: list[float],
        repo: str,
        exclude_id: int | None,
        configured_threshold: float,
        max_candidates: int,
        resolver: ThresholdResolver,
    ) -> DetectionResult:
        """Look up neighbours once, resolve the cutoff from them, then filter."""
        pool = max(MIN_LOOKUP_POOL, max_candidates * LOOKUP_POOL_FACTOR)
        neighbors = await self._vectors.nearest_neighbors(repo, embedding, exclude_id, pool)
        neighbors = [c for c in neighbors if c.id != exclude_id]

        resolution = await resolver.resolve(
            repo, configured_threshold, [c.distance for c in neighbors],
        )
        candidates = filter_candidates(
            neighbors, exclude_id, resolution.threshold, max_candidates,
        )
        log.info(
            "Duplicate detection for %s: %d of %d neighbours within %.3f (%s)",
            sanitize_log(repo), len(candidates), len(neighbors),
            resolution.threshold, resolution.source,
            extra={"repo": repo, "threshold_source": resolution.source},
        )
        return DetectionResult(
            candidates=candidates,
            resolution=resolution,
            neighbors_scanned=len(neighbors),
        )
