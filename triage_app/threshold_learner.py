"""Bayesian threshold learning for duplicate detection.

Each closed issue that was either flagged as a duplicate or confirmed as one
is an observation: correct predictions (TP, TN) add to ``alpha``, incorrect
ones (FP, FN) add to ``beta``.  The posterior mean ``alpha / (alpha + beta)``
is the estimated accuracy of the detector for the repository and is used
directly as the distance cutoff: an accurate detector can afford a looser
cutoff, an inaccurate one is made more selective.

Until a repository has accumulated ``min_samples`` observations the resolver
delegates to the adaptive engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Literal, Protocol

from triage_app.adaptive_threshold import (
    DEFAULT_ADAPTIVE_CONFIG,
    AdaptiveThresholdConfig,
    AdaptiveThresholdResult,
    clamp,
    compute_adaptive_threshold,
)
from triage_app.interfaces import ThresholdFeedbackStore
from triage_app.log_utils import sanitize_log

log = logging.getLogger(__name__)

ThresholdSource = Literal["learned", "configured", "adaptive", "percentile"]

DEFAULT_MIN_SAMPLES = 20
DEFAULT_LEARNED_FLOOR = 0.05
DEFAULT_LEARNED_CEILING = 0.50


@dataclass(frozen=True)
class OutcomeClassification:
    correct: bool
    quadrant: Literal["TP", "FP", "FN", "TN"]


def classify_outcome(predicted_duplicate: bool, confirmed_duplicate: bool) -> OutcomeClassification:
    if predicted_duplicate and confirmed_duplicate:
        return OutcomeClassification(True, "TP")
    if predicted_duplicate:
        return OutcomeClassification(False, "FP")
    if confirmed_duplicate:
        return OutcomeClassification(False, "FN")
    return OutcomeClassification(True, "TN")


def posterior_mean(alpha: float, beta: float) -> float:
    return alpha / (alpha + beta)


def posterior_to_threshold(alpha: float, beta: float, floor: float, ceiling: float) -> float:
    return clamp(posterior_mean(alpha, beta), floor, ceiling)


class ObservationSink(Protocol):
    async def record_observation(self, repo: str, correct: bool) -> None: ...


async def record_observation(
    sink: ObservationSink,
    repo: str,
    predicted_duplicate: bool,
    confirmed_duplicate: bool,
) -> OutcomeClassification | None:
    """Feed one closed-issue outcome into the repository's posterior.

    Pure true negatives carry no signal about duplicate detection and would
    drown the rest, so they are skipped (``None`` is returned).
    """
    if not predicted_duplicate and not confirmed_duplicate:
        log.debug("Skipping TN observation for %s", sanitize_log(repo), extra={"repo": repo})
        return None
    classification = classify_outcome(predicted_duplicate, confirmed_duplicate)
    await sink.record_observation(repo, classification.correct)
    log.info(
        "Threshold observation recorded for %s: %s",
        sanitize_log(repo), classification.quadrant,
        extra={"repo": repo},
    )
    return classification


@dataclass(frozen=True)
class ThresholdResolution:
    threshold: float
    source: ThresholdSource
    alpha: float | None = None
    beta: float | None = None
    sample_count: int | None = None
    adaptive: AdaptiveThresholdResult | None = None

    def log_fields(self) -> dict:
        fields: dict = {"threshold_source": self.source, "effective_threshold": self.threshold}
        if self.source == "learned":
            fields.update(alpha=self.alpha, beta=self.beta, sample_count=self.sample_count)
        elif self.adaptive is not None:
            fields.update(
                candidate_count=self.adaptive.candidate_count,
                gap_size=self.adaptive.gap_size,
                gap_index=self.adaptive.gap_index,
            )
        return fields


class ThresholdResolver:
    """Pick the effective distance cutoff for one repository.

    Resolution chain:

    1. learned posterior, when enabled and backed by ``min_samples``;
    2. adaptive engine over the observed neighbour distances;
    3. configured threshold, when the posterior read itself fails.
    """

    def __init__(
        self,
        feedback_store: ThresholdFeedbackStore | None,
        *,
        min_samples: int = DEFAULT_MIN_SAMPLES,
        learned_floor: float = DEFAULT_LEARNED_FLOOR,
        learned_ceiling: float = DEFAULT_LEARNED_CEILING,
        adaptive_config: AdaptiveThresholdConfig = DEFAULT_ADAPTIVE_CONFIG,
        learning_enabled: bool = True,
    ) -> None:
        self._feedback_store = feedback_store
        self.min_samples = min_samples
        self.learned_floor = learned_floor
        self.learned_ceiling = learned_ceiling
        self.adaptive_config = adaptive_config
        self.learning_enabled = learning_enabled

    async def resolve(
        self,
        repo: str,
        configured_threshold: float,
        distances: Iterable[float] = (),
    ) -> ThresholdResolution:
        if self.learning_enabled and self._feedback_store is not None:
            try:
                posterior = await self._feedback_store.get_posterior(repo)
            except Exception as exc:
                log.warning(
                    "Threshold posterior read failed for %s, using configured threshold: %s",
                    sanitize_log(repo), exc,
                    extra={"repo": repo},
                )
                return ThresholdResolution(
                    threshold=clamp(
                        configured_threshold,
                        self.adaptive_config.floor,
                        self.adaptive_config.ceiling,
                    ),
                    source="configured",
                )

            if posterior is not None and posterior.sample_count >= self.min_samples:
                threshold = posterior_to_threshold(
                    posterior.alpha, posterior.beta,
                    self.learned_floor, self.learned_ceiling,
                )
                log.info(
                    "Using learned threshold %.3f for %s (alpha=%.1f beta=%.1f n=%d)",
                    threshold, sanitize_log(repo),
                    posterior.alpha, posterior.beta, posterior.sample_count,
                    extra={"repo": repo, "threshold_source": "learned"},
                )
                return ThresholdResolution(
                    threshold=threshold,
                    source="learned",
                    alpha=posterior.alpha,
                    beta=posterior.beta,
                    sample_count=posterior.sample_count,
                )

        result = compute_adaptive_threshold(distances, configured_threshold, self.adaptive_config)
        return ThresholdResolution(
            threshold=result.threshold,
            source=result.method,
            adaptive=result,
        )
