"""Adaptive duplicate-distance cutoff.

Given the embedding distances of the nearest neighbours of a new issue,
pick a cutoff that separates the tight cluster of near-duplicates from the
rest of the corpus instead of relying on a fixed magic number.

Three methods, chosen by how much data there is:

- **configured** -- no candidates, or the largest gap is too small to trust;
  the configured threshold is used.
- **percentile** -- fewer than ``min_candidates_for_gap`` candidates; the
  distance at ``fallback_percentile`` of the sorted list is used.
- **adaptive** -- enough candidates and a clear gap; the distance just before
  the largest gap is used.

Whatever the method, the result is clamped to ``[floor, ceiling]``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Literal

ThresholdMethod = Literal["adaptive", "percentile", "configured"]


@dataclass(frozen=True)
class AdaptiveThresholdConfig:
    min_candidates_for_gap: int = 8
    fallback_percentile: float = 0.75
    min_gap_size: float = 0.05
    floor: float = 0.15
    ceiling: float = 0.65


DEFAULT_ADAPTIVE_CONFIG = AdaptiveThresholdConfig()


@dataclass(frozen=True)
class AdaptiveThresholdResult:
    threshold: float
    method: ThresholdMethod
    candidate_count: int
    gap_size: float | None = None
    gap_index: int | None = None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_adaptive_threshold(
    distances: Iterable[float],
    configured_threshold: float,
    config: AdaptiveThresholdConfig = DEFAULT_ADAPTIVE_CONFIG,
) -> AdaptiveThresholdResult:
    ordered = sorted(distances)
    count = len(ordered)

    if count == 0:
        return AdaptiveThresholdResult(
            threshold=clamp(configured_threshold, config.floor, config.ceiling),
            method="configured",
            candidate_count=0,
        )

    if count < config.min_candidates_for_gap:
        idx = max(0, min(math.floor(count * config.fallback_percentile), count - 1))
        return AdaptiveThresholdResult(
            threshold=clamp(ordered[idx], config.floor, config.ceiling),
            method="percentile",
            candidate_count=count,
        )

    max_gap = 0.0
    max_gap_index = 0
    for i in range(1, count):
        gap = ordered[i] - ordered[i - 1]
        # strict comparison keeps the first of equal gaps
        if gap > max_gap:
            max_gap = gap
            max_gap_index = i

    if max_gap < config.min_gap_size:
        return AdaptiveThresholdResult(
            threshold=clamp(configured_threshold, config.floor, config.ceiling),
            method="configured",
            candidate_count=count,
            gap_size=max_gap,
        )

    return AdaptiveThresholdResult(
        threshold=clamp(ordered[max_gap_index - 1], config.floor, config.ceiling),
        method="adaptive",
        candidate_count=count,
        gap_size=max_gap,
        gap_index=max_gap_index,
    )
