"""Weighted scoring and stable top-K selection.

Used to cap noisy output (duplicate candidates, review findings) to the
handful a human will actually read.  Every sub-score is normalised to
``[0, 1]`` before weighting:

=============  =====================================================
component      normalisation
=============  =====================================================
severity       fixed ordinal map (unknown values score 0.5)
file_risk      ``file_risk_score / 100`` clamped to ``[0, 1]``
category       fixed ordinal map (unknown values score 0.5)
recurrence     ``min(recurrence_count, 5) / 5``
=============  =====================================================

Ranking is by descending score with ties broken by input position, so the
same input always yields the same selection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from triage_app.models import CandidateRecord, ScoredItem


@dataclass(frozen=True)
class PriorityWeights:
    severity: float = 0.45
    file_risk: float = 0.30
    category: float = 0.15
    recurrence: float = 0.10

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> PriorityWeights:
        if not raw:
            return cls()
        defaults = cls()
        values = {}
        for name in ("severity", "file_risk", "category", "recurrence"):
            try:
                values[name] = float(raw.get(name, getattr(defaults, name)))
            except (TypeError, ValueError):
                values[name] = getattr(defaults, name)
        return cls(**values)


DEFAULT_PRIORITY_WEIGHTS = PriorityWeights()

SEVERITY_SCORES: dict[str, float] = {
    "critical": 1.0,
    "major": 0.8,
    "medium": 0.3,
    "minor": 0.15,
}

CATEGORY_SCORES: dict[str, float] = {
    "security": 0.8,
    "correctness": 0.8,
    "performance": 0.6,
    "documentation": 0.35,
    "style": 0.25,
}

UNKNOWN_ORDINAL_SCORE = 0.5
RECURRENCE_SATURATION = 5
SCORE_DECIMALS = 4


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def _sanitize_weights(weights: PriorityWeights | None) -> PriorityWeights:
    candidate = weights or DEFAULT_PRIORITY_WEIGHTS
    sanitized = PriorityWeights(
        severity=max(0.0, candidate.severity),
        file_risk=max(0.0, candidate.file_risk),
        category=max(0.0, candidate.category),
        recurrence=max(0.0, candidate.recurrence),
    )
    total = sanitized.severity + sanitized.file_risk + sanitized.category + sanitized.recurrence
    if not total > 0:
        return DEFAULT_PRIORITY_WEIGHTS
    return sanitized


def finding_features(finding: Any) -> dict[str, float]:
    """Normalised sub-scores for a ``Finding`` or any object with the same attributes."""
    severity = str(getattr(finding, "severity", "") or "").strip().lower()
    category = str(getattr(finding, "category", "") or "").strip().lower()
    risk = getattr(finding, "file_risk_score", None)
    recurrence = getattr(finding, "recurrence_count", None)
    return {
        "severity": SEVERITY_SCORES.get(severity, UNKNOWN_ORDINAL_SCORE),
        "file_risk": _clamp01((risk or 0) / 100),
        "category": CATEGORY_SCORES.get(category, UNKNOWN_ORDINAL_SCORE),
        "recurrence": _clamp01(min(max(recurrence or 0, 0), RECURRENCE_SATURATION) / RECURRENCE_SATURATION),
    }


def candidate_features(threshold: float) -> Callable[[CandidateRecord], dict[str, float]]:
    """Feature extractor that ranks duplicate candidates.

    Closeness within the cutoff stands in for severity, and a closed
    candidate ranks as the more actionable category since it may already
    hold the answer.
    """

    def extract(candidate: CandidateRecord) -> dict[str, float]:
        closeness = 1.0 - candidate.distance / threshold if threshold > 0 else 0.0
        return {
            "severity": _clamp01(closeness),
            "file_risk": 0.0,
            "category": 1.0 if candidate.state == "closed" else UNKNOWN_ORDINAL_SCORE,
            "recurrence": 0.0,
        }

    return extract


def score_finding(
    item: Any,
    weights: PriorityWeights | None = None,
    features: Callable[[Any], dict[str, float]] = finding_features,
) -> tuple[float, dict[str, float]]:
    """Return ``(score, breakdown)`` where breakdown holds each weighted contribution."""
    w = _sanitize_weights(weights)
    values = features(item)
    breakdown = {
        "severity": values["severity"] * w.severity,
        "file_risk": values["file_risk"] * w.file_risk,
        "category": values["category"] * w.category,
        "recurrence": values["recurrence"] * w.recurrence,
    }
    return round(sum(breakdown.values()), SCORE_DECIMALS), breakdown


@dataclass(frozen=True)
class PrioritizeStats:
    findings_scored: int
    top_score: float | None
    threshold_score: float | None


@dataclass(frozen=True)
class PrioritizeResult:
    ranked: list[ScoredItem]
    selected: list[ScoredItem]
    stats: PrioritizeStats


def prioritize_findings(
    items: Sequence[Any],
    max_comments: int | None = None,
    weights: PriorityWeights | None = None,
    features: Callable[[Any], dict[str, float]] = finding_features,
) -> PrioritizeResult:
    if max_comments is None or not math.isfinite(max_comments):
        limit = len(items)
    else:
        limit = max(0, math.floor(max_comments))

    scored = []
    for index, item in enumerate(items):
        score, breakdown = score_finding(item, weights, features)
        scored.append(ScoredItem(item=item, score=score, score_breakdown=breakdown, original_index=index))

    ranked = sorted(scored, key=lambda s: (-s.score, s.original_index))
    selected = ranked[:limit]

    return PrioritizeResult(
        ranked=ranked,
        selected=selected,
        stats=PrioritizeStats(
            findings_scored=len(items),
            top_score=ranked[0].score if ranked else None,
            threshold_score=selected[-1].score if selected else None,
        ),
    )
