"""Data types shared across the triage pipeline.

``TriageClaim``, ``ThresholdPosterior`` and ``IssueOutcome`` mirror rows in
the SQLite store.  The rest are ephemeral values computed per request.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class TriageState(str, enum.Enum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"
    ACTION_TAKEN = "action_taken"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TriageClaim:
    id: int
    repo: str
    issue_number: int
    delivery_id: str
    triaged_at: datetime
    duplicate_count: int = 0
    comment_external_id: int | None = None


@dataclass(frozen=True)
class ClaimResult:
    claimed: bool
    row: TriageClaim | None = None


@dataclass(frozen=True)
class ThresholdPosterior:
    alpha: float
    beta: float
    sample_count: int

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)


@dataclass(frozen=True)
class CandidateRecord:
    id: int
    distance: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return str(self.metadata.get("title", ""))

    @property
    def state(self) -> str:
        return str(self.metadata.get("state", "open"))


@dataclass(frozen=True)
class Comment:
    id: int
    body: str
    author: str = ""


@dataclass(frozen=True)
class PostedComment:
    external_id: int


@dataclass(frozen=True)
class Finding:
    file_path: str
    title: str
    severity: str
    category: str
    file_risk_score: float | None = None
    recurrence_count: int | None = None


@dataclass(frozen=True)
class ScoredItem:
    item: Any
    score: float
    score_breakdown: dict[str, float]
    original_index: int


@dataclass(frozen=True)
class IssueOutcome:
    repo: str
    issue_number: int
    outcome: str
    predicted_duplicate: bool
    confirmed_duplicate: bool
    state_reason: str | None
    label_names: list[str]
    delivery_id: str
    triage_id: int | None = None


@dataclass(frozen=True)
class IssueEvent:
    """The subset of an ``issues`` webhook the handlers act on."""

    delivery_id: str
    installation_id: int
    action: str
    repo: str
    issue_number: int
    title: str
    body: str
    state: str = "open"
    state_reason: str | None = None
    labels: tuple[str, ...] = ()
    is_pull_request: bool = False
