"""Narrow collaborator interfaces consumed by the triage core.

Concrete implementations live in ``github_client``, ``store`` and
``embeddings``; tests substitute in-memory fakes.
"""

from __future__ import annotations

from typing import Protocol

from triage_app.models import (
    CandidateRecord,
    ClaimResult,
    Comment,
    PostedComment,
    ThresholdPosterior,
)


class IssueCommentProvider(Protocol):
    async def list_recent_comments(self, repo: str, issue_number: int) -> list[Comment]: ...

    async def post_comment(self, repo: str, issue_number: int, body: str) -> PostedComment: ...

    async def apply_label(self, repo: str, issue_number: int, label: str) -> None: ...


class ClaimStore(Protocol):
    async def claim(
        self, repo: str, issue_number: int, delivery_id: str, cooldown_minutes: int,
    ) -> ClaimResult: ...

    async def record_action(
        self,
        repo: str,
        issue_number: int,
        duplicate_count: int,
        comment_external_id: int | None,
    ) -> bool: ...


class VectorSimilarityProvider(Protocol):
    async def nearest_neighbors(
        self, repo: str, embedding: list[float], exclude_id: int | None, limit: int,
    ) -> list[CandidateRecord]: ...


class ThresholdFeedbackStore(Protocol):
    async def get_posterior(self, repo: str) -> ThresholdPosterior | None: ...


class EmbeddingProvider(Protocol):
    async def generate(self, text: str) -> list[float] | None: ...
