"""Triage comment body and the hidden idempotency marker."""

from __future__ import annotations

from triage_app.models import CandidateRecord, ScoredItem

TRIAGE_MARKER_PREFIX = "triage-app:triage"


def marker_key(repo: str, issue_number: int) -> str:
    return f"{TRIAGE_MARKER_PREFIX}:{repo}:{issue_number}"


def build_triage_marker(repo: str, issue_number: int) -> str:
    return f"<!-- {marker_key(repo, issue_number)} -->"


def has_triage_marker(body: str | None, repo: str, issue_number: int) -> bool:
    # match the delimited marker so issue 1 never matches issue 12's marker
    return bool(body) and build_triage_marker(repo, issue_number) in body


def similarity_pct(distance: float) -> int:
    return round((1 - distance) * 100)


def _escape_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def format_triage_comment(ranked: list[ScoredItem], marker: str) -> str:
    """Render ranked duplicate candidates as a compact markdown table."""
    candidates: list[CandidateRecord] = [s.item for s in ranked]
    lines = [
        "Possible duplicates detected:",
        "",
        "| Issue | Title | Similarity | Status |",
        "|-------|-------|------------|--------|",
    ]
    for c in candidates:
        lines.append(
            f"| #{c.id} | {_escape_cell(c.title)} | {similarity_pct(c.distance)}% | {c.state} |"
        )

    if candidates and all(c.state == "closed" for c in candidates):
        lines.append("")
        lines.append("All matches are closed issues -- the problem may already be resolved.")

    lines.append("")
    lines.append(marker)
    return "\n".join(lines)
