"""GitHub webhook verification and routing.

Payloads are verified via HMAC-SHA256 before anything else reads them.

Supported events
----------------
issues.opened
    Duplicate triage for the new issue.
issues.closed
    Outcome capture for the threshold learner.

Everything else is acknowledged and ignored.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from triage_app.errors import MalformedEventError
from triage_app.log_utils import sanitize_log
from triage_app.models import IssueEvent

log = logging.getLogger(__name__)

ISSUE_OPENED = "issues.opened"
ISSUE_CLOSED = "issues.closed"

_ROUTED_EVENTS = frozenset({ISSUE_OPENED, ISSUE_CLOSED})


def verify_signature(payload_body: bytes, signature: str, secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = "sha256=" + hmac.new(
        secret.encode(), payload_body, hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


def _require(mapping: dict, key: str, kind: type, where: str):
    value = mapping.get(key) if isinstance(mapping, dict) else None
    if not isinstance(value, kind) or isinstance(value, bool):
        raise MalformedEventError(f"{where}.{key} missing or not {kind.__name__}")
    return value


def _optional(mapping: dict, key: str, kind: type, where: str, default=None):
    value = mapping.get(key)
    if value is None:
        return default
    if not isinstance(value, kind) or isinstance(value, bool):
        raise MalformedEventError(f"{where}.{key} is not {kind.__name__}")
    return value


def parse_issue_event(delivery_id: str, payload: dict) -> IssueEvent:
    """Extract the fields the issue handlers need, or raise ``MalformedEventError``."""
    if not isinstance(payload, dict):
        raise MalformedEventError("payload is not a JSON object")
    if not delivery_id:
        raise MalformedEventError("missing delivery id")

    action = _require(payload, "action", str, "payload")
    issue = _require(payload, "issue", dict, "payload")
    repository = _require(payload, "repository", dict, "payload")
    installation = _require(payload, "installation", dict, "payload")

    installation_id = _require(installation, "id", int, "installation")
    repo = _require(repository, "full_name", str, "repository")
    number = _require(issue, "number", int, "issue")
    if number <= 0 or installation_id <= 0:
        raise MalformedEventError("issue number and installation id must be positive")

    labels = tuple(
        label["name"] for label in _optional(issue, "labels", list, "issue", [])
        if isinstance(label, dict) and isinstance(label.get("name"), str)
    )
    return IssueEvent(
        delivery_id=delivery_id,
        installation_id=installation_id,
        action=action,
        repo=repo,
        issue_number=number,
        title=_optional(issue, "title", str, "issue", ""),
        body=_optional(issue, "body", str, "issue", ""),
        state=_optional(issue, "state", str, "issue", "") or "open",
        state_reason=_optional(issue, "state_reason", str, "issue"),
        labels=labels,
        is_pull_request=bool(issue.get("pull_request")),
    )


def route_event(event_type: str, delivery_id: str, payload: dict) -> dict:
    """Decide what to do with a delivery.

    Returns ``{"status": "ignored", ...}`` or ``{"status": "accepted",
    "route": ..., "event": IssueEvent}``.  Raises ``MalformedEventError`` for
    a routed event whose payload is unusable.
    """
    action = payload.get("action", "") if isinstance(payload, dict) else ""
    route = f"{event_type}.{action}"
    if route not in _ROUTED_EVENTS:
        log.debug("Ignoring unhandled event: %s", sanitize_log(route))
        return {"status": "ignored", "event": route}

    event = parse_issue_event(delivery_id, payload)
    return {"status": "accepted", "route": route, "event": event}
