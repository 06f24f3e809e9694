"""Tests for triage_app/webhook_handler.py -- signature checks and routing."""

import hashlib
import hmac
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from triage_app.errors import MalformedEventError
from triage_app.webhook_handler import parse_issue_event, route_event, verify_signature


def _sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _payload(action="opened", **issue_overrides):
    issue = {
        "number": 12,
        "title": "Crash on save",
        "body": "Steps...",
        "state": "open",
        "state_reason": None,
        "labels": [{"name": "bug"}],
    }
    issue.update(issue_overrides)
    return {
        "action": action,
        "issue": issue,
        "repository": {"full_name": "octo/app"},
        "installation": {"id": 77},
    }


class TestVerifySignature:
    def test_valid(self):
        body = b'{"a": 1}'
        assert verify_signature(body, _sign(body, "s"), "s")

    def test_wrong_secret(self):
        body = b'{"a": 1}'
        assert not verify_signature(body, _sign(body, "other"), "s")

    def test_missing_signature_or_secret(self):
        assert not verify_signature(b"{}", "", "s")
        assert not verify_signature(b"{}", "sha256=abc", "")


class TestParseIssueEvent:
    def test_fields(self):
        event = parse_issue_event("d-1", _payload())
        assert event.delivery_id == "d-1"
        assert event.installation_id == 77
        assert event.repo == "octo/app"
        assert event.issue_number == 12
        assert event.labels == ("bug",)
        assert event.is_pull_request is False

    def test_pull_request_flag(self):
        event = parse_issue_event("d-1", _payload(pull_request={"url": "x"}))
        assert event.is_pull_request is True

    def test_null_body(self):
        assert parse_issue_event("d-1", _payload(body=None)).body == ""

    @pytest.mark.parametrize("mutate", [
        lambda p: p.pop("issue"),
        lambda p: p.pop("installation"),
        lambda p: p["repository"].pop("full_name"),
        lambda p: p["issue"].update(number="12"),
        lambda p: p["issue"].update(number=0),
        lambda p: p["installation"].update(id=True),
        lambda p: p["issue"].update(labels=5),
        lambda p: p["issue"].update(title=42),
        lambda p: p["issue"].update(body=["not", "text"]),
        lambda p: p["issue"].update(state_reason=1),
    ])
    def test_malformed(self, mutate):
        payload = _payload()
        mutate(payload)
        with pytest.raises(MalformedEventError):
            parse_issue_event("d-1", payload)

    def test_missing_delivery_id(self):
        with pytest.raises(MalformedEventError):
            parse_issue_event("", _payload())


class TestRouteEvent:
    def test_opened_accepted(self):
        result = route_event("issues", "d-1", _payload("opened"))
        assert result["status"] == "accepted"
        assert result["route"] == "issues.opened"
        assert result["event"].issue_number == 12

    def test_closed_accepted(self):
        result = route_event("issues", "d-1", _payload("closed", state_reason="completed"))
        assert result["route"] == "issues.closed"
        assert result["event"].state_reason == "completed"

    @pytest.mark.parametrize("event_type,action", [
        ("issues", "edited"),
        ("issue_comment", "created"),
        ("ping", ""),
    ])
    def test_other_events_ignored(self, event_type, action):
        result = route_event(event_type, "d-1", {"action": action})
        assert result["status"] == "ignored"

    def test_routed_but_malformed_raises(self):
        with pytest.raises(MalformedEventError):
            route_event("issues", "d-1", {"action": "opened"})
