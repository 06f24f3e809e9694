"""Error taxonomy shared by the triage app and its collaborators.

Transient errors are retried with bounded backoff, permanent errors carry a
stable ``code`` and are surfaced without retry, and malformed events abort
the task without any retry at all.
"""

from __future__ import annotations


class TriageError(Exception):
    """Base class for errors raised by the triage app."""


class CollaboratorError(TriageError):
    """An external collaborator (GitHub, datastore, embeddings) failed."""


class TransientCollaboratorError(CollaboratorError):
    """A failure worth retrying: network hiccup, 5xx, lock contention."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RateLimitedError(TransientCollaboratorError):
    """The provider asked us to slow down.

    ``retry_after`` holds the provider's hint in seconds when one was sent.
    """


PERMANENT_ERROR_CODES = frozenset({
    "not_found",
    "permission_denied",
    "unauthorized",
    "validation_failed",
    "http_error",
})


class PermanentCollaboratorError(CollaboratorError):
    def __init__(self, code: str, message: str = "", status: int | None = None) -> None:
        if code not in PERMANENT_ERROR_CODES:
            code = "http_error"
        super().__init__(message or code)
        self.code = code
        self.status = status


class MalformedEventError(TriageError):
    """The webhook payload is missing required fields."""
