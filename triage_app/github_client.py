"""GitHub REST client for the issue and comment calls triage needs.

Implements ``IssueCommentProvider`` for one installation.  ``requests`` is
blocking, so each HTTP call runs in a worker thread; the surrounding retry
loop stays on the event loop so backoff sleeps never hold a thread.

Status mapping:

==========================================  ===============================
response                                    raised
==========================================  ===============================
429, or 403 with an exhausted rate limit    ``RateLimitedError``
5xx, connection error, timeout              ``TransientCollaboratorError``
401                                         ``PermanentCollaboratorError``
                                            (``unauthorized``)
403                                         ... (``permission_denied``)
404                                         ... (``not_found``)
422                                         ... (``validation_failed``)
any other non-2xx                           ... (``http_error``)
==========================================  ===============================

Comment creation is retried on rate limits only: a 5xx or dropped
connection may still have created the comment.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable

import requests

from triage_app.auth import GitHubAppAuth
from triage_app.errors import (
    PermanentCollaboratorError,
    RateLimitedError,
    TransientCollaboratorError,
)
from triage_app.models import Comment, PostedComment
from triage_app.retry_utils import BASE_DELAY, MAX_DELAY, MAX_RETRIES, retry_after_seconds, retry_async

log = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_COMMENTS_PER_PAGE = 100

_REPO_FULL_NAME_RE = re.compile(r"^[\w.-]+/[\w.-]+$")

_PERMANENT_STATUS_CODES = {
    401: "unauthorized",
    403: "permission_denied",
    404: "not_found",
    422: "validation_failed",
}


def gh_headers(token: str = "") -> dict[str, str]:
    h: dict[str, str] = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        h["Authorization"] = f"token {token}"
    return h


def validate_repo_full_name(repo: str) -> str:
    if not _REPO_FULL_NAME_RE.match(repo or "") or any(p in (".", "..") for p in repo.split("/")):
        raise ValueError(f"Invalid repository name: {repo!r}")
    return repo


def _is_rate_limited(resp: requests.Response) -> bool:
    if resp.status_code == 429:
        return True
    if resp.status_code != 403:
        return False
    if resp.headers.get("X-RateLimit-Remaining") == "0" or "Retry-After" in resp.headers:
        return True
    return "rate limit" in (resp.text or "").lower()


def raise_for_github_status(resp: requests.Response) -> None:
    """Translate a non-2xx GitHub response into the app's error taxonomy."""
    status = resp.status_code
    if status < 300:
        return
    if _is_rate_limited(resp):
        raise RateLimitedError(
            f"GitHub rate limit hit (status {status})",
            retry_after=retry_after_seconds(resp.headers),
        )
    if status >= 500:
        raise TransientCollaboratorError(f"GitHub API returned {status}")
    code = _PERMANENT_STATUS_CODES.get(status, "http_error")
    raise PermanentCollaboratorError(code, f"GitHub API returned {status}", status=status)


class GitHubIssuesClient:
    def __init__(
        self,
        auth: GitHubAppAuth,
        installation_id: int,
        *,
        comments_per_page: int = DEFAULT_COMMENTS_PER_PAGE,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._auth = auth
        self.installation_id = installation_id
        self.comments_per_page = comments_per_page
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            token = self._auth.get_installation_token(self.installation_id)
        except requests.exceptions.HTTPError as exc:
            if exc.response is not None:
                raise_for_github_status(exc.response)
            raise TransientCollaboratorError(f"Token request failed: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise TransientCollaboratorError(f"Token request failed: {exc}") from exc

        try:
            resp = requests.request(
                method,
                f"{self._auth.api_base}{path}",
                headers=gh_headers(token),
                timeout=REQUEST_TIMEOUT_SECONDS,
                **kwargs,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
            raise TransientCollaboratorError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 401:
            self._auth.invalidate_token(self.installation_id)
        raise_for_github_status(resp)
        return resp

    async def _call(
        self,
        method: str,
        path: str,
        retry_on: tuple[type[TransientCollaboratorError], ...] = (TransientCollaboratorError,),
        **kwargs: Any,
    ) -> requests.Response:
        return await retry_async(
            lambda: asyncio.to_thread(self._request, method, path, **kwargs),
            description=f"{method} {path}",
            max_retries=self._max_retries,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            sleep=self._sleep,
            retry_on=retry_on,
        )

    async def list_recent_comments(self, repo: str, issue_number: int) -> list[Comment]:
        validate_repo_full_name(repo)
        resp = await self._call(
            "GET",
            f"/repos/{repo}/issues/{int(issue_number)}/comments",
            params={"per_page": self.comments_per_page},
        )
        return [
            Comment(
                id=item.get("id", 0),
                body=item.get("body") or "",
                author=(item.get("user") or {}).get("login", ""),
            )
            for item in resp.json()
        ]

    async def post_comment(self, repo: str, issue_number: int, body: str) -> PostedComment:
        validate_repo_full_name(repo)
        resp = await self._call(
            "POST",
            f"/repos/{repo}/issues/{int(issue_number)}/comments",
            retry_on=(RateLimitedError,),
            json={"body": body},
        )
        return PostedComment(external_id=resp.json()["id"])

    async def apply_label(self, repo: str, issue_number: int, label: str) -> None:
        validate_repo_full_name(repo)
        await self._call(
            "POST",
            f"/repos/{repo}/issues/{int(issue_number)}/labels",
            json={"labels": [label]},
        )
