"""Issue text embeddings from an OpenAI-compatible ``/embeddings`` endpoint.

Embedding is best effort: any failure is logged and reported as ``None`` so
that triage quietly finds no duplicates instead of failing the task.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import requests

from triage_app.errors import RateLimitedError, TransientCollaboratorError
from triage_app.retry_utils import retry_after_seconds, retry_async

log = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30
MAX_EMBEDDING_INPUT_CHARS = 8000
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


def build_issue_embedding_text(title: str, body: str | None) -> str:
    text = title.strip()
    if body and body.strip():
        text = f"{text}\n\n{body.strip()}"
    return text[:MAX_EMBEDDING_INPUT_CHARS]


def headers(api_key: str) -> dict[str, str]:
    h = {"Content-Type": "application/json"}
    if api_key:
        h["Authorization"] = f"Bearer {api_key}"
    return h


class HttpEmbeddingProvider:
    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        model: str = DEFAULT_EMBEDDING_MODEL,
        max_retries: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self._max_retries = max_retries
        self._sleep = sleep

    def _post(self, text: str) -> list[float]:
        try:
            resp = requests.post(
                f"{self.api_url}/embeddings",
                headers=headers(self._api_key),
                json={"input": text, "model": self.model},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
            raise TransientCollaboratorError(f"embedding request failed: {exc}") from exc
        if resp.status_code == 429:
            raise RateLimitedError(
                "embedding API rate limit hit",
                retry_after=retry_after_seconds(resp.headers),
            )
        if resp.status_code >= 500:
            raise TransientCollaboratorError(f"embedding API returned {resp.status_code}")
        resp.raise_for_status()
        return [float(x) for x in resp.json()["data"][0]["embedding"]]

    async def generate(self, text: str) -> list[float] | None:
        if not text.strip():
            return None
        try:
            return await retry_async(
                lambda: asyncio.to_thread(self._post, text),
                description="embedding request",
                max_retries=self._max_retries,
                sleep=self._sleep,
            )
        except Exception as exc:
            log.warning("Embedding generation failed (fail-open): %s", exc)
            return None
