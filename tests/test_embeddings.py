"""Tests for triage_app/embeddings.py."""

import asyncio
import os
import sys
from unittest.mock import MagicMock, patch

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from triage_app.embeddings import (
    MAX_EMBEDDING_INPUT_CHARS,
    HttpEmbeddingProvider,
    build_issue_embedding_text,
)


async def _no_sleep(delay):
    return None


def _resp(status=200, vector=(0.1, 0.2), headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.json.return_value = {"data": [{"embedding": list(vector)}]}
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status}")
    return resp


class TestBuildText:
    def test_title_and_body(self):
        assert build_issue_embedding_text(" Crash ", "  stack trace ") == "Crash\n\nstack trace"

    def test_title_only(self):
        assert build_issue_embedding_text("Crash", None) == "Crash"

    def test_truncated(self):
        assert len(build_issue_embedding_text("t", "x" * 20000)) == MAX_EMBEDDING_INPUT_CHARS


class TestHttpEmbeddingProvider:
    @patch("triage_app.embeddings.requests.post")
    def test_generate(self, mock_post):
        mock_post.return_value = _resp(vector=(1, 2, 3))
        provider = HttpEmbeddingProvider("https://emb.example.com/v1/", api_key="k", model="m")
        assert asyncio.run(provider.generate("hello")) == [1.0, 2.0, 3.0]
        assert mock_post.call_args[0][0] == "https://emb.example.com/v1/embeddings"
        assert mock_post.call_args[1]["json"] == {"input": "hello", "model": "m"}
        assert mock_post.call_args[1]["headers"]["Authorization"] == "Bearer k"

    @patch("triage_app.embeddings.requests.post")
    def test_blank_text_skips_request(self, mock_post):
        assert asyncio.run(HttpEmbeddingProvider("https://e").generate("   ")) is None
        mock_post.assert_not_called()

    @patch("triage_app.embeddings.requests.post")
    def test_server_error_fails_open(self, mock_post):
        mock_post.return_value = _resp(503)
        provider = HttpEmbeddingProvider("https://e", max_retries=2, sleep=_no_sleep)
        assert asyncio.run(provider.generate("hello")) is None
        assert mock_post.call_count == 2

    @patch("triage_app.embeddings.requests.post")
    def test_client_error_fails_open_without_retry(self, mock_post):
        mock_post.return_value = _resp(400)
        assert asyncio.run(HttpEmbeddingProvider("https://e").generate("hello")) is None
        assert mock_post.call_count == 1

    @patch("triage_app.embeddings.requests.post")
    def test_malformed_body_fails_open(self, mock_post):
        resp = _resp()
        resp.json.return_value = {"unexpected": True}
        mock_post.return_value = resp
        assert asyncio.run(HttpEmbeddingProvider("https://e").generate("hello")) is None

    @patch("triage_app.embeddings.requests.post")
    def test_rate_limit_waits_for_retry_after(self, mock_post):
        mock_post.side_effect = [_resp(429, headers={"Retry-After": "7"}), _resp(vector=(0.5,))]
        delays = []

        async def record_sleep(delay):
            delays.append(delay)

        provider = HttpEmbeddingProvider("https://e", max_retries=2, sleep=record_sleep)
        assert asyncio.run(provider.generate("hello")) == [0.5]
        assert delays == [7.0]
