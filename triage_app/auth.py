"""GitHub App authentication for the triage app.

Two stages:

1. **App JWT** -- RS256-signed with the app's private key, valid for up to
   ten minutes, used only to mint installation tokens and read app info.
2. **Installation token** -- scoped to one installation (tenant) and used
   for every issue, comment and label call.

Installation tokens are cached per installation until 60 seconds before
they expire.  The cache is guarded by a ``threading.Lock`` because token
requests run in worker threads.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime

import jwt
import requests

TOKEN_EXPIRY_MARGIN_SECONDS = 60
JWT_EXPIRY_SECONDS = 600
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
GITHUB_API_BASE = "https://api.github.com"
REQUEST_TIMEOUT_SECONDS = 30


def _validate_installation_id(installation_id: int) -> int:
    if not isinstance(installation_id, int) or isinstance(installation_id, bool):
        raise ValueError(f"installation_id must be an integer, got {type(installation_id).__name__}")
    if installation_id <= 0:
        raise ValueError(f"installation_id must be a positive integer, got {installation_id}")
    return installation_id


class GitHubAppAuth:
    def __init__(self, app_id: int, private_key: str, api_base: str = GITHUB_API_BASE) -> None:
        self._app_id = app_id
        self._private_key = private_key
        self.api_base = api_base.rstrip("/")
        self._token_cache: dict[int, tuple[str, float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_key_file(cls, app_id: int, key_path: str, api_base: str = GITHUB_API_BASE) -> GitHubAppAuth:
        with open(key_path) as f:
            private_key = f.read()
        return cls(app_id, private_key, api_base)

    def generate_jwt(self) -> str:
        now = int(time.time())
        payload = {
            "iat": now - 60,
            "exp": now + JWT_EXPIRY_SECONDS,
            "iss": str(self._app_id),
        }
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    def _app_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.generate_jwt()}",
            "Accept": "application/vnd.github+json",
        }

    def get_installation_token(self, installation_id: int) -> str:
        safe_id = _validate_installation_id(installation_id)
        with self._lock:
            cached = self._token_cache.get(safe_id)
            if cached:
                token, expires_at = cached
                if time.time() < expires_at - TOKEN_EXPIRY_MARGIN_SECONDS:
                    return token

        resp = requests.post(
            f"{self.api_base}/app/installations/{safe_id}/access_tokens",
            headers=self._app_headers(),
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        data = resp.json()
        token = data["token"]
        expires_at_str = data.get("expires_at", "")
        if expires_at_str:
            expires_at = datetime.fromisoformat(expires_at_str.replace("Z", "+00:00")).timestamp()
        else:
            expires_at = time.time() + DEFAULT_TOKEN_LIFETIME_SECONDS

        with self._lock:
            self._token_cache[safe_id] = (token, expires_at)
        return token

    def invalidate_token(self, installation_id: int) -> None:
        with self._lock:
            self._token_cache.pop(installation_id, None)

    def get_app_info(self) -> dict:
        resp = requests.get(
            f"{self.api_base}/app",
            headers=self._app_headers(),
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return resp.json()
