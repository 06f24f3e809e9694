"""Configuration for the triage app.

Process settings come from environment variables (:class:`AppConfig`).
Triage behaviour comes from a YAML file (:class:`TriageSettings`) that is
re-read whenever it changes on disk, so thresholds and cooldowns can be
tuned without a restart.  Handlers receive a ``() -> TriageSettings``
accessor rather than a settings object.

Example ``triage.yml``::

    triage:
      enabled: true
      auto_triage_on_open: true
      cooldown_minutes: 30
      duplicate_threshold: 0.30
      max_duplicate_candidates: 3
      duplicate_label: possible-duplicate
      learning_enabled: true
      learning_min_samples: 20
      adaptive:
        min_candidates_for_gap: 8
        fallback_percentile: 0.75
        min_gap_size: 0.05
        floor: 0.15
        ceiling: 0.65
      priority_weights:
        severity: 0.45
        file_risk: 0.30
        category: 0.15
        recurrence: 0.10
      repos:
        octo-org/busy-repo:
          cooldown_minutes: 120
"""

from __future__ import annotations

import dataclasses
import logging
import os
import pathlib
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import yaml

from triage_app.adaptive_threshold import AdaptiveThresholdConfig
from triage_app.finding_prioritizer import PriorityWeights

logger = logging.getLogger(__name__)

_PACKAGE_DIR = pathlib.Path(__file__).resolve().parent


@dataclass(frozen=True)
class AppConfig:
    app_id: int
    private_key_path: str
    webhook_secret: str

    db_path: str = str(_PACKAGE_DIR.parent / "triage.db")
    triage_config_path: str = str(_PACKAGE_DIR.parent / "triage.yml")
    github_api_base: str = "https://api.github.com"

    embedding_api_url: str = ""
    embedding_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"

    server_host: str = "0.0.0.0"
    server_port: int = 3000
    debug: bool = False

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> AppConfig:
        app_id_raw = os.environ.get("GITHUB_APP_ID", "")
        if not app_id_raw:
            logger.error("GITHUB_APP_ID is required")
            sys.exit(1)

        private_key_path = os.environ.get("GITHUB_APP_PRIVATE_KEY_PATH", "")
        if not private_key_path:
            logger.error("GITHUB_APP_PRIVATE_KEY_PATH is required")
            sys.exit(1)

        webhook_secret = os.environ.get("GITHUB_APP_WEBHOOK_SECRET", "")
        if not webhook_secret:
            logger.error("GITHUB_APP_WEBHOOK_SECRET is required")
            sys.exit(1)

        return cls(
            app_id=int(app_id_raw),
            private_key_path=private_key_path,
            webhook_secret=webhook_secret,
            db_path=os.environ.get("TRIAGE_DB_PATH", cls.db_path),
            triage_config_path=os.environ.get("TRIAGE_CONFIG_PATH", cls.triage_config_path),
            github_api_base=os.environ.get("GITHUB_API_URL", cls.github_api_base),
            embedding_api_url=os.environ.get("EMBEDDING_API_URL", ""),
            embedding_api_key=os.environ.get("EMBEDDING_API_KEY", ""),
            embedding_model=os.environ.get("EMBEDDING_MODEL", cls.embedding_model),
            server_host=os.environ.get("SERVER_HOST", "0.0.0.0"),
            server_port=int(os.environ.get("SERVER_PORT", "3000")),
            debug=os.environ.get("FLASK_DEBUG", "false").lower() == "true",
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


@dataclass(frozen=True)
class TriageSettings:
    enabled: bool = True
    auto_triage_on_open: bool = True
    cooldown_minutes: int = 30
    duplicate_threshold: float = 0.30
    max_duplicate_candidates: int = 3
    duplicate_label: str = "possible-duplicate"
    learning_enabled: bool = True
    learning_min_samples: int = 20
    adaptive: AdaptiveThresholdConfig = field(default_factory=AdaptiveThresholdConfig)
    priority_weights: PriorityWeights = field(default_factory=PriorityWeights)
    repo_overrides: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> TriageSettings:
        if not raw:
            return cls()
        if isinstance(raw.get("triage"), Mapping):
            raw = raw["triage"]
        settings = _apply_overrides(cls(), raw)
        repos = raw.get("repos") or {}
        if not isinstance(repos, Mapping):
            logger.warning("Ignoring triage.repos: expected a mapping, got %s", type(repos).__name__)
            repos = {}
        return dataclasses.replace(
            settings,
            repo_overrides={str(k).lower(): v for k, v in repos.items() if isinstance(v, Mapping)},
        )

    def for_repo(self, repo: str) -> TriageSettings:
        override = self.repo_overrides.get(repo.lower())
        if not override:
            return self
        return _apply_overrides(self, override)


_SCALAR_FIELDS: dict[str, type] = {
    "enabled": bool,
    "auto_triage_on_open": bool,
    "cooldown_minutes": int,
    "duplicate_threshold": float,
    "max_duplicate_candidates": int,
    "duplicate_label": str,
    "learning_enabled": bool,
    "learning_min_samples": int,
}


def _coerce(name: str, value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
        raise ValueError(f"{name} must be true or false")
    if kind is str:
        if isinstance(value, str) and value.strip():
            return value.strip()
        raise ValueError(f"{name} must be a non-empty string")
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    coerced = kind(value)
    if coerced < 0:
        raise ValueError(f"{name} must not be negative")
    return coerced


def _apply_overrides(base: TriageSettings, raw: Mapping[str, Any]) -> TriageSettings:
    changes: dict[str, Any] = {}
    for name, kind in _SCALAR_FIELDS.items():
        if name not in raw:
            continue
        try:
            changes[name] = _coerce(name, raw[name], kind)
        except (TypeError, ValueError) as exc:
            logger.warning("Invalid triage setting %s=%r, keeping %r: %s",
                           name, raw[name], getattr(base, name), exc)

    adaptive_raw = raw.get("adaptive")
    if isinstance(adaptive_raw, Mapping):
        values = {}
        for f in dataclasses.fields(AdaptiveThresholdConfig):
            if f.name not in adaptive_raw:
                continue
            try:
                kind = int if f.name == "min_candidates_for_gap" else float
                values[f.name] = _coerce(f.name, adaptive_raw[f.name], kind)
            except (TypeError, ValueError) as exc:
                logger.warning("Invalid adaptive setting %s: %s", f.name, exc)
        candidate = dataclasses.replace(base.adaptive, **values)
        if candidate.floor <= candidate.ceiling:
            changes["adaptive"] = candidate
        else:
            logger.warning("Ignoring adaptive settings: floor %.2f above ceiling %.2f",
                           candidate.floor, candidate.ceiling)

    weights_raw = raw.get("priority_weights")
    if isinstance(weights_raw, Mapping):
        changes["priority_weights"] = PriorityWeights.from_mapping(weights_raw)

    return dataclasses.replace(base, **changes) if changes else base


def load_triage_settings(path: str | pathlib.Path) -> TriageSettings:
    """Parse *path*; a missing file yields the defaults."""
    p = pathlib.Path(path)
    if not p.exists():
        return TriageSettings()
    with open(p) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"{p}: expected a mapping at the top level")
    return TriageSettings.from_mapping(raw)


class SettingsFile:
    """Callable settings accessor that reloads when the file's mtime changes.

    A file that fails to parse keeps the last good settings in effect.
    """

    def __init__(self, path: str | pathlib.Path) -> None:
        self.path = pathlib.Path(path)
        self._lock = threading.Lock()
        self._mtime: float | None = None
        self._settings = TriageSettings()

    def _current_mtime(self) -> float | None:
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def __call__(self) -> TriageSettings:
        mtime = self._current_mtime()
        with self._lock:
            if mtime == self._mtime:
                return self._settings
            try:
                settings = load_triage_settings(self.path) if mtime is not None else TriageSettings()
            except (OSError, ValueError, yaml.YAMLError) as exc:
                logger.error("Failed to reload %s, keeping previous settings: %s", self.path, exc)
                return self._settings
            self._settings = settings
            self._mtime = mtime
            logger.info("Loaded triage settings from %s", self.path)
            return settings


def settings_accessor(path: str | pathlib.Path) -> Callable[[], TriageSettings]:
    return SettingsFile(path)
