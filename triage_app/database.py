"""SQLite persistence for triage state.

Four tables:

``issue_triage_state``
    One row per ``(repo, issue_number)``.  Written only through the
    conditional upsert in :func:`claim_issue_triage`.
``triage_threshold_state``
    Beta posterior per repository for threshold learning.
``issue_outcome_feedback``
    How each issue was eventually closed, keyed by delivery ID.
``issue_embeddings``
    Issue vectors for nearest-neighbour lookup.

WAL mode is enabled so readers never block the single writer.  Every helper
takes an open connection; callers own the connection and its lifetime.
"""

from __future__ import annotations

import json
import os
import pathlib
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator

_INITIALIZED_DBS: set[str] = set()

DB_PATH = pathlib.Path(
    os.environ.get(
        "TRIAGE_DB_PATH",
        str(pathlib.Path(__file__).resolve().parent.parent / "triage.db"),
    )
)

BUSY_TIMEOUT_SECONDS = 10.0

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS issue_triage_state (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    repo                 TEXT    NOT NULL,
    issue_number         INTEGER NOT NULL,
    delivery_id          TEXT    NOT NULL,
    triaged_at           TEXT    NOT NULL,
    duplicate_count      INTEGER NOT NULL DEFAULT 0,
    comment_external_id  INTEGER,
    UNIQUE(repo, issue_number)
);

CREATE TABLE IF NOT EXISTS triage_threshold_state (
    repo          TEXT PRIMARY KEY,
    alpha         REAL    NOT NULL DEFAULT 1.0,
    beta          REAL    NOT NULL DEFAULT 1.0,
    sample_count  INTEGER NOT NULL DEFAULT 0,
    updated_at    TEXT    NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS issue_outcome_feedback (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    repo                 TEXT    NOT NULL,
    issue_number         INTEGER NOT NULL,
    triage_id            INTEGER REFERENCES issue_triage_state(id),
    outcome              TEXT    NOT NULL,
    predicted_duplicate  INTEGER NOT NULL DEFAULT 0,
    confirmed_duplicate  INTEGER NOT NULL DEFAULT 0,
    state_reason         TEXT,
    label_names          TEXT    NOT NULL DEFAULT '[]',
    delivery_id          TEXT    NOT NULL,
    created_at           TEXT    NOT NULL,
    UNIQUE(delivery_id)
);

CREATE INDEX IF NOT EXISTS idx_outcome_repo_issue ON issue_outcome_feedback(repo, issue_number);

CREATE TABLE IF NOT EXISTS issue_embeddings (
    repo          TEXT    NOT NULL,
    issue_number  INTEGER NOT NULL,
    title         TEXT    NOT NULL DEFAULT '',
    state         TEXT    NOT NULL DEFAULT 'open',
    embedding     TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    PRIMARY KEY (repo, issue_number)
);
"""


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so that string comparison orders correctly."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_connection(db_path: pathlib.Path | None = None) -> sqlite3.Connection:
    path = db_path or DB_PATH
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    str_path = str(path)
    if str_path not in _INITIALIZED_DBS:
        init_db(conn)
        _INITIALIZED_DBS.add(str_path)
    return conn


@contextmanager
def db_connection(db_path: pathlib.Path | None = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection and close it on exit."""
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)


# ---------------------------------------------------------------------------
# Triage claims
# ---------------------------------------------------------------------------

_CLAIM_COLUMNS = "id, repo, issue_number, delivery_id, triaged_at, duplicate_count, comment_external_id"


def claim_issue_triage(
    conn: sqlite3.Connection,
    repo: str,
    issue_number: int,
    delivery_id: str,
    cooldown_minutes: int,
    now: datetime | None = None,
) -> dict | None:
    """Claim an issue for triage in a single statement.

    Inserts the row when absent.  When present, the row is refreshed only if
    its ``triaged_at`` is older than the cooldown; otherwise nothing is
    written and ``None`` is returned.  Concurrent callers serialise on the
    SQLite write lock, so exactly one of them sees a row come back.
    """
    current = now or utcnow()
    cutoff = current - timedelta(minutes=cooldown_minutes)
    rows = conn.execute(
        f"""INSERT INTO issue_triage_state
               (repo, issue_number, delivery_id, triaged_at, duplicate_count)
           VALUES (?, ?, ?, ?, 0)
           ON CONFLICT(repo, issue_number) DO UPDATE SET
               delivery_id = excluded.delivery_id,
               triaged_at = excluded.triaged_at,
               duplicate_count = 0
           WHERE issue_triage_state.triaged_at < ?
           RETURNING {_CLAIM_COLUMNS}""",
        (repo, issue_number, delivery_id, format_timestamp(current), format_timestamp(cutoff)),
    ).fetchall()
    conn.commit()
    return dict(rows[0]) if rows else None


def get_triage_claim(conn: sqlite3.Connection, repo: str, issue_number: int) -> dict | None:
    row = conn.execute(
        f"SELECT {_CLAIM_COLUMNS} FROM issue_triage_state WHERE repo = ? AND issue_number = ?",
        (repo, issue_number),
    ).fetchone()
    return dict(row) if row else None


def record_triage_action(
    conn: sqlite3.Connection,
    repo: str,
    issue_number: int,
    duplicate_count: int,
    comment_external_id: int | None,
) -> bool:
    cur = conn.execute(
        """UPDATE issue_triage_state
           SET duplicate_count = ?,
               comment_external_id = COALESCE(?, comment_external_id)
           WHERE repo = ? AND issue_number = ?""",
        (duplicate_count, comment_external_id, repo, issue_number),
    )
    conn.commit()
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Threshold posterior
# ---------------------------------------------------------------------------

def get_threshold_posterior(conn: sqlite3.Connection, repo: str) -> dict | None:
    row = conn.execute(
        "SELECT alpha, beta, sample_count FROM triage_threshold_state WHERE repo = ?",
        (repo,),
    ).fetchone()
    return dict(row) if row else None


def record_threshold_observation(
    conn: sqlite3.Connection,
    repo: str,
    correct: bool,
    now: datetime | None = None,
) -> None:
    """Add one observation to the repo's Beta posterior (prior is Beta(1, 1)).

    The increment happens in SQL so concurrent observations never lose an
    update.
    """
    alpha_inc = 1 if correct else 0
    beta_inc = 0 if correct else 1
    conn.execute(
        """INSERT INTO triage_threshold_state (repo, alpha, beta, sample_count, updated_at)
           VALUES (?, ?, ?, 1, ?)
           ON CONFLICT(repo) DO UPDATE SET
               alpha = triage_threshold_state.alpha + ?,
               beta = triage_threshold_state.beta + ?,
               sample_count = triage_threshold_state.sample_count + 1,
               updated_at = excluded.updated_at""",
        (
            repo, 1.0 + alpha_inc, 1.0 + beta_inc, format_timestamp(now or utcnow()),
            alpha_inc, beta_inc,
        ),
    )
    conn.commit()


# ---------------------------------------------------------------------------
# Issue outcomes
# ---------------------------------------------------------------------------

def insert_issue_outcome(conn: sqlite3.Connection, outcome: dict, now: datetime | None = None) -> int | None:
    """Insert an outcome row; ``None`` when the delivery was already recorded."""
    rows = conn.execute(
        """INSERT INTO issue_outcome_feedback
               (repo, issue_number, triage_id, outcome, predicted_duplicate,
                confirmed_duplicate, state_reason, label_names, delivery_id, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(delivery_id) DO NOTHING
           RETURNING id""",
        (
            outcome["repo"],
            outcome["issue_number"],
            outcome.get("triage_id"),
            outcome["outcome"],
            int(bool(outcome.get("predicted_duplicate", False))),
            int(bool(outcome.get("confirmed_duplicate", False))),
            outcome.get("state_reason"),
            json.dumps(list(outcome.get("label_names", []))),
            outcome["delivery_id"],
            format_timestamp(now or utcnow()),
        ),
    ).fetchall()
    conn.commit()
    return rows[0]["id"] if rows else None


def query_issue_outcomes(conn: sqlite3.Connection, repo: str) -> list[dict]:
    rows = conn.execute(
        "SELECT * FROM issue_outcome_feedback WHERE repo = ? ORDER BY id",
        (repo,),
    ).fetchall()
    result = []
    for row in rows:
        d = dict(row)
        d["label_names"] = json.loads(d.get("label_names") or "[]")
        d["predicted_duplicate"] = bool(d["predicted_duplicate"])
        d["confirmed_duplicate"] = bool(d["confirmed_duplicate"])
        result.append(d)
    return result


# ---------------------------------------------------------------------------
# Issue embeddings
# ---------------------------------------------------------------------------

def upsert_issue_embedding(
    conn: sqlite3.Connection,
    repo: str,
    issue_number: int,
    title: str,
    state: str,
    embedding: list[float],
    now: datetime | None = None,
) -> None:
    conn.execute(
        """INSERT INTO issue_embeddings (repo, issue_number, title, state, embedding, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT(repo, issue_number) DO UPDATE SET
               title = excluded.title,
               state = excluded.state,
               embedding = excluded.embedding,
               updated_at = excluded.updated_at""",
        (repo, issue_number, title, state, json.dumps(embedding), format_timestamp(now or utcnow())),
    )
    conn.commit()


def update_issue_state(conn: sqlite3.Connection, repo: str, issue_number: int, state: str) -> bool:
    cur = conn.execute(
        "UPDATE issue_embeddings SET state = ? WHERE repo = ? AND issue_number = ?",
        (state, repo, issue_number),
    )
    conn.commit()
    return cur.rowcount > 0


def load_repo_embeddings(conn: sqlite3.Connection, repo: str) -> list[dict]:
    rows = conn.execute(
        "SELECT issue_number, title, state, embedding FROM issue_embeddings WHERE repo = ?",
        (repo,),
    ).fetchall()
    return [
        {
            "issue_number": row["issue_number"],
            "title": row["title"],
            "state": row["state"],
            "embedding": json.loads(row["embedding"]),
        }
        for row in rows
    ]
