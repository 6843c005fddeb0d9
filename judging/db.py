from __future__ import annotations

import hashlib
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import get_settings

EVENT_STATUSES = ("draft", "active", "completed")
ROUND_STATUSES = ("pending", "active", "completed")
ROUND_NAMES = {1: "Round 1", 2: "Finals"}


# -----------------------
# DB helpers
# -----------------------
def db() -> sqlite3.Connection:
    conn = sqlite3.connect(get_settings().db_path)
    conn.row_factory = sqlite3.Row
    # cascades are only enforced when this is on, and it is per connection
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def row_dict(row: Optional[sqlite3.Row], json_cols: tuple = ("criteria", "members")) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out = dict(row)
    for col in json_cols:
        if col in out and isinstance(out[col], str):
            out[col] = json.loads(out[col])
    return out


def rows_dicts(rows: List[sqlite3.Row]) -> List[Dict[str, Any]]:
    return [row_dict(r) for r in rows]


SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    password_salt TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    token TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'active', 'completed')),
    start_date TEXT,
    end_date TEXT,
    created_by TEXT REFERENCES profiles(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT,
    weight REAL NOT NULL DEFAULT 1 CHECK (weight >= 0),
    criteria TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS teams (
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    category_id TEXT REFERENCES categories(id),
    description TEXT,
    members TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS judges (
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    access_token TEXT NOT NULL UNIQUE,
    invitation_sent INTEGER NOT NULL DEFAULT 0,
    invitation_sent_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS judge_assignments (
    id TEXT PRIMARY KEY,
    judge_id TEXT NOT NULL REFERENCES judges(id) ON DELETE CASCADE,
    category_id TEXT REFERENCES categories(id) ON DELETE CASCADE,
    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    round_number INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    UNIQUE (judge_id, team_id, round_number)
);

CREATE TABLE IF NOT EXISTS scoring_rounds (
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    round_number INTEGER NOT NULL,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'active', 'completed')),
    started_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (event_id, round_number)
);

CREATE TABLE IF NOT EXISTS scores (
    id TEXT PRIMARY KEY,
    judge_id TEXT NOT NULL REFERENCES judges(id) ON DELETE CASCADE,
    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    category_id TEXT REFERENCES categories(id) ON DELETE CASCADE,
    round_id TEXT NOT NULL REFERENCES scoring_rounds(id) ON DELETE CASCADE,
    criterion_name TEXT NOT NULL,
    score REAL NOT NULL CHECK (score >= 0 AND score <= 10),
    comments TEXT,
    submitted_at TEXT NOT NULL,
    UNIQUE (judge_id, team_id, round_id, criterion_name)
);

CREATE TABLE IF NOT EXISTS normalized_scores (
    id TEXT PRIMARY KEY,
    judge_id TEXT NOT NULL REFERENCES judges(id) ON DELETE CASCADE,
    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    round_id TEXT NOT NULL REFERENCES scoring_rounds(id) ON DELETE CASCADE,
    raw_score REAL NOT NULL,
    normalized_score REAL NOT NULL,
    percentile REAL,
    rank INTEGER,
    selected_for_round2 INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (judge_id, team_id, round_id)
);

CREATE TABLE IF NOT EXISTS final_results (
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    final_score REAL NOT NULL,
    final_rank INTEGER,
    correlation_coefficient REAL,
    created_at TEXT NOT NULL,
    UNIQUE (event_id, team_id)
);

-- a team's category has to come from the team's own event
CREATE TRIGGER IF NOT EXISTS teams_category_event_insert
BEFORE INSERT ON teams
WHEN NEW.category_id IS NOT NULL
 AND (SELECT event_id FROM categories WHERE id = NEW.category_id) IS NOT NEW.event_id
BEGIN
    SELECT RAISE(ABORT, 'CHECK constraint failed: team category belongs to another event');
END;

CREATE TRIGGER IF NOT EXISTS teams_category_event_update
BEFORE UPDATE OF category_id, event_id ON teams
WHEN NEW.category_id IS NOT NULL
 AND (SELECT event_id FROM categories WHERE id = NEW.category_id) IS NOT NEW.event_id
BEGIN
    SELECT RAISE(ABORT, 'CHECK constraint failed: team category belongs to another event');
END;

CREATE INDEX IF NOT EXISTS idx_events_created_by ON events(created_by);
CREATE INDEX IF NOT EXISTS idx_categories_event_id ON categories(event_id);
CREATE INDEX IF NOT EXISTS idx_teams_event_id ON teams(event_id);
CREATE INDEX IF NOT EXISTS idx_teams_category_id ON teams(category_id);
CREATE INDEX IF NOT EXISTS idx_judges_event_id ON judges(event_id);
CREATE INDEX IF NOT EXISTS idx_judges_access_token ON judges(access_token);
CREATE INDEX IF NOT EXISTS idx_judge_assignments_judge_id ON judge_assignments(judge_id);
CREATE INDEX IF NOT EXISTS idx_judge_assignments_team_id ON judge_assignments(team_id);
CREATE INDEX IF NOT EXISTS idx_scores_judge_id ON scores(judge_id);
CREATE INDEX IF NOT EXISTS idx_scores_team_id ON scores(team_id);
CREATE INDEX IF NOT EXISTS idx_scores_round_id ON scores(round_id);
CREATE INDEX IF NOT EXISTS idx_normalized_scores_round_id ON normalized_scores(round_id);
CREATE INDEX IF NOT EXISTS idx_final_results_event_id ON final_results(event_id);
"""


def init_db():
    with db() as conn:
        conn.executescript(SCHEMA)


# -----------------------
# Writes shared by several routes
# -----------------------
def create_rounds(conn: sqlite3.Connection, event_id: str) -> None:
    for number, name in ROUND_NAMES.items():
        conn.execute(
            "INSERT INTO scoring_rounds(id, event_id, round_number, name, status, created_at) VALUES(?,?,?,?,?,?)",
            (new_id(), event_id, number, name, "pending", now_iso()),
        )


def upsert_score(
    conn: sqlite3.Connection,
    judge_id: str,
    team_id: str,
    category_id: Optional[str],
    round_id: str,
    criterion_name: str,
    score: float,
    comments: Optional[str] = None,
) -> None:
    """One row per (judge, team, round, criterion); a resubmission overwrites it."""
    conn.execute(
        """
        INSERT INTO scores(id, judge_id, team_id, category_id, round_id, criterion_name, score, comments, submitted_at)
        VALUES(?,?,?,?,?,?,?,?,?)
        ON CONFLICT(judge_id, team_id, round_id, criterion_name) DO UPDATE SET
            score=excluded.score,
            category_id=excluded.category_id,
            comments=excluded.comments,
            submitted_at=excluded.submitted_at
        """,
        (new_id(), judge_id, team_id, category_id, round_id, criterion_name, score, comments, now_iso()),
    )
