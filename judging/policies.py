"""
Row-level access rules.

Every table belongs to one event through its foreign keys, and the event's
creator may do anything with it. On top of that:

- judges, judge_assignments and scoring_rounds can be read by anyone, so a
  judge holding nothing but an access token can load their own dashboard;
- scores are open to everyone. Whether a token may score a given team is
  decided by the judge routes, not here;
- final_results can be read, inserted and updated by the owner but not
  deleted (rows only go away with their event).
"""
from __future__ import annotations

import sqlite3
from typing import Any, Dict, Optional

from fastapi import HTTPException

# Same joins the ownership checks have always used, one per table.
OWNING_EVENT_SQL = {
    "events": "SELECT id FROM events WHERE id=?",
    "categories": "SELECT event_id FROM categories WHERE id=?",
    "teams": "SELECT event_id FROM teams WHERE id=?",
    "judges": "SELECT event_id FROM judges WHERE id=?",
    "scoring_rounds": "SELECT event_id FROM scoring_rounds WHERE id=?",
    "judge_assignments": (
        "SELECT j.event_id FROM judge_assignments a JOIN judges j ON j.id = a.judge_id WHERE a.id=?"
    ),
    "scores": "SELECT t.event_id FROM scores s JOIN teams t ON t.id = s.team_id WHERE s.id=?",
    "normalized_scores": (
        "SELECT t.event_id FROM normalized_scores n JOIN teams t ON t.id = n.team_id WHERE n.id=?"
    ),
    "final_results": "SELECT event_id FROM final_results WHERE id=?",
}

ALL_ACTIONS = frozenset({"select", "insert", "update", "delete"})
OWNER_ACTIONS = {table: ALL_ACTIONS for table in OWNING_EVENT_SQL}
OWNER_ACTIONS["final_results"] = frozenset({"select", "insert", "update"})

ANON_ACTIONS = {
    "judges": frozenset({"select"}),
    "judge_assignments": frozenset({"select"}),
    "scoring_rounds": frozenset({"select"}),
    "scores": ALL_ACTIONS,
}


def event_id_for(conn: sqlite3.Connection, table: str, row_id: str) -> Optional[str]:
    if table not in OWNING_EVENT_SQL:
        raise ValueError(f"No access policy for table '{table}'.")
    row = conn.execute(OWNING_EVENT_SQL[table], (row_id,)).fetchone()
    return None if row is None else row[0]


def is_event_owner(conn: sqlite3.Connection, profile_id: Optional[str], event_id: Optional[str]) -> bool:
    if profile_id is None or event_id is None:
        return False
    row = conn.execute("SELECT created_by FROM events WHERE id=?", (event_id,)).fetchone()
    return row is not None and row["created_by"] == profile_id


def allowed(
    conn: sqlite3.Connection,
    profile_id: Optional[str],
    action: str,
    table: str,
    row_id: str,
) -> bool:
    if action in ANON_ACTIONS.get(table, frozenset()):
        return True
    if action not in OWNER_ACTIONS.get(table, frozenset()):
        return False
    return is_event_owner(conn, profile_id, event_id_for(conn, table, row_id))


def authorize(
    conn: sqlite3.Connection,
    profile: Optional[Dict[str, Any]],
    action: str,
    table: str,
    row_id: str,
) -> str:
    """Raise 404/403 unless the caller may act on the row; return its event id."""
    event_id = event_id_for(conn, table, row_id)
    if event_id is None:
        raise HTTPException(404, f"{table} row not found.")
    profile_id = profile["id"] if profile else None
    if not allowed(conn, profile_id, action, table, row_id):
        raise HTTPException(403, f"Not allowed to {action} this {table} row.")
    return event_id


def require_event_owner(conn: sqlite3.Connection, profile: Optional[Dict[str, Any]], event_id: str) -> sqlite3.Row:
    event = conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()
    if not event:
        raise HTTPException(404, "Event not found.")
    if profile is None or event["created_by"] != profile["id"]:
        raise HTTPException(403, "Only the event's creator can manage it.")
    return event
