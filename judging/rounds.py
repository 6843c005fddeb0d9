from __future__ import annotations

import logging
import sqlite3

from fastapi import HTTPException

from .db import ROUND_STATUSES, new_id, now_iso
from .scoring import finalist_team_ids, recompute_final_results, recompute_normalized

logger = logging.getLogger(__name__)

# pending -> active -> completed, never backwards
NEXT_STATUS = dict(zip(ROUND_STATUSES, ROUND_STATUSES[1:]))


def get_round(conn: sqlite3.Connection, event_id: str, round_number: int) -> sqlite3.Row:
    row = conn.execute(
        "SELECT * FROM scoring_rounds WHERE event_id=? AND round_number=?",
        (event_id, round_number),
    ).fetchone()
    if not row:
        raise HTTPException(404, f"Round {round_number} not found for this event.")
    return row


def active_round(conn: sqlite3.Connection, event_id: str):
    return conn.execute(
        "SELECT * FROM scoring_rounds WHERE event_id=? AND status='active' ORDER BY round_number LIMIT 1",
        (event_id,),
    ).fetchone()


def _advance(conn: sqlite3.Connection, rnd: sqlite3.Row, target: str) -> None:
    if NEXT_STATUS.get(rnd["status"]) != target:
        raise HTTPException(409, f"Round {rnd['round_number']} is {rnd['status']}; it cannot become {target}.")
    stamp_col = "started_at" if target == "active" else "completed_at"
    conn.execute(
        f"UPDATE scoring_rounds SET status=?, {stamp_col}=? WHERE id=?",
        (target, now_iso(), rnd["id"]),
    )
    logger.info("Event %s round %s is now %s", rnd["event_id"], rnd["round_number"], target)


def assign_finalists(conn: sqlite3.Connection, event_id: str) -> int:
    """Give every round-1 judge every team that any judge sent to round 2."""
    round1 = get_round(conn, event_id, 1)
    finalists = finalist_team_ids(conn, round1["id"])
    judge_ids = [
        r["judge_id"]
        for r in conn.execute(
            """
            SELECT DISTINCT a.judge_id FROM judge_assignments a
            JOIN judges j ON j.id = a.judge_id
            WHERE j.event_id=? AND a.round_number=1
            ORDER BY a.judge_id
            """,
            (event_id,),
        ).fetchall()
    ]

    created = 0
    for judge_id in judge_ids:
        for team_id in finalists:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO judge_assignments(id, judge_id, category_id, team_id, round_number, created_at)
                SELECT ?, ?, category_id, id, 2, ? FROM teams WHERE id=?
                """,
                (new_id(), judge_id, now_iso(), team_id),
            )
            created += cur.rowcount
    logger.info("Event %s: %d finalists, %d round-2 assignments created", event_id, len(finalists), created)
    return created


def start_round(conn: sqlite3.Connection, event_id: str, round_number: int) -> sqlite3.Row:
    rnd = get_round(conn, event_id, round_number)
    if round_number == 2 and get_round(conn, event_id, 1)["status"] != "completed":
        raise HTTPException(409, "Round 1 has to be completed before the finals start.")
    _advance(conn, rnd, "active")
    if round_number == 2:
        assign_finalists(conn, event_id)
    return get_round(conn, event_id, round_number)


def complete_round(conn: sqlite3.Connection, event_id: str, round_number: int, top_n: int) -> sqlite3.Row:
    rnd = get_round(conn, event_id, round_number)
    _advance(conn, rnd, "completed")
    recompute_normalized(conn, rnd["id"], top_n)
    if round_number == 2:
        recompute_final_results(conn, event_id)
    return get_round(conn, event_id, round_number)
