from __future__ import annotations

import json
import logging
import sqlite3
from html import escape
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel

from .db import db, row_dict, rows_dicts, upsert_score
from .rounds import active_round

logger = logging.getLogger(__name__)

router = APIRouter(tags=["judge"])

# Criteria used when a category does not list any
DEFAULT_CRITERIA = ["Overall"]


class ScoreSubmission(BaseModel):
    token: str
    team_id: str
    scores: Dict[str, float]
    comments: Optional[str] = None


# -----------------------
# UI helpers
# -----------------------
def page(title: str, body: str) -> HTMLResponse:
    html = f"""
    <html>
      <head>
        <title>{escape(title)}</title>
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <style>
          body {{ font-family: system-ui, Arial; max-width: 980px; margin: 0 auto; padding: 22px; }}
          input, textarea, button {{ font-size: 16px; padding: 10px; }}
          textarea {{ width: 100%; }}
          .card {{ border: 1px solid #ddd; border-radius: 12px; padding: 16px; margin: 16px 0; }}
          table {{ border-collapse: collapse; width: 100%; }}
          th, td {{ border: 1px solid #ddd; padding: 8px; }}
          th {{ text-align: left; background: #f7f7f7; }}
          .muted {{ color: #666; }}
          .pill {{ display:inline-block; padding:4px 10px; border:1px solid #ddd; border-radius:999px; }}
          .danger {{ color: #b00020; }}
          .ok {{ color: #2e7d32; }}
        </style>
      </head>
      <body>
        <h1>{escape(title)}</h1>
        {body}
      </body>
    </html>
    """
    return HTMLResponse(html)


def error_page(message: str) -> HTMLResponse:
    return page("Judge", f'<div class="card"><p class="danger">{escape(message)}</p></div>')


# -----------------------
# Lookups
# -----------------------
def require_judge(conn: sqlite3.Connection, token: str) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM judges WHERE access_token=?", (token,)).fetchone()
    if not row:
        raise HTTPException(403, "Invalid judge token.")
    return row


def criteria_for(category: Optional[sqlite3.Row]) -> List[str]:
    if category is None:
        return list(DEFAULT_CRITERIA)
    criteria = json.loads(category["criteria"] or "[]")
    return criteria or list(DEFAULT_CRITERIA)


def assigned_teams(conn: sqlite3.Connection, judge_id: str, round_number: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT t.id AS team_id, t.name AS team_name, t.description,
               COALESCE(a.category_id, t.category_id) AS category_id
        FROM judge_assignments a JOIN teams t ON t.id = a.team_id
        WHERE a.judge_id=? AND a.round_number=?
        ORDER BY t.name, t.id
        """,
        (judge_id, round_number),
    ).fetchall()

    teams = []
    for r in rows:
        category = None
        if r["category_id"]:
            category = conn.execute("SELECT * FROM categories WHERE id=?", (r["category_id"],)).fetchone()
        teams.append(
            {
                "team_id": r["team_id"],
                "team_name": r["team_name"],
                "description": r["description"],
                "category_id": r["category_id"],
                "category_name": category["name"] if category else None,
                "criteria": criteria_for(category),
            }
        )
    return teams


def existing_scores(conn: sqlite3.Connection, judge_id: str, round_id: str) -> Dict[str, Dict[str, float]]:
    out: Dict[str, Dict[str, float]] = {}
    for r in conn.execute(
        "SELECT team_id, criterion_name, score FROM scores WHERE judge_id=? AND round_id=?",
        (judge_id, round_id),
    ).fetchall():
        out.setdefault(r["team_id"], {})[r["criterion_name"]] = float(r["score"])
    return out


def submit_scores(
    conn: sqlite3.Connection,
    judge: sqlite3.Row,
    team_id: str,
    scores: Dict[str, float],
    comments: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Store a judge's criterion scores for one team in the open round.

    The token only counts for teams the judge is assigned to in that round.
    Range checks are left to the scores table.
    """
    rnd = active_round(conn, judge["event_id"])
    if rnd is None:
        raise HTTPException(409, "No round is open for scoring.")

    assignment = conn.execute(
        "SELECT * FROM judge_assignments WHERE judge_id=? AND team_id=? AND round_number=?",
        (judge["id"], team_id, rnd["round_number"]),
    ).fetchone()
    if not assignment:
        logger.warning("Judge %s tried to score unassigned team %s", judge["id"], team_id)
        raise HTTPException(403, "You are not assigned to this team in the current round.")
    if not scores:
        raise HTTPException(400, "No scores submitted.")

    team = conn.execute("SELECT category_id FROM teams WHERE id=?", (team_id,)).fetchone()
    category_id = assignment["category_id"] or team["category_id"]
    category = None
    if category_id:
        category = conn.execute("SELECT * FROM categories WHERE id=?", (category_id,)).fetchone()
    allowed_criteria = criteria_for(category)

    unknown = [c for c in scores if c not in allowed_criteria]
    if unknown:
        raise HTTPException(400, f"Unknown criteria: {', '.join(unknown)}.")

    for criterion, value in scores.items():
        upsert_score(conn, judge["id"], team_id, category_id, rnd["id"], criterion, value, comments)

    rows = conn.execute(
        "SELECT * FROM scores WHERE judge_id=? AND team_id=? AND round_id=? ORDER BY criterion_name",
        (judge["id"], team_id, rnd["id"]),
    ).fetchall()
    return rows_dicts(rows)


# -----------------------
# Routes: Judge dashboard (HTML)
# -----------------------
@router.get("/judge", response_class=HTMLResponse)
def judge_dashboard(token: str = ""):
    if not token:
        return error_page("Open the link from your invitation; it carries your access token.")

    with db() as conn:
        judge = conn.execute("SELECT * FROM judges WHERE access_token=?", (token,)).fetchone()
        if not judge:
            return error_page("This judging link is not valid.")
        event = conn.execute("SELECT name FROM events WHERE id=?", (judge["event_id"],)).fetchone()
        rnd = active_round(conn, judge["event_id"])
        if rnd is None:
            return page(
                event["name"],
                f'<div class="card"><p>Judge: <b>{escape(judge["name"])}</b></p>'
                f'<p class="muted">No round is open for scoring right now. Check back soon.</p></div>',
            )
        teams = assigned_teams(conn, judge["id"], rnd["round_number"])
        current = existing_scores(conn, judge["id"], rnd["id"])

    cards = ""
    for t in teams:
        team_scores = current.get(t["team_id"], {})
        rows = ""
        for criterion in t["criteria"]:
            val = team_scores.get(criterion, "")
            rows += f"""
            <tr>
              <td>{escape(criterion)}</td>
              <td><input type="number" min="0" max="10" step="0.5" name="c__{escape(criterion)}" value="{val}" required></td>
            </tr>
            """
        status = '<span class="ok">scored</span>' if team_scores else '<span class="muted">not scored yet</span>'
        cards += f"""
        <div class="card">
          <h3>{escape(t["team_name"])} {status}</h3>
          <p class="muted">{escape(t["category_name"] or "")}</p>
          <form method="post" action="/judge/scores">
            <input type="hidden" name="token" value="{escape(token)}" />
            <input type="hidden" name="team_id" value="{t["team_id"]}" />
            <table>
              <thead><tr><th>Criterion</th><th>Score (0-10)</th></tr></thead>
              <tbody>{rows}</tbody>
            </table>
            <textarea name="comments" rows="2" placeholder="Comments (optional)"></textarea>
            <button type="submit" style="margin-top:12px;">Save</button>
          </form>
        </div>
        """
    if not cards:
        cards = '<div class="card muted">No teams assigned to you in this round yet.</div>'

    body = f"""
    <div class="card">
      <p>Judge: <b>{escape(judge["name"])}</b></p>
      <p>Round: <span class="pill">{escape(rnd["name"])}</span></p>
      <p class="muted">Score every criterion from 0 to 10. Saving again overwrites your previous score.</p>
    </div>
    {cards}
    """
    return page(event["name"], body)


@router.post("/judge/scores")
async def judge_submit_form(request: Request, token: str = Form(...), team_id: str = Form(...)):
    form = await request.form()

    scores: Dict[str, float] = {}
    for key, raw in form.items():
        if not key.startswith("c__"):
            continue
        criterion = key[len("c__"):]
        try:
            scores[criterion] = float(str(raw).strip())
        except ValueError:
            return error_page(f"Invalid score for {criterion}.")
    comments = str(form.get("comments") or "").strip() or None

    try:
        with db() as conn:
            judge = require_judge(conn, token)
            submit_scores(conn, judge, team_id, scores, comments)
    except HTTPException as e:
        return error_page(str(e.detail))
    except sqlite3.IntegrityError:
        return error_page("Scores must be between 0 and 10.")

    return RedirectResponse(url=f"/judge?token={quote(token)}", status_code=303)


# -----------------------
# Routes: Judge API (JSON)
# -----------------------
@router.get("/api/judge/me")
def judge_me(token: str):
    with db() as conn:
        judge = require_judge(conn, token)
        rounds = conn.execute(
            "SELECT * FROM scoring_rounds WHERE event_id=? ORDER BY round_number", (judge["event_id"],)
        ).fetchall()
        assignments = conn.execute(
            "SELECT * FROM judge_assignments WHERE judge_id=? ORDER BY round_number, team_id", (judge["id"],)
        ).fetchall()
        rnd = active_round(conn, judge["event_id"])
        teams = assigned_teams(conn, judge["id"], rnd["round_number"]) if rnd else []

    return {
        "judge": row_dict(judge),
        "rounds": rows_dicts(rounds),
        "assignments": rows_dicts(assignments),
        "active_round": row_dict(rnd),
        "teams": teams,
    }


@router.post("/api/judge/scores")
def judge_submit_json(body: ScoreSubmission):
    with db() as conn:
        judge = require_judge(conn, body.token)
        return submit_scores(conn, judge, body.team_id, body.scores, body.comments)
