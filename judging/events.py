from __future__ import annotations

import json
import logging
import secrets
from io import StringIO
from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from .auth import current_profile, require_profile
from .config import get_settings
from .db import EVENT_STATUSES, create_rounds, db, new_id, now_iso, row_dict, rows_dicts
from .invitation import PREVIEW_MESSAGE, InvitationRequest, preview_invitation
from .policies import authorize, require_event_owner
from .rounds import complete_round, get_round, start_round
from .scoring import recompute_final_results, recompute_normalized

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


class EventIn(BaseModel):
    name: str
    description: Optional[str] = None
    status: str = "draft"
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class EventUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class CategoryIn(BaseModel):
    name: str
    description: Optional[str] = None
    weight: float = 1.0
    criteria: List[str] = []


class TeamIn(BaseModel):
    name: str
    description: Optional[str] = None
    members: List[str] = []
    category_id: Optional[str] = None


class JudgeIn(BaseModel):
    name: str
    email: str


class AssignmentIn(BaseModel):
    judge_id: str
    team_id: str
    category_id: Optional[str] = None
    round_number: int = 1


def _check_status(status: Optional[str]) -> None:
    if status is not None and status not in EVENT_STATUSES:
        raise HTTPException(400, f"Unknown event status '{status}'.")


def new_access_token() -> str:
    return secrets.token_urlsafe(24)


# -----------------------
# Events
# -----------------------
@router.get("/events")
def list_events(profile: Dict[str, Any] = Depends(require_profile)):
    with db() as conn:
        rows = conn.execute(
            "SELECT * FROM events WHERE created_by=? ORDER BY created_at DESC, name",
            (profile["id"],),
        ).fetchall()
    return rows_dicts(rows)


@router.post("/events", status_code=201)
def create_event(body: EventIn, profile: Dict[str, Any] = Depends(require_profile)):
    _check_status(body.status)
    event_id = new_id()
    stamp = now_iso()
    with db() as conn:
        conn.execute(
            """
            INSERT INTO events(id, name, description, status, start_date, end_date, created_by, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            (event_id, body.name.strip(), body.description, body.status, body.start_date, body.end_date,
             profile["id"], stamp, stamp),
        )
        create_rounds(conn, event_id)
        row = conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()
    logger.info("Event %s created by %s", event_id, profile["id"])
    return row_dict(row)


@router.get("/events/{event_id}")
def get_event(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        authorize(conn, profile, "select", "events", event_id)
        row = conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()
    return row_dict(row)


@router.patch("/events/{event_id}")
def update_event(event_id: str, body: EventUpdate, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    _check_status(body.status)
    changes = body.model_dump(exclude_unset=True)
    with db() as conn:
        authorize(conn, profile, "update", "events", event_id)
        if changes:
            changes["updated_at"] = now_iso()
            cols = ", ".join(f"{c}=?" for c in changes)
            conn.execute(f"UPDATE events SET {cols} WHERE id=?", (*changes.values(), event_id))
        row = conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()
    return row_dict(row)


@router.delete("/events/{event_id}")
def delete_event(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        authorize(conn, profile, "delete", "events", event_id)
        conn.execute("DELETE FROM events WHERE id=?", (event_id,))
    logger.info("Event %s deleted", event_id)
    return {"success": True}


# -----------------------
# Categories / teams / judges
# -----------------------
@router.get("/events/{event_id}/categories")
def list_categories(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        rows = conn.execute("SELECT * FROM categories WHERE event_id=? ORDER BY name", (event_id,)).fetchall()
    return rows_dicts(rows)


@router.post("/events/{event_id}/categories", status_code=201)
def create_category(event_id: str, body: CategoryIn, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    criteria = [c.strip() for c in body.criteria if c.strip()]
    criteria = list(dict.fromkeys(criteria))  # dedupe preserve order
    category_id = new_id()
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        conn.execute(
            "INSERT INTO categories(id, event_id, name, description, weight, criteria, created_at) VALUES(?,?,?,?,?,?,?)",
            (category_id, event_id, body.name.strip(), body.description, body.weight, json.dumps(criteria), now_iso()),
        )
        row = conn.execute("SELECT * FROM categories WHERE id=?", (category_id,)).fetchone()
    return row_dict(row)


@router.delete("/categories/{category_id}")
def delete_category(category_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        authorize(conn, profile, "delete", "categories", category_id)
        conn.execute("DELETE FROM categories WHERE id=?", (category_id,))
    return {"success": True}


@router.get("/events/{event_id}/teams")
def list_teams(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        rows = conn.execute("SELECT * FROM teams WHERE event_id=? ORDER BY name", (event_id,)).fetchall()
    return rows_dicts(rows)


@router.post("/events/{event_id}/teams", status_code=201)
def create_team(event_id: str, body: TeamIn, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    team_id = new_id()
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        if body.category_id is not None:
            cat = conn.execute("SELECT event_id FROM categories WHERE id=?", (body.category_id,)).fetchone()
            if not cat or cat["event_id"] != event_id:
                raise HTTPException(400, "Category does not belong to this event.")
        conn.execute(
            "INSERT INTO teams(id, event_id, name, category_id, description, members, created_at) VALUES(?,?,?,?,?,?,?)",
            (team_id, event_id, body.name.strip(), body.category_id, body.description, json.dumps(body.members), now_iso()),
        )
        row = conn.execute("SELECT * FROM teams WHERE id=?", (team_id,)).fetchone()
    return row_dict(row)


@router.delete("/teams/{team_id}")
def delete_team(team_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        authorize(conn, profile, "delete", "teams", team_id)
        conn.execute("DELETE FROM teams WHERE id=?", (team_id,))
    return {"success": True}


@router.get("/events/{event_id}/judges")
def list_judges(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        rows = conn.execute("SELECT * FROM judges WHERE event_id=? ORDER BY name", (event_id,)).fetchall()
    return rows_dicts(rows)


@router.post("/events/{event_id}/judges", status_code=201)
def create_judge(event_id: str, body: JudgeIn, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    judge_id = new_id()
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        conn.execute(
            "INSERT INTO judges(id, event_id, name, email, access_token, created_at) VALUES(?,?,?,?,?,?)",
            (judge_id, event_id, body.name.strip(), body.email.strip(), new_access_token(), now_iso()),
        )
        row = conn.execute("SELECT * FROM judges WHERE id=?", (judge_id,)).fetchone()
    return row_dict(row)


@router.delete("/judges/{judge_id}")
def delete_judge(judge_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        authorize(conn, profile, "delete", "judges", judge_id)
        conn.execute("DELETE FROM judges WHERE id=?", (judge_id,))
    return {"success": True}


@router.post("/events/{event_id}/judges/{judge_id}/invite")
def invite_judge(event_id: str, judge_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        event = require_event_owner(conn, profile, event_id)
        judge = conn.execute("SELECT * FROM judges WHERE id=? AND event_id=?", (judge_id, event_id)).fetchone()
        if not judge:
            raise HTTPException(404, "Judge not found.")

        html = preview_invitation(
            InvitationRequest(
                judgeName=judge["name"],
                judgeEmail=judge["email"],
                eventName=event["name"],
                accessToken=judge["access_token"],
                dashboardUrl=get_settings().dashboard_url,
            )
        )
        conn.execute(
            "UPDATE judges SET invitation_sent=1, invitation_sent_at=? WHERE id=?",
            (now_iso(), judge_id),
        )
    return {"success": True, "message": PREVIEW_MESSAGE, "preview": html}


# -----------------------
# Assignments
# -----------------------
@router.get("/events/{event_id}/assignments")
def list_assignments(event_id: str, round_number: Optional[int] = None):
    # readable without a session, like the judge and round tables
    with db() as conn:
        if not conn.execute("SELECT 1 FROM events WHERE id=?", (event_id,)).fetchone():
            raise HTTPException(404, "Event not found.")
        sql = (
            "SELECT a.* FROM judge_assignments a JOIN judges j ON j.id = a.judge_id "
            "WHERE j.event_id=?"
        )
        params: List[Any] = [event_id]
        if round_number is not None:
            sql += " AND a.round_number=?"
            params.append(round_number)
        rows = conn.execute(sql + " ORDER BY a.round_number, a.judge_id, a.team_id", params).fetchall()
    return rows_dicts(rows)


@router.post("/events/{event_id}/assignments", status_code=201)
def create_assignment(event_id: str, body: AssignmentIn, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    if body.round_number not in (1, 2):
        raise HTTPException(400, "round_number must be 1 or 2.")

    assignment_id = new_id()
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        judge = conn.execute("SELECT id FROM judges WHERE id=? AND event_id=?", (body.judge_id, event_id)).fetchone()
        team = conn.execute("SELECT * FROM teams WHERE id=? AND event_id=?", (body.team_id, event_id)).fetchone()
        if not judge or not team:
            raise HTTPException(400, "Judge and team must both belong to this event.")

        category_id = body.category_id or team["category_id"]
        if category_id is not None:
            cat = conn.execute("SELECT event_id FROM categories WHERE id=?", (category_id,)).fetchone()
            if not cat or cat["event_id"] != event_id:
                raise HTTPException(400, "Category does not belong to this event.")

        conn.execute(
            """
            INSERT INTO judge_assignments(id, judge_id, category_id, team_id, round_number, created_at)
            VALUES(?,?,?,?,?,?)
            """,
            (assignment_id, body.judge_id, category_id, body.team_id, body.round_number, now_iso()),
        )
        row = conn.execute("SELECT * FROM judge_assignments WHERE id=?", (assignment_id,)).fetchone()
    return row_dict(row)


# -----------------------
# Rounds and derived stages
# -----------------------
@router.get("/events/{event_id}/rounds")
def list_rounds(event_id: str):
    with db() as conn:
        rows = conn.execute(
            "SELECT * FROM scoring_rounds WHERE event_id=? ORDER BY round_number", (event_id,)
        ).fetchall()
    if not rows:
        raise HTTPException(404, "Event not found.")
    return rows_dicts(rows)


@router.post("/events/{event_id}/rounds/{round_number}/start")
def start_round_route(event_id: str, round_number: int, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        row = start_round(conn, event_id, round_number)
    return row_dict(row)


@router.post("/events/{event_id}/rounds/{round_number}/complete")
def complete_round_route(event_id: str, round_number: int, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        row = complete_round(conn, event_id, round_number, get_settings().top_n)
    return row_dict(row)


def _normalized_rows(conn, round_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT n.judge_id, j.name AS judge_name, n.team_id, t.name AS team_name,
               n.raw_score, n.normalized_score, n.percentile, n.rank, n.selected_for_round2
        FROM normalized_scores n
        JOIN judges j ON j.id = n.judge_id
        JOIN teams t ON t.id = n.team_id
        WHERE n.round_id=?
        ORDER BY j.name, n.judge_id, n.rank
        """,
        (round_id,),
    ).fetchall()
    out = rows_dicts(rows)
    for r in out:
        r["selected_for_round2"] = bool(r["selected_for_round2"])
    return out


@router.post("/events/{event_id}/rounds/{round_number}/normalize")
def normalize_route(event_id: str, round_number: int, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        rnd = get_round(conn, event_id, round_number)
        recompute_normalized(conn, rnd["id"], get_settings().top_n)
        return _normalized_rows(conn, rnd["id"])


@router.get("/events/{event_id}/rounds/{round_number}/normalized")
def normalized_route(event_id: str, round_number: int, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        rnd = get_round(conn, event_id, round_number)
        return _normalized_rows(conn, rnd["id"])


def _final_rows(conn, event_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT f.final_rank, f.team_id, t.name AS team_name, f.final_score, f.correlation_coefficient
        FROM final_results f JOIN teams t ON t.id = f.team_id
        WHERE f.event_id=?
        ORDER BY f.final_rank
        """,
        (event_id,),
    ).fetchall()
    return rows_dicts(rows)


@router.post("/events/{event_id}/finalize")
def finalize_route(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        rnd = get_round(conn, event_id, 2)
        recompute_normalized(conn, rnd["id"], get_settings().top_n)
        recompute_final_results(conn, event_id)
        return _final_rows(conn, event_id)


@router.get("/events/{event_id}/results")
def results_route(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        return _final_rows(conn, event_id)


@router.get("/events/{event_id}/results.csv")
def download_results(event_id: str, profile: Optional[Dict[str, Any]] = Depends(current_profile)):
    with db() as conn:
        require_event_owner(conn, profile, event_id)
        rows = _final_rows(conn, event_id)

    out = pd.DataFrame(rows, columns=["final_rank", "team_id", "team_name", "final_score", "correlation_coefficient"])
    buf = StringIO()
    out.to_csv(buf, index=False)
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="event_{event_id}_results.csv"'},
    )
