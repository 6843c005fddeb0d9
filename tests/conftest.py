import pytest
from fastapi.testclient import TestClient

from judging.config import get_settings
from judging.db import create_rounds, db, init_db, new_id, now_iso
from judging.main import app


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "judging.sqlite")
    monkeypatch.setattr(get_settings(), "db_path", path)
    monkeypatch.setattr(get_settings(), "top_n", 2)
    init_db()
    return path


@pytest.fixture
def conn(db_path):
    c = db()
    yield c
    c.close()


@pytest.fixture
def client(db_path):
    with TestClient(app) as c:
        yield c


def signup(client, email="org@example.com", name="Org"):
    resp = client.post("/auth/signup", json={"name": name, "email": email, "password": "secret"})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def organizer(client):
    return signup(client)


def seed_event(conn, token="judge-token-1"):
    """Profile, event with both rounds, one category, one team, one judge assigned in round 1."""
    ids = {"profile": new_id(), "event": new_id(), "category": new_id(), "team": new_id(), "judge": new_id()}
    stamp = now_iso()
    conn.execute(
        "INSERT INTO profiles(id, name, email, password_hash, password_salt, created_at) VALUES(?,?,?,?,?,?)",
        (ids["profile"], "Org", f"{ids['profile']}@example.com", "x", "y", stamp),
    )
    conn.execute(
        "INSERT INTO events(id, name, created_by, created_at, updated_at) VALUES(?,?,?,?,?)",
        (ids["event"], "HackX", ids["profile"], stamp, stamp),
    )
    create_rounds(conn, ids["event"])
    conn.execute(
        "INSERT INTO categories(id, event_id, name, weight, criteria, created_at) VALUES(?,?,?,?,?,?)",
        (ids["category"], ids["event"], "Software", 1, '["Idea", "Execution"]', stamp),
    )
    conn.execute(
        "INSERT INTO teams(id, event_id, name, category_id, created_at) VALUES(?,?,?,?,?)",
        (ids["team"], ids["event"], "Alpha", ids["category"], stamp),
    )
    conn.execute(
        "INSERT INTO judges(id, event_id, name, email, access_token, created_at) VALUES(?,?,?,?,?,?)",
        (ids["judge"], ids["event"], "Ana", "a@x.com", token, stamp),
    )
    ids["assignment"] = new_id()
    conn.execute(
        "INSERT INTO judge_assignments(id, judge_id, category_id, team_id, round_number, created_at) VALUES(?,?,?,?,?,?)",
        (ids["assignment"], ids["judge"], ids["category"], ids["team"], 1, stamp),
    )
    ids["round1"] = conn.execute(
        "SELECT id FROM scoring_rounds WHERE event_id=? AND round_number=1", (ids["event"],)
    ).fetchone()["id"]
    ids["round2"] = conn.execute(
        "SELECT id FROM scoring_rounds WHERE event_id=? AND round_number=2", (ids["event"],)
    ).fetchone()["id"]
    return ids
