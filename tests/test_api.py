import pytest

from .conftest import signup

TEAM_NAMES = ["Alpha", "Beta", "Gamma", "Delta"]


def build_event(client, headers, judge_count=2):
    event = client.post("/events", json={"name": "HackX"}, headers=headers).json()
    event_id = event["id"]
    category = client.post(
        f"/events/{event_id}/categories",
        json={"name": "Software", "weight": 1, "criteria": ["Idea", "Execution"]},
        headers=headers,
    ).json()
    teams = {}
    for name in TEAM_NAMES:
        team = client.post(
            f"/events/{event_id}/teams", json={"name": name, "category_id": category["id"]}, headers=headers
        ).json()
        teams[name] = team
    judges = []
    for i in range(judge_count):
        judges.append(
            client.post(
                f"/events/{event_id}/judges", json={"name": f"Judge {i}", "email": f"j{i}@x.com"}, headers=headers
            ).json()
        )
    for judge in judges:
        for team in teams.values():
            resp = client.post(
                f"/events/{event_id}/assignments",
                json={"judge_id": judge["id"], "team_id": team["id"]},
                headers=headers,
            )
            assert resp.status_code == 201, resp.text
    return event, category, teams, judges


def score(client, judge, team, value):
    return client.post(
        "/api/judge/scores",
        json={"token": judge["access_token"], "team_id": team["id"], "scores": {"Idea": value, "Execution": value}},
    )


def test_session_roundtrip(client):
    headers = signup(client, email="ana@example.com", name="Ana")
    resp = client.get("/auth/session", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["profile"]["email"] == "ana@example.com"

    client.post("/auth/logout", headers=headers)
    assert client.get("/auth/session", headers=headers).status_code == 401


def test_login_checks_password(client):
    signup(client, email="ana@example.com")
    assert client.post("/auth/login", json={"email": "ana@example.com", "password": "nope"}).status_code == 401
    resp = client.post("/auth/login", json={"email": "ana@example.com", "password": "secret"})
    assert resp.status_code == 200
    assert resp.json()["token"]


def test_event_comes_with_two_pending_rounds(client, organizer):
    event = client.post("/events", json={"name": "HackX"}, headers=organizer).json()
    rounds = client.get(f"/events/{event['id']}/rounds").json()
    assert [(r["round_number"], r["status"]) for r in rounds] == [(1, "pending"), (2, "pending")]


def test_only_the_creator_sees_an_event(client, organizer):
    event = client.post("/events", json={"name": "HackX"}, headers=organizer).json()
    stranger = signup(client, email="other@example.com")

    assert client.get(f"/events/{event['id']}", headers=organizer).status_code == 200
    assert client.get(f"/events/{event['id']}", headers=stranger).status_code == 403
    assert client.get(f"/events/{event['id']}").status_code == 403
    assert client.get(f"/events/{event['id']}/teams", headers=stranger).status_code == 403
    assert client.get("/events", headers=stranger).json() == []
    assert client.get("/events/missing", headers=organizer).status_code == 404


def test_update_event(client, organizer):
    event = client.post("/events", json={"name": "HackX"}, headers=organizer).json()
    resp = client.patch(f"/events/{event['id']}", json={"status": "active"}, headers=organizer)
    assert resp.json()["status"] == "active"
    assert client.patch(f"/events/{event['id']}", json={"status": "weird"}, headers=organizer).status_code == 400


def test_team_category_from_another_event_is_refused(client, organizer):
    first = client.post("/events", json={"name": "One"}, headers=organizer).json()
    second = client.post("/events", json={"name": "Two"}, headers=organizer).json()
    category = client.post(f"/events/{second['id']}/categories", json={"name": "HW"}, headers=organizer).json()

    resp = client.post(
        f"/events/{first['id']}/teams", json={"name": "Stray", "category_id": category["id"]}, headers=organizer
    )
    assert resp.status_code == 400


def test_duplicate_assignment_is_a_conflict(client, organizer):
    event, _, teams, judges = build_event(client, organizer, judge_count=1)
    resp = client.post(
        f"/events/{event['id']}/assignments",
        json={"judge_id": judges[0]["id"], "team_id": teams["Alpha"]["id"]},
        headers=organizer,
    )
    assert resp.status_code == 409


def test_judge_tokens_are_distinct(client, organizer):
    _, _, _, judges = build_event(client, organizer, judge_count=3)
    tokens = {j["access_token"] for j in judges}
    assert len(tokens) == 3
    assert all(len(t) >= 24 for t in tokens)


def test_scoring_requires_an_open_round(client, organizer):
    _, _, teams, judges = build_event(client, organizer, judge_count=1)
    assert score(client, judges[0], teams["Alpha"], 5).status_code == 409


def test_score_validation(client, organizer):
    event, _, teams, judges = build_event(client, organizer, judge_count=1)
    client.post(f"/events/{event['id']}/rounds/1/start", headers=organizer)
    judge = judges[0]

    assert score(client, judge, teams["Alpha"], 11).status_code == 400
    assert score(client, judge, teams["Alpha"], -1).status_code == 400
    unknown = client.post(
        "/api/judge/scores",
        json={"token": judge["access_token"], "team_id": teams["Alpha"]["id"], "scores": {"Vibes": 5}},
    )
    assert unknown.status_code == 400
    bad_token = client.post(
        "/api/judge/scores",
        json={"token": "nope", "team_id": teams["Alpha"]["id"], "scores": {"Idea": 5}},
    )
    assert bad_token.status_code == 403

    resp = score(client, judge, teams["Alpha"], 7)
    assert resp.status_code == 200
    assert [(r["criterion_name"], r["score"]) for r in resp.json()] == [("Execution", 7.0), ("Idea", 7.0)]
    # resubmission overwrites
    assert [r["score"] for r in score(client, judge, teams["Alpha"], 9).json()] == [9.0, 9.0]


def test_round_transitions_only_move_forward(client, organizer):
    event = client.post("/events", json={"name": "HackX"}, headers=organizer).json()
    eid = event["id"]
    assert client.post(f"/events/{eid}/rounds/1/complete", headers=organizer).status_code == 409
    assert client.post(f"/events/{eid}/rounds/2/start", headers=organizer).status_code == 409
    assert client.post(f"/events/{eid}/rounds/1/start", headers=organizer).status_code == 200
    assert client.post(f"/events/{eid}/rounds/1/start", headers=organizer).status_code == 409
    assert client.post(f"/events/{eid}/rounds/3/start", headers=organizer).status_code == 404


def test_two_round_flow(client, organizer):
    event, _, teams, judges = build_event(client, organizer)
    eid = event["id"]
    first, second = judges

    assert client.post(f"/events/{eid}/rounds/1/start", headers=organizer).json()["status"] == "active"
    for name, value in zip(TEAM_NAMES, [9, 7, 5, 3]):
        assert score(client, first, teams[name], value).status_code == 200
    for name, value in zip(TEAM_NAMES, [8, 9, 4, 2]):
        assert score(client, second, teams[name], value).status_code == 200

    assert client.post(f"/events/{eid}/rounds/1/complete", headers=organizer).json()["status"] == "completed"

    normalized = client.get(f"/events/{eid}/rounds/1/normalized", headers=organizer).json()
    assert len(normalized) == 8
    for judge in judges:
        mine = [r for r in normalized if r["judge_id"] == judge["id"]]
        assert sorted(r["rank"] for r in mine) == [1, 2, 3, 4]
        assert sum(r["selected_for_round2"] for r in mine) == 2
    finalists = {r["team_name"] for r in normalized if r["selected_for_round2"]}
    assert finalists == {"Alpha", "Beta"}

    client.post(f"/events/{eid}/rounds/2/start", headers=organizer)
    round2 = client.get(f"/events/{eid}/assignments", params={"round_number": 2}).json()
    assert len(round2) == 4
    assert {a["team_id"] for a in round2} == {teams["Alpha"]["id"], teams["Beta"]["id"]}

    # Gamma did not make it
    assert score(client, first, teams["Gamma"], 10).status_code == 403

    score(client, first, teams["Alpha"], 9)
    score(client, first, teams["Beta"], 6)
    score(client, second, teams["Alpha"], 8)
    score(client, second, teams["Beta"], 5)
    client.post(f"/events/{eid}/rounds/2/complete", headers=organizer)

    results = client.get(f"/events/{eid}/results", headers=organizer).json()
    assert [(r["final_rank"], r["team_name"]) for r in results] == [(1, "Alpha"), (2, "Beta")]
    assert results[0]["final_score"] == pytest.approx(1.0)
    assert results[1]["final_score"] == pytest.approx(-1.0)
    assert results[0]["correlation_coefficient"] == pytest.approx(1.0)

    again = client.post(f"/events/{eid}/finalize", headers=organizer).json()
    assert again == results

    csv = client.get(f"/events/{eid}/results.csv", headers=organizer)
    assert csv.headers["content-type"].startswith("text/csv")
    lines = csv.text.strip().splitlines()
    assert lines[0] == "final_rank,team_id,team_name,final_score,correlation_coefficient"
    assert lines[1].startswith("1,")


def test_judge_me_lists_only_judge_facing_data(client, organizer):
    event, _, teams, judges = build_event(client, organizer, judge_count=1)
    client.post(f"/events/{event['id']}/rounds/1/start", headers=organizer)

    me = client.get("/api/judge/me", params={"token": judges[0]["access_token"]}).json()
    assert me["judge"]["id"] == judges[0]["id"]
    assert me["active_round"]["round_number"] == 1
    assert len(me["assignments"]) == 4
    assert {t["team_name"] for t in me["teams"]} == set(TEAM_NAMES)
    assert me["teams"][0]["criteria"] == ["Idea", "Execution"]

    assert client.get("/api/judge/me", params={"token": "nope"}).status_code == 403


def test_judge_dashboard_and_form_post(client, organizer):
    event, _, teams, judges = build_event(client, organizer, judge_count=1)
    token = judges[0]["access_token"]

    closed = client.get("/judge", params={"token": token})
    assert "No round is open" in closed.text

    client.post(f"/events/{event['id']}/rounds/1/start", headers=organizer)
    page = client.get("/judge", params={"token": token})
    assert page.status_code == 200
    assert "Alpha" in page.text
    assert 'name="c__Idea"' in page.text

    resp = client.post(
        "/judge/scores",
        data={"token": token, "team_id": teams["Alpha"]["id"], "c__Idea": "8", "c__Execution": "6.5"},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    me = client.get("/api/judge/me", params={"token": token}).json()
    assert me["judge"]["id"] == judges[0]["id"]

    too_high = client.post(
        "/judge/scores",
        data={"token": token, "team_id": teams["Beta"]["id"], "c__Idea": "12"},
    )
    assert "between 0 and 10" in too_high.text

    assert "not valid" in client.get("/judge", params={"token": "nope"}).text


def test_invite_judge_renders_preview_and_marks_judge(client, organizer):
    event, _, _, judges = build_event(client, organizer, judge_count=1)
    judge = judges[0]
    resp = client.post(f"/events/{event['id']}/judges/{judge['id']}/invite", headers=organizer)
    body = resp.json()
    assert body["success"] is True
    assert judge["access_token"] in body["preview"]
    assert "HackX" in body["preview"]

    listed = client.get(f"/events/{event['id']}/judges", headers=organizer).json()
    assert listed[0]["invitation_sent"] == 1
    assert listed[0]["invitation_sent_at"]


def test_deleting_event_removes_everything(client, organizer):
    event, category, teams, judges = build_event(client, organizer, judge_count=1)
    eid = event["id"]
    client.post(f"/events/{eid}/rounds/1/start", headers=organizer)
    score(client, judges[0], teams["Alpha"], 5)

    assert client.delete(f"/events/{eid}", headers=organizer).status_code == 200
    assert client.get(f"/events/{eid}", headers=organizer).status_code == 404
    assert client.get(f"/events/{eid}/rounds").status_code == 404
    assert client.get("/api/judge/me", params={"token": judges[0]["access_token"]}).status_code == 403


def test_stranger_cannot_delete(client, organizer):
    event, _, teams, _ = build_event(client, organizer, judge_count=1)
    stranger = signup(client, email="other@example.com")
    assert client.delete(f"/events/{event['id']}", headers=stranger).status_code == 403
    assert client.delete(f"/teams/{teams['Alpha']['id']}", headers=stranger).status_code == 403
    assert client.delete(f"/teams/{teams['Alpha']['id']}", headers=organizer).status_code == 200


def test_category_in_use_cannot_be_deleted(client, organizer):
    event, category, teams, judges = build_event(client, organizer, judge_count=1)
    eid = event["id"]
    client.post(f"/events/{eid}/rounds/1/start", headers=organizer)
    assert score(client, judges[0], teams["Alpha"], 8).status_code == 200

    resp = client.delete(f"/categories/{category['id']}", headers=organizer)
    assert resp.status_code == 400
    assert "FOREIGN KEY" in resp.json()["detail"]

    assert len(client.get(f"/events/{eid}/assignments", params={"round_number": 1}).json()) == 4
    assert [t["category_id"] for t in client.get(f"/events/{eid}/teams", headers=organizer).json()] == [
        category["id"]
    ] * 4

    client.post(f"/events/{eid}/rounds/1/complete", headers=organizer)
    normalized = client.get(f"/events/{eid}/rounds/1/normalized", headers=organizer).json()
    assert [r["team_name"] for r in normalized] == ["Alpha"]

    unused = client.post(f"/events/{eid}/categories", json={"name": "Spare"}, headers=organizer).json()
    assert client.delete(f"/categories/{unused['id']}", headers=organizer).status_code == 200


def test_normalize_route_recomputes_on_demand(client, organizer):
    event, _, teams, judges = build_event(client, organizer)
    eid = event["id"]
    client.post(f"/events/{eid}/rounds/1/start", headers=organizer)
    for judge, values in zip(judges, [[9, 7, 5, 3], [2, 4, 6, 8]]):
        for name, value in zip(TEAM_NAMES, values):
            score(client, judge, teams[name], value)

    first = client.post(f"/events/{eid}/rounds/1/normalize", headers=organizer)
    assert first.status_code == 200
    rows = first.json()
    assert len(rows) == 8
    selected = {(r["judge_id"], r["team_name"]) for r in rows if r["selected_for_round2"]}
    assert selected == {
        (judges[0]["id"], "Alpha"),
        (judges[0]["id"], "Beta"),
        (judges[1]["id"], "Delta"),
        (judges[1]["id"], "Gamma"),
    }

    second = client.post(f"/events/{eid}/rounds/1/normalize", headers=organizer).json()
    assert second == rows
    assert client.get(f"/events/{eid}/rounds/1/normalized", headers=organizer).json() == rows

    # round stays open; recomputing does not complete it
    rounds = client.get(f"/events/{eid}/rounds").json()
    assert rounds[0]["status"] == "active"

    stranger = signup(client, email="other@example.com")
    assert client.post(f"/events/{eid}/rounds/1/normalize", headers=stranger).status_code == 403
