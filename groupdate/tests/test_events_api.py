"""HTTP tests for the event routes, run against the in-memory store."""

from groupdate.models.scheduling import Phase
from groupdate.tests.fakes import EVENT_ID, EVENT_TOKEN, HOST_ID

BASE = f"/events/{EVENT_TOKEN}"
HOST_HEADERS = {"X-Authenticated-User": HOST_ID}
SESSION_COOKIE = "gd_session_evt12345"
PERSON_COOKIE = "selected-person-evt12345"


def join_as(client, slug, **body):
    client.cookies.clear()
    resp = client.post(f"{BASE}/join", json={"name_slug": slug, **body})
    assert resp.status_code == 200, resp.text
    return resp.json()


def reach_pick_days(client):
    join_as(client, "alice")
    assert client.post(f"{BASE}/vote", json={"in": True}).json()["phase"] == "VOTE"
    join_as(client, "bob")
    assert client.post(f"{BASE}/vote", json={"in": True}).json()["phase"] == "PICK_DAYS"


def test_anonymous_view(client):
    resp = client.get(BASE)
    assert resp.status_code == 200
    data = resp.json()
    assert data["event"]["title"] == "Dinner"
    assert data["event"]["phase"] == "VOTE"
    assert data["you"] is None
    assert data["is_host"] is False
    assert [s["slug"] for s in data["attendee_names"]] == ["alice", "bob", "carol"]


def test_unknown_event(client):
    resp = client.get("/events/nope")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_malformed_token_is_rejected(client):
    resp = client.get("/events/bad.token")
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_vote_requires_join(client):
    resp = client.post(f"{BASE}/vote", json={"in": True})
    assert resp.status_code == 401
    assert resp.json()["error_code"] == "not_joined"


def test_join_sets_cookies_and_view_knows_you(client):
    data = join_as(client, "alice", display_name="Ali")
    assert data["mode"] == "created"
    assert data["you"]["attendee_slug"] == "alice"
    assert client.cookies.get(SESSION_COOKIE)
    assert client.cookies.get(PERSON_COOKIE) == "alice"

    view = client.get(BASE).json()
    assert view["you"]["display_name"] == "Ali"
    taken = {s["slug"]: s["taken_by"] for s in view["attendee_names"]}
    assert taken["alice"] == "taken"


def test_session_header_is_accepted(client):
    join_as(client, "carol")
    token = client.cookies.get(SESSION_COOKIE)
    client.cookies.clear()
    resp = client.post(f"{BASE}/vote", json={"in": True}, headers={"X-Session-Token": token})
    assert resp.status_code == 200
    assert resp.json()["in"] is True


def test_join_requires_a_slot(client):
    resp = client.post(f"{BASE}/join", json={"display_name": "Someone"})
    assert resp.status_code == 400


def test_join_unknown_slot(client):
    resp = client.post(f"{BASE}/join", json={"name_slug": "zed"})
    assert resp.status_code == 400
    assert resp.json()["error_code"] == "invalid_attendee"


def test_quorum_then_blocks(client, store):
    reach_pick_days(client)
    assert store.events[EVENT_ID].phase is Phase.PICK_DAYS

    resp = client.post(f"{BASE}/blocks", json={"dates": ["2030-06-11", "2030-06-11"]})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "count": 1, "dates": ["2030-06-11"]}

    view = client.get(BASE).json()
    assert view["initial_blocks"] == ["2030-06-11"]
    assert view["availability_progress"]["completed_availability"] == 1


def test_blocks_bad_date(client):
    reach_pick_days(client)
    resp = client.post(f"{BASE}/blocks", json={"dates": ["2030-13-01"]})
    assert resp.status_code == 400


def test_blocks_out_of_range(client):
    reach_pick_days(client)
    resp = client.post(f"{BASE}/blocks", json={"dates": ["2031-01-01"]})
    assert resp.status_code == 400
    assert resp.json()["error_code"] == "date_out_of_range"


def test_blocks_closed_during_vote(client):
    join_as(client, "alice")
    resp = client.post(f"{BASE}/blocks", json={"dates": ["2030-06-11"]})
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "blocks_closed"


def test_switch_name_and_leave(client):
    join_as(client, "alice")
    resp = client.post(f"{BASE}/switch-name", json={"attendee_id": "att-bob"})
    assert resp.status_code == 200
    assert resp.json()["mode"] == "switched"
    assert client.get(BASE).json()["you"]["attendee_slug"] == "bob"

    resp = client.delete(f"{BASE}/leave")
    assert resp.status_code == 200
    assert client.get(BASE).json()["you"] is None
    assert client.delete(f"{BASE}/leave").status_code == 401


def test_host_view_and_phase_change(client):
    view = client.get(BASE, headers=HOST_HEADERS).json()
    assert view["is_host"] is True
    assert view["host_method"] == "authenticated_user"
    assert view["host_confidence"] == "high"

    resp = client.post(f"{BASE}/phase", json={"phase": "pick_days"}, headers=HOST_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["phase"] == "PICK_DAYS"


def test_non_host_cannot_change_phase(client):
    join_as(client, "alice", display_name="Hazel")
    assert client.get(BASE).json()["suspected_host"] is True
    resp = client.post(f"{BASE}/phase", json={"phase": "PICK_DAYS"})
    assert resp.status_code == 401
    assert resp.json()["error_code"] == "host_required"


def test_illegal_phase_change(client):
    resp = client.post(f"{BASE}/phase", json={"phase": "FINALIZED"}, headers=HOST_HEADERS)
    assert resp.status_code == 409


def test_unknown_phase_name(client):
    resp = client.post(f"{BASE}/phase", json={"phase": "DONE"}, headers=HOST_HEADERS)
    assert resp.status_code == 400


def test_results_and_final_date(client):
    reach_pick_days(client)
    client.cookies.clear()
    assert client.get(BASE).json()["results_visible"] is False

    resp = client.post(f"{BASE}/show-results", json={"show_results_to_everyone": True}, headers=HOST_HEADERS)
    assert resp.json()["show_results_to_everyone"] is True
    assert client.get(BASE).json()["results_visible"] is True

    client.post(f"{BASE}/phase", json={"phase": "RESULTS"}, headers=HOST_HEADERS)
    resp = client.post(f"{BASE}/final", json={"final_date": "2030-06-12"}, headers=HOST_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["phase"] == "FINALIZED"
    assert resp.json()["final_date"] == "2030-06-12"


def test_override_disabled(client):
    resp = client.post(
        f"{BASE}/phase/override",
        json={"phase": "RESULTS", "reason": "venue booked"},
        headers=HOST_HEADERS,
    )
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "override_disabled"


def test_override_enabled(client, settings, store):
    settings.phase.allow_override = True
    resp = client.post(
        f"{BASE}/phase/override",
        json={"phase": "RESULTS", "reason": "venue booked"},
        headers=HOST_HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["phase"] == "RESULTS"
    assert store.audit[0]["actor_method"] == "authenticated_user"


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["redis"] == "healthy"
    assert data["database"] == {"status": "disabled"}
    assert "hits" in data["cache"]


def test_cron_sweeper(client, settings):
    resp = client.get("/cron/phase-sweeper")
    assert resp.status_code == 200
    assert resp.json()["checked"] == 0

    settings.auth.cron_secret = "s3cret"
    assert client.get("/cron/phase-sweeper").status_code == 401
    resp = client.get("/cron/phase-sweeper", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200
