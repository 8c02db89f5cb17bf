import json

import pytest

from extensions import db
from models import Complaint


@pytest.fixture
def filed(client, users, as_actor, complaint_data):
    response = client.post("/api/complaints", json=complaint_data, headers=as_actor(users["citizen"]))
    assert response.status_code == 201
    return response.get_json()["complaint"]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "database": "ok"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_requests_without_actor_are_rejected(client):
    response = client.get("/api/complaints")
    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_unknown_actor_is_rejected(client, as_actor):
    assert client.get("/api/complaints", headers=as_actor("nobody")).status_code == 401


def test_create_complaint(filed, users):
    assert filed["status"] == "Pending"
    assert filed["priorityScore"] == 0
    assert filed["citizen"]["id"] == users["citizen"]
    assert filed["citizen"]["civicPoints"] == 20
    assert filed["activityLog"][0]["message"] == "Complaint filed by citizen"


def test_create_validates_payload(client, users, as_actor, complaint_data):
    response = client.post(
        "/api/complaints",
        json=dict(complaint_data, title="abc"),
        headers=as_actor(users["citizen"]),
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "record_invalid"


def test_department_staff_cannot_create(client, users, as_actor, complaint_data):
    response = client.post("/api/complaints", json=complaint_data, headers=as_actor(users["officer"]))
    assert response.status_code == 403


def test_list_and_get(client, users, as_actor, filed):
    listing = client.get("/api/complaints?page=1&limit=5", headers=as_actor(users["neighbour"])).get_json()
    assert listing["total"] == 1
    assert listing["pages"] == 1
    assert listing["complaints"][0]["id"] == filed["id"]

    detail = client.get(f"/api/complaints/{filed['id']}", headers=as_actor(users["neighbour"]))
    assert detail.status_code == 200
    assert detail.get_json()["complaint"]["title"] == filed["title"]

    missing = client.get("/api/complaints/does-not-exist", headers=as_actor(users["neighbour"]))
    assert missing.status_code == 404
    assert missing.get_json() == {"message": "Complaint not found", "error": "not_found"}


def test_list_rejects_bad_paging(client, users, as_actor):
    response = client.get("/api/complaints?page=zero", headers=as_actor(users["citizen"]))
    assert response.status_code == 400


def test_map_lists_located_complaints(client, users, as_actor, filed):
    markers = client.get("/api/complaints/map", headers=as_actor(users["citizen"])).get_json()["complaints"]
    assert markers[0]["location"]["lat"] == 20.93


def test_vote_toggle(client, users, as_actor, filed):
    url = f"/api/complaints/{filed['id']}/vote"
    assert client.post(url, headers=as_actor(users["neighbour"])).get_json() == {
        "votes": 1,
        "priorityScore": 2,
        "voted": True,
    }
    assert client.post(url, headers=as_actor(users["third"])).get_json()["votes"] == 2
    assert client.post(url, headers=as_actor(users["neighbour"])).get_json() == {
        "votes": 1,
        "priorityScore": 2,
        "voted": False,
    }


def test_status_flow_and_rating(client, app, users, as_actor, filed):
    url = f"/api/complaints/{filed['id']}"
    started = client.put(f"{url}/status", json={"status": "In Progress"}, headers=as_actor(users["officer"]))
    assert started.status_code == 200
    assert started.get_json()["complaint"]["assignedTo"]["id"] == users["officer"]

    resolved = client.put(
        f"{url}/status",
        json={"status": "Resolved", "note": "Patched with asphalt"},
        headers=as_actor(users["officer"]),
    )
    body = resolved.get_json()["complaint"]
    assert body["status"] == "Resolved"
    assert body["activityLog"][-1]["message"] == "Patched with asphalt"

    again = client.put(f"{url}/status", json={"status": "In Progress"}, headers=as_actor(users["officer"]))
    assert again.status_code == 409
    assert again.get_json()["error"] == "invalid_state"

    stranger = client.post(f"{url}/rate", json={"rating": 5}, headers=as_actor(users["neighbour"]))
    assert stranger.status_code == 403

    bad = client.post(f"{url}/rate", json={"rating": 9}, headers=as_actor(users["citizen"]))
    assert bad.status_code == 400

    rated = client.post(f"{url}/rate", json={"rating": 5}, headers=as_actor(users["citizen"]))
    assert rated.status_code == 200
    assert rated.get_json()["complaint"]["satisfactionRating"] == 5

    duplicate = client.post(f"{url}/rate", json={"rating": 3}, headers=as_actor(users["citizen"]))
    assert duplicate.status_code == 409
    assert duplicate.get_json()["error"] == "already_rated"

    departments = client.get("/api/departments", headers=as_actor(users["citizen"])).get_json()["departments"]
    officer = next(row for row in departments if row["id"] == users["officer"])
    assert officer["averageRating"] == 5.0
    assert officer["totalRatings"] == 1


def test_status_update_requires_department_role(client, users, as_actor, filed):
    response = client.put(
        f"/api/complaints/{filed['id']}/status",
        json={"status": "In Progress"},
        headers=as_actor(users["citizen"]),
    )
    assert response.status_code == 403


def test_foreign_department_is_forbidden(client, users, as_actor, filed):
    response = client.put(
        f"/api/complaints/{filed['id']}/status",
        json={"status": "In Progress"},
        headers=as_actor(users["water"]),
    )
    assert response.status_code == 403
    assert response.get_json()["message"] == "Not authorized for this department"


def test_notifications_inbox(client, users, as_actor, filed):
    client.put(f"/api/complaints/{filed['id']}/status", json={"status": "In Progress"}, headers=as_actor(users["officer"]))
    inbox = client.get("/api/notifications", headers=as_actor(users["citizen"])).get_json()
    assert inbox["unreadCount"] == 1
    notification = inbox["notifications"][0]
    assert notification["type"] == "status_update"
    assert notification["complaint"]["id"] == filed["id"]

    read = client.put(f"/api/notifications/{notification['id']}/read", headers=as_actor(users["citizen"]))
    assert read.get_json()["notification"]["read"] is True
    assert client.put("/api/notifications/read-all", headers=as_actor(users["citizen"])).get_json()["updated"] == 0

    other = client.put(f"/api/notifications/{notification['id']}/read", headers=as_actor(users["neighbour"]))
    assert other.status_code == 404


def test_delete_is_admin_only(client, app, users, as_actor, filed):
    url = f"/api/complaints/{filed['id']}"
    assert client.delete(url, headers=as_actor(users["citizen"])).status_code == 403
    assert client.delete(url, headers=as_actor(users["admin"])).get_json() == {"message": "Complaint deleted"}
    with app.app_context():
        assert db.session.get(Complaint, filed["id"]) is None


def test_stats_and_reports(client, users, as_actor, filed):
    city = client.get("/api/stats/city", headers=as_actor(users["citizen"])).get_json()
    assert city["total"] == 1

    dept = client.get("/api/stats/department/Roads%20%26%20Infrastructure", headers=as_actor(users["citizen"])).get_json()
    assert dept["pending"] == 1

    report = client.get("/api/reports/department/Roads%20%26%20Infrastructure", headers=as_actor(users["officer"]))
    assert report.status_code == 200
    assert report.get_json()["report"]["summary"]["total"] == 1

    foreign = client.get("/api/reports/department/Roads%20%26%20Infrastructure", headers=as_actor(users["water"]))
    assert foreign.status_code == 403
    assert client.get("/api/reports/department/Water%20Supply", headers=as_actor(users["citizen"])).status_code == 403


def test_categorize_suggestion(client, users, as_actor):
    response = client.post(
        "/api/ai/categorize",
        json={"title": "Streetlight not working", "description": "The lamp near the school is dark"},
        headers=as_actor(users["citizen"]),
    )
    suggestion = response.get_json()["suggestion"]
    assert suggestion["department"] == "Street Lighting"
    assert suggestion["source"] == "keyword"


def _read_events(chunks, count):
    events = []
    for chunk in chunks:
        text = chunk.decode("utf-8")
        if text.startswith(":"):
            continue
        events.append(dict(line.split(": ", 1) for line in text.strip().splitlines()))
        if len(events) == count:
            break
    return events


def _open_stream(client, headers):
    return client.get("/api/notifications/stream", headers=headers, buffered=False)


def test_stream_pushes_department_deltas(client, app, users, as_actor, filed):
    app.config["STREAM_HEARTBEAT_SECONDS"] = 0.05
    client.put(f"/api/complaints/{filed['id']}/status", json={"status": "In Progress"}, headers=as_actor(users["officer"]))

    response = _open_stream(client, dict(as_actor(users["officer"]), **{"Last-Event-ID": "0"}))
    try:
        assert response.status_code == 200
        assert response.mimetype == "text/event-stream"
        events = _read_events(response.response, 3)
    finally:
        response.close()

    assert events[0]["event"] == "ready"
    assert json.loads(events[0]["data"])["channels"] == [f"user:{users['officer']}", "dept:Roads & Infrastructure"]
    assert [event["event"] for event in events[1:]] == ["complaint:new", "complaint:updated"]
    delta = json.loads(events[2]["data"])
    assert delta["channel"] == "dept:Roads & Infrastructure"
    assert delta["payload"] == {"id": filed["id"], "status": "In Progress", "priorityScore": 0}
    assert int(events[2]["id"]) > int(events[1]["id"])


def test_stream_pushes_filer_notifications(client, app, users, as_actor, filed):
    app.config["STREAM_HEARTBEAT_SECONDS"] = 0.05
    client.put(f"/api/complaints/{filed['id']}/status", json={"status": "In Progress"}, headers=as_actor(users["officer"]))

    response = _open_stream(client, dict(as_actor(users["citizen"]), **{"Last-Event-ID": "0"}))
    try:
        events = _read_events(response.response, 2)
    finally:
        response.close()

    assert json.loads(events[0]["data"])["channels"] == [f"user:{users['citizen']}"]
    assert events[1]["event"] == "notification:new"
    pushed = json.loads(events[1]["data"])["payload"]
    assert pushed["type"] == "status_update"
    assert pushed["complaint"]["id"] == filed["id"]


def test_stream_rejects_malformed_last_event_id(client, users, as_actor):
    response = _open_stream(client, dict(as_actor(users["citizen"]), **{"Last-Event-ID": "abc"}))
    assert response.status_code == 400


def test_admin_can_rate_a_complaint_they_filed(client, users, as_actor, complaint_data):
    created = client.post("/api/complaints", json=complaint_data, headers=as_actor(users["admin"]))
    complaint_id = created.get_json()["complaint"]["id"]
    client.put(f"/api/complaints/{complaint_id}/status", json={"status": "Resolved"}, headers=as_actor(users["officer"]))

    rated = client.post(f"/api/complaints/{complaint_id}/rate", json={"rating": 4}, headers=as_actor(users["admin"]))
    assert rated.status_code == 200
    assert rated.get_json()["complaint"]["satisfactionRating"] == 4

    officer = client.post(f"/api/complaints/{complaint_id}/rate", json={"rating": 4}, headers=as_actor(users["officer"]))
    assert officer.status_code == 409
