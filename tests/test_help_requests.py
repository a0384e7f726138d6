import itertools

import pytest

from conftest import auth_header, pair, set_link_status, signup

STATUSES = ["open", "answered", "closed"]
ALLOWED = {("open", "answered"), ("open", "closed"), ("answered", "closed")}


@pytest.fixture
def linked(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")
    pair(client, caregiver, student)
    return student, caregiver


def create(client, student, **body):
    r = client.post("/help-requests", json=body, headers=auth_header(student))
    assert r.status_code == 201, r.text
    return r.json()


def patch(client, caregiver, request_id, status):
    return client.patch(
        f"/help-requests/{request_id}", json={"status": status}, headers=auth_header(caregiver)
    )


def bring_to(client, caregiver, request_id, status):
    if status != "open":
        assert patch(client, caregiver, request_id, status).status_code == 200


def test_create_then_list_round_trip(client, linked):
    student, _ = linked
    created = create(client, student, message="need help", urgency="urgent")

    r = client.get("/help-requests", headers=auth_header(student))
    assert r.status_code == 200
    items = r.json()
    assert len(items) == 1
    assert items[0]["id"] == created["id"]
    assert items[0]["status"] == "open"
    assert items[0]["urgency"] == "urgent"
    assert items[0]["message"] == "need help"
    assert items[0]["resolved_by"] is None
    assert items[0]["resolved_at"] is None


def test_urgency_defaults_to_ok(client, linked):
    student, _ = linked
    created = create(client, student)
    assert created["urgency"] == "ok"
    assert created["message"] is None
    assert created["status"] == "open"


def test_message_length_is_bounded(client, linked):
    student, _ = linked
    r = client.post("/help-requests", json={"message": "x" * 501}, headers=auth_header(student))
    assert r.status_code == 400


def test_invalid_urgency_is_rejected(client, linked):
    student, _ = linked
    r = client.post("/help-requests", json={"urgency": "panic"}, headers=auth_header(student))
    assert r.status_code == 400


def test_only_students_create_requests(client, linked):
    _, caregiver = linked
    r = client.post("/help-requests", json={}, headers=auth_header(caregiver))
    assert r.status_code == 403


def test_list_for_dependent_is_newest_first(client, linked):
    student, _ = linked
    ids = [create(client, student, message=str(i))["id"] for i in range(3)]
    listed = [item["id"] for item in client.get("/help-requests", headers=auth_header(student)).json()]
    assert listed == list(reversed(ids))


def test_list_for_supervisor_covers_active_links_only(client):
    caregiver = signup(client, "caregiver")
    active_student = signup(client, "student")
    blocked_student = signup(client, "student")
    stranger = signup(client, "student")
    pair(client, caregiver, active_student)
    pair(client, caregiver, blocked_student)
    set_link_status(caregiver["user"]["id"], blocked_student["user"]["id"], "blocked")

    visible = create(client, active_student, message="visible")
    create(client, blocked_student, message="hidden")
    create(client, stranger, message="hidden too")

    items = client.get("/help-requests", headers=auth_header(caregiver)).json()
    assert [item["id"] for item in items] == [visible["id"]]
    assert items[0]["student_profile"]["user_id"] == active_student["user"]["id"]


@pytest.mark.parametrize("current, target", list(itertools.product(STATUSES, STATUSES)))
def test_transition_table(client, linked, current, target):
    student, caregiver = linked
    request_id = create(client, student)["id"]
    bring_to(client, caregiver, request_id, current)

    r = patch(client, caregiver, request_id, target)

    if (current, target) in ALLOWED:
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["status"] == target
        assert body["resolved_by"] == caregiver["user"]["id"]
        assert body["resolved_at"] is not None
    else:
        assert r.status_code == 400
        assert "error" in r.json()


@pytest.mark.parametrize("current", STATUSES)
def test_unlinked_supervisor_is_always_forbidden(client, linked, current):
    student, caregiver = linked
    outsider = signup(client, "caregiver")
    request_id = create(client, student)["id"]
    bring_to(client, caregiver, request_id, current)

    for target in ("answered", "closed"):
        r = patch(client, outsider, request_id, target)
        assert r.status_code == 403


def test_inactive_link_cannot_transition(client, linked):
    student, caregiver = linked
    request_id = create(client, student)["id"]
    set_link_status(caregiver["user"]["id"], student["user"]["id"], "pending")

    assert patch(client, caregiver, request_id, "closed").status_code == 403


def test_unknown_request_is_404(client, linked):
    _, caregiver = linked
    r = patch(client, caregiver, 424242, "closed")
    assert r.status_code == 404
    assert r.json() == {"error": "Help request not found"}


def test_students_cannot_patch(client, linked):
    student, _ = linked
    request_id = create(client, student)["id"]
    assert patch(client, student, request_id, "closed").status_code == 403


def test_educator_can_resolve_linked_request(client):
    student = signup(client, "student")
    educator = signup(client, "educator")
    pair(client, educator, student)
    request_id = create(client, student)["id"]

    r = patch(client, educator, request_id, "answered")
    assert r.status_code == 200
    assert r.json()["resolved_by"] == educator["user"]["id"]
