import asyncio

from sqlalchemy import func, select

from buddy.db import SessionLocal
from buddy.models import Connection

from conftest import auth_header, pair, set_link_status, signup


async def _count_links(caregiver_id, student_id):
    async with SessionLocal() as db:
        q = select(func.count(Connection.id)).where(
            Connection.caregiver_id == caregiver_id, Connection.student_id == student_id
        )
        return await db.scalar(q)


def count_links(caregiver_id, student_id):
    return asyncio.run(_count_links(caregiver_id, student_id))


def test_caregiver_redeems_student_code(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")

    body = pair(client, caregiver, student)

    assert body["connection"]["caregiver_id"] == caregiver["user"]["id"]
    assert body["connection"]["student_id"] == student["user"]["id"]
    assert body["connection"]["status"] == "active"
    assert body["student"]["username"] == student["profile"]["username"]
    assert body["student"]["role"] == "student"


def test_redeem_is_case_insensitive_and_idempotent(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")
    code = student["profile"]["student_code"].lower()

    first = client.post("/connections/by-student-code", json={"code": code}, headers=auth_header(caregiver))
    second = client.post("/connections/by-student-code", json={"code": code}, headers=auth_header(caregiver))

    assert first.status_code == second.status_code == 200
    assert first.json()["connection"]["id"] == second.json()["connection"]["id"]
    assert second.json()["connection"]["status"] == "active"
    assert count_links(caregiver["user"]["id"], student["user"]["id"]) == 1


def test_re_redeeming_reactivates_a_blocked_link(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")
    pair(client, caregiver, student)
    set_link_status(caregiver["user"]["id"], student["user"]["id"], "blocked")

    body = pair(client, caregiver, student)

    assert body["connection"]["status"] == "active"
    assert count_links(caregiver["user"]["id"], student["user"]["id"]) == 1


def test_student_redeems_caregiver_code(client):
    student = signup(client, "student")
    educator = signup(client, "educator")

    r = client.post(
        "/connections/by-caregiver-code",
        json={"code": educator["profile"]["caregiver_code"]},
        headers=auth_header(student),
    )
    assert r.status_code == 200
    body = r.json()
    assert body["caregiver"]["user_id"] == educator["user"]["id"]
    assert body["caregiver"]["role"] == "educator"
    assert body["connection"]["student_id"] == student["user"]["id"]


def test_unknown_code_is_400_and_creates_nothing(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")

    r = client.post("/connections/by-student-code", json={"code": "STU-ZZZ-ZZZ"}, headers=auth_header(caregiver))
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid student code"}

    r = client.post("/connections/by-caregiver-code", json={"code": "CAR-ZZZ-ZZZ"}, headers=auth_header(student))
    assert r.status_code == 400

    assert client.get("/connections", headers=auth_header(caregiver)).json() == []


def test_code_of_wrong_kind_does_not_resolve(client):
    caregiver = signup(client, "caregiver")
    other = signup(client, "caregiver")
    # 보호자 코드를 학생 코드 자리에 넣어도 연결되지 않음
    r = client.post(
        "/connections/by-student-code",
        json={"code": other["profile"]["caregiver_code"]},
        headers=auth_header(caregiver),
    )
    assert r.status_code == 400


def test_wrong_role_is_forbidden(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")

    r = client.post(
        "/connections/by-student-code",
        json={"code": student["profile"]["student_code"]},
        headers=auth_header(student),
    )
    assert r.status_code == 403

    r = client.post(
        "/connections/by-caregiver-code",
        json={"code": caregiver["profile"]["caregiver_code"]},
        headers=auth_header(caregiver),
    )
    assert r.status_code == 403


def test_list_connections_shape_depends_on_role(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")
    pair(client, caregiver, student)

    mine = client.get("/connections", headers=auth_header(caregiver)).json()
    assert len(mine) == 1
    assert mine[0]["student_profile"]["user_id"] == student["user"]["id"]
    assert mine[0]["caregiver_profile"] is None

    theirs = client.get("/connections", headers=auth_header(student)).json()
    assert len(theirs) == 1
    assert theirs[0]["caregiver_profile"]["user_id"] == caregiver["user"]["id"]
    assert theirs[0]["student_profile"] is None


def test_list_connections_hides_inactive_links(client):
    student = signup(client, "student")
    caregiver = signup(client, "caregiver")
    pair(client, caregiver, student)
    set_link_status(caregiver["user"]["id"], student["user"]["id"], "pending")

    assert client.get("/connections", headers=auth_header(caregiver)).json() == []
    assert client.get("/connections", headers=auth_header(student)).json() == []


def test_list_connections_requires_auth(client):
    r = client.get("/connections")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}
