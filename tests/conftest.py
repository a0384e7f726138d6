import asyncio
import os
import tempfile

# 설정은 buddy 를 import 하기 전에 잡아야 함 (get_settings 캐시)
_DB_DIR = tempfile.mkdtemp(prefix="buddy-test-")
os.environ["ASYNC_DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from buddy.db import Base, SessionLocal, engine
from buddy.main import app
from buddy.models import Connection


async def reset_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def _set_link_status(caregiver_id: int, student_id: int, status: str):
    async with SessionLocal() as db:
        await db.execute(
            update(Connection)
            .where(Connection.caregiver_id == caregiver_id, Connection.student_id == student_id)
            .values(status=status)
        )
        await db.commit()


def set_link_status(caregiver_id: int, student_id: int, status: str):
    asyncio.run(_set_link_status(caregiver_id, student_id, status))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def client():
    asyncio.run(reset_schema())
    with TestClient(app) as c:
        yield c


@pytest.fixture
async def db():
    await reset_schema()
    async with SessionLocal() as session:
        yield session


_counter = {"n": 0}


def signup(client, role: str, username: str | None = None, password: str = "password123"):
    _counter["n"] += 1
    username = username or f"{role}{_counter['n']}"
    r = client.post(
        "/auth/signup",
        json={
            "email": f"{username}@example.com",
            "password": password,
            "username": username,
            "role": role,
        },
    )
    assert r.status_code == 201, r.text
    return r.json()


def auth_header(account: dict) -> dict:
    return {"Authorization": f"Bearer {account['token']}"}


def pair(client, caregiver: dict, student: dict):
    r = client.post(
        "/connections/by-student-code",
        json={"code": student["profile"]["student_code"]},
        headers=auth_header(caregiver),
    )
    assert r.status_code == 200, r.text
    return r.json()


class FakeSocket:
    """RoomRouter 단위 테스트용 웹소켓 대역"""

    def __init__(self, fail: bool = False):
        self.accepted = False
        self.fail = fail
        self.sent = []
        self.closed_with = None

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.closed_with = code

    def events(self):
        return [frame["event"] for frame in self.sent]


class StalledSocket(FakeSocket):
    """상대가 읽기를 멈춘 소켓: send_json 이 끝나지 않음"""

    def __init__(self):
        super().__init__()
        self._never = asyncio.Event()

    async def send_json(self, data):
        await self._never.wait()
