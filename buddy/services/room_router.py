"""
프로세스 단위 실시간 룸 라우터.

웹소켓 세션을 검증된 사용자/역할 기준으로 룸에 묶고, 룸 단위로 이벤트를 보냅니다.

- 룸 이름: ``user:<id>``, ``dependent:<id>``, ``supervisor:<id>``, ``broadcast:help_requests``
- 전송은 best-effort 입니다. 지금 연결되어 있지 않은 사용자는 이벤트를 받지 못하며,
  클라이언트는 REST 목록 API(GET /help-requests, GET /connections)로 상태를 다시 맞춥니다.
- emit 은 세션별 송신 큐에 넣기만 하고 바로 반환합니다. 실제 전송은 세션마다 하나씩 있는
  writer 태스크가 담당하므로 느린 소켓이 요청 처리나 다른 세션 전송을 막지 않습니다.
  큐가 가득 차거나 전송이 send_timeout 을 넘기면 그 세션은 끊습니다.
- 레지스트리는 메모리에만 있으므로 여러 프로세스로 띄우려면 외부 pub/sub 가 필요합니다.

라우터 인스턴스는 app.state.rooms 에 보관하고 ``get_room_router`` 의존성으로 주입합니다.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Protocol, Set

from starlette.requests import HTTPConnection

from buddy.errors import DomainError, Unauthorized
from buddy.models import Role

logger = logging.getLogger(__name__)

HELP_REQUESTS_BROADCAST_ROOM = "broadcast:help_requests"

OUTBOX_SIZE = 64
SEND_TIMEOUT = 10.0
# 서버 쪽에서 세션을 끊을 때의 close 코드 (1011: internal error)
DROP_CLOSE_CODE = 1011


class SocketLike(Protocol):
    async def accept(self) -> None: ...

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


def room_for_user(user_id: int) -> str:
    return f"user:{int(user_id)}"

def room_for_dependent(user_id: int) -> str:
    return f"dependent:{int(user_id)}"

def room_for_supervisor(user_id: int) -> str:
    return f"supervisor:{int(user_id)}"


def rooms_for(account_id: int, role: Role) -> FrozenSet[str]:
    """계정/역할로부터 결정되는 룸 집합"""
    rooms = {room_for_user(account_id)}
    role = Role(role)
    if role is Role.DEPENDENT:
        rooms.add(room_for_dependent(account_id))
        rooms.add(HELP_REQUESTS_BROADCAST_ROOM)
    elif role is Role.SUPERVISOR or role is Role.EDUCATOR:
        rooms.add(room_for_supervisor(account_id))
    else:
        raise ValueError(f"unknown role: {role!r}")
    return frozenset(rooms)


@dataclass
class RealtimeSession:
    account_id: int
    role: Role
    socket: SocketLike
    rooms: FrozenSet[str]
    expires_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_SIZE))
    writer: Optional[asyncio.Task] = None

    async def send(self, event: str, payload: Any) -> None:
        await self.socket.send_json({"event": event, "data": payload})


Authenticator = Callable[[Optional[str]], Awaitable[Any]]


class RoomRouter:
    def __init__(
        self,
        authenticate: Authenticator,
        outbox_size: int = OUTBOX_SIZE,
        send_timeout: float = SEND_TIMEOUT,
    ):
        # authenticate(token) -> Identity (account_id, role, expires_at)
        self._authenticate = authenticate
        self._outbox_size = outbox_size
        self._send_timeout = send_timeout
        self._sessions: Dict[str, RealtimeSession] = {}
        self._rooms: Dict[str, Set[str]] = {}
        # 끊은 세션의 close 태스크 (GC 방지용 참조)
        self._closing: Set[asyncio.Task] = set()

    async def bind_session(self, token: Optional[str], socket: SocketLike) -> RealtimeSession:
        """
        핸드셰이크 시 한 번만 토큰을 검증하고 세션을 룸에 등록합니다.
        실패하면 Unauthorized.
        """
        try:
            identity = await self._authenticate(token)
        except Unauthorized:
            raise
        except DomainError as exc:
            raise Unauthorized(exc.message) from exc

        # 검증이 끝난 뒤에만 수락. 수락 전에 룸에 넣으면 전송이 실패할 수 있음
        await socket.accept()

        session = RealtimeSession(
            account_id=identity.account_id,
            role=identity.role,
            socket=socket,
            rooms=rooms_for(identity.account_id, identity.role),
            expires_at=getattr(identity, "expires_at", None),
            outbox=asyncio.Queue(maxsize=self._outbox_size),
        )
        self._sessions[session.id] = session
        for room in session.rooms:
            self._rooms.setdefault(room, set()).add(session.id)
        session.writer = asyncio.create_task(self._write_loop(session))

        logger.info(
            "realtime session %s bound: user=%s role=%s rooms=%s",
            session.id, session.account_id, session.role.value, sorted(session.rooms),
        )
        return session

    def unbind(self, session: RealtimeSession) -> None:
        if self._sessions.pop(session.id, None) is None:
            return
        for room in session.rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(session.id)
            if not members:
                del self._rooms[room]

        if session.writer is not None and session.writer is not asyncio.current_task():
            session.writer.cancel()
        # 보내지 못한 이벤트는 버림 (drain 이 기다리지 않도록 task_done 처리)
        while True:
            try:
                session.outbox.get_nowait()
            except asyncio.QueueEmpty:
                break
            session.outbox.task_done()
        logger.info("realtime session %s unbound: user=%s", session.id, session.account_id)

    def members(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def _write_loop(self, session: RealtimeSession) -> None:
        while True:
            event, payload = await session.outbox.get()
            try:
                await asyncio.wait_for(session.send(event, payload), timeout=self._send_timeout)
            except Exception as exc:
                logger.warning(
                    "dropping realtime session %s after failed send of %s: %r",
                    session.id, event, exc,
                )
                self._drop(session)
                return
            finally:
                session.outbox.task_done()

    def _drop(self, session: RealtimeSession) -> None:
        """세션을 룸에서 빼고 소켓은 백그라운드에서 닫음"""
        self.unbind(session)
        task = asyncio.create_task(self._close_quietly(session, DROP_CLOSE_CODE))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_quietly(self, session: RealtimeSession, code: int) -> None:
        try:
            await asyncio.wait_for(session.socket.close(code=code), timeout=self._send_timeout)
        except Exception as exc:
            logger.debug("close failed for session %s: %r", session.id, exc)

    def _enqueue(self, session_ids: Iterable[str], event: str, payload: Any) -> int:
        queued = 0
        # drop 으로 멤버가 바뀔 수 있으므로 스냅샷을 순회
        for session_id in list(session_ids):
            session = self._sessions.get(session_id)
            if session is None:
                continue
            try:
                session.outbox.put_nowait((event, payload))
            except asyncio.QueueFull:
                logger.warning(
                    "dropping realtime session %s: outbound queue full, %s not delivered",
                    session_id, event,
                )
                self._drop(session)
                continue
            queued += 1
        return queued

    async def emit_to_room(self, room: str, event: str, payload: Any) -> int:
        """
        룸의 현재 멤버 모두의 송신 큐에 넣고 바로 반환합니다.
        빈 룸이면 아무것도 하지 않습니다. 반환값은 큐에 넣은 세션 수.
        """
        members = self._rooms.get(room)
        if not members:
            return 0
        queued = self._enqueue(members, event, payload)
        logger.debug("emit %s -> %s (%d sessions)", event, room, queued)
        return queued

    async def broadcast(self, event: str, payload: Any) -> int:
        """룸과 상관없이 연결된 모든 세션에 전송"""
        return self._enqueue(self._sessions.keys(), event, payload)

    async def drain(self) -> None:
        """현재 세션들의 송신 큐가 모두 비워질 때까지 대기"""
        await asyncio.gather(*(s.outbox.join() for s in list(self._sessions.values())))

    async def close_all(self, code: int = 1001) -> None:
        for session in list(self._sessions.values()):
            self.unbind(session)
            try:
                await session.socket.close(code=code)
            except Exception as exc:
                logger.debug("close failed for session %s: %s", session.id, exc)


def get_room_router(conn: HTTPConnection) -> RoomRouter:
    return conn.app.state.rooms
