import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from buddy.errors import Unauthorized
from buddy.services.room_router import RealtimeSession, get_room_router

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _seconds_left(session: RealtimeSession) -> Optional[float]:
    if session.expires_at is None:
        return None
    return (session.expires_at - datetime.now(timezone.utc)).total_seconds()


# 💡 웹소켓은 헤더 대신 쿼리로 토큰을 받음 (REST 와 같은 토큰)
@router.websocket("/realtime")
async def realtime_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
):
    rooms = get_room_router(websocket)

    # 1. 토큰 검증 (연결당 1회) 후 수락. 실패하면 페이로드 없이 종료
    try:
        session = await rooms.bind_session(token, websocket)
    except Unauthorized as exc:
        logger.info("realtime connection refused: %s", exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except Exception:
        logger.exception("realtime handshake error")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        while True:
            # 2. 클라이언트 프레임은 계약에 없으므로 읽고 버림. 토큰 만료 시 종료
            remaining = _seconds_left(session)
            if remaining is not None and remaining <= 0:
                logger.info("realtime session %s credential expired", session.id)
                # 송신 실패로 라우터가 이미 닫은 소켓일 수 있음
                if websocket.application_state == WebSocketState.CONNECTED:
                    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                break
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        rooms.unbind(session)
