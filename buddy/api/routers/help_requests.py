from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.db import get_db
from buddy.models import Role, User
from buddy.services import help_request_service
from buddy.services.auth_service import SUPERVISOR_ROLES, get_current_user, require_roles
from buddy.services.room_router import RoomRouter, get_room_router
from buddy.schemas import HelpRequestCreate, HelpRequestOut, HelpRequestUpdate, HelpRequestWithStudent

router = APIRouter(prefix="/help-requests", tags=["help-requests"])

@router.get("", response_model=List[HelpRequestWithStudent])
async def list_help_requests(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    학생: 내 요청 전체 / 보호자·교사: active 로 연결된 학생들의 요청.
    실시간 이벤트를 놓친 경우 클라이언트는 이 목록으로 상태를 다시 맞춥니다.
    """
    return await help_request_service.list_help_requests(db, current_user)

@router.post("", response_model=HelpRequestOut, status_code=status.HTTP_201_CREATED)
async def create_help_request(
    req: HelpRequestCreate,
    db: AsyncSession = Depends(get_db),
    rooms: RoomRouter = Depends(get_room_router),
    current_user: User = Depends(require_roles(Role.DEPENDENT)),
):
    return await help_request_service.create_help_request(
        db, rooms, current_user, message=req.message, urgency=req.urgency
    )

@router.patch("/{request_id}", response_model=HelpRequestOut)
async def update_help_request(
    request_id: int,
    req: HelpRequestUpdate,
    db: AsyncSession = Depends(get_db),
    rooms: RoomRouter = Depends(get_room_router),
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
):
    return await help_request_service.transition_help_request(
        db, rooms, current_user, request_id, req.status
    )
