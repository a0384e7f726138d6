from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.db import get_db
from buddy.models import Role, User
from buddy.services import connection_service
from buddy.services.auth_service import SUPERVISOR_ROLES, get_current_user, require_roles
from buddy.services.room_router import RoomRouter, get_room_router
from buddy.schemas import (
    CaregiverConnectResponse, ConnectByCodeRequest, ConnectionOut, ConnectionWithPartner,
    StudentConnectResponse,
)

router = APIRouter(prefix="/connections", tags=["connections"])

# [1] 내 연결 목록 (active 만)
@router.get("", response_model=List[ConnectionWithPartner])
async def get_my_connections(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    보호자/교사: 연결된 학생 목록 (student_profile)
    학생: 연결된 보호자 목록 (caregiver_profile)
    """
    return await connection_service.list_connections(db, current_user)

# [2] 보호자가 학생 코드로 연결
@router.post("/by-student-code", response_model=StudentConnectResponse)
async def connect_by_student_code(
    req: ConnectByCodeRequest,
    db: AsyncSession = Depends(get_db),
    rooms: RoomRouter = Depends(get_room_router),
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
):
    connection, student = await connection_service.redeem_student_code(
        db, rooms, current_user, req.code
    )
    return StudentConnectResponse(connection=ConnectionOut.model_validate(connection), student=student)

# [3] 학생이 보호자 코드로 연결
@router.post("/by-caregiver-code", response_model=CaregiverConnectResponse)
async def connect_by_caregiver_code(
    req: ConnectByCodeRequest,
    db: AsyncSession = Depends(get_db),
    rooms: RoomRouter = Depends(get_room_router),
    current_user: User = Depends(require_roles(Role.DEPENDENT)),
):
    connection, caregiver = await connection_service.redeem_caregiver_code(
        db, rooms, current_user, req.code
    )
    return CaregiverConnectResponse(connection=ConnectionOut.model_validate(connection), caregiver=caregiver)
