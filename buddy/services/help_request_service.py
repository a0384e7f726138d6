"""
도움 요청 상태머신.

    open ──> answered ──> closed
      └──────────────────────^

closed 에서는 어떤 전이도 불가. 상태 변경은 학생과 active 로 연결된 보호자/교사만 할 수 있습니다.
"""
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.errors import Forbidden, InvalidTransition, NotFound
from buddy.models import Connection, HelpRequest, HelpStatus, LinkStatus, Profile, Role, Urgency, User
from buddy.schemas import HelpRequestOut, HelpRequestWithStudent
from buddy.services.connection_service import active_caregiver_ids, has_active_link, profile_summary
from buddy.services.room_router import RoomRouter, room_for_dependent, room_for_supervisor

logger = logging.getLogger(__name__)

HELP_REQUEST_NEW = "help_request:new"
HELP_REQUEST_UPDATED = "help_request:updated"

ALLOWED_TRANSITIONS: Dict[HelpStatus, FrozenSet[HelpStatus]] = {
    HelpStatus.OPEN: frozenset({HelpStatus.ANSWERED, HelpStatus.CLOSED}),
    HelpStatus.ANSWERED: frozenset({HelpStatus.CLOSED}),
    HelpStatus.CLOSED: frozenset(),
}


def can_transition(current: HelpStatus, new: HelpStatus) -> bool:
    return HelpStatus(new) in ALLOWED_TRANSITIONS[HelpStatus(current)]


def serialize(request: HelpRequest) -> dict:
    return HelpRequestOut.model_validate(request).model_dump(mode="json")


async def _publish(db: AsyncSession, rooms: RoomRouter, event: str, request: HelpRequest) -> None:
    """학생 본인 룸 + 현재 active 로 연결된 모든 보호자 룸으로 발행"""
    payload = serialize(request)
    await rooms.emit_to_room(room_for_dependent(request.student_id), event, payload)
    caregiver_ids = await active_caregiver_ids(db, request.student_id)
    for caregiver_id in caregiver_ids:
        await rooms.emit_to_room(room_for_supervisor(caregiver_id), event, payload)
    logger.info("%s #%s fanned out to %d caregiver(s)", event, request.id, len(caregiver_ids))


async def create_help_request(
    db: AsyncSession,
    rooms: RoomRouter,
    student: User,
    message: Optional[str] = None,
    urgency: Optional[Urgency] = None,
) -> HelpRequest:
    if student.account_role is not Role.DEPENDENT:
        raise Forbidden("Only students can create help requests")

    request = HelpRequest(
        student_id=student.id,
        message=message,
        urgency=Urgency(urgency or Urgency.OK).value,
        status=HelpStatus.OPEN.value,
    )
    db.add(request)
    await db.commit()
    await db.refresh(request)

    await _publish(db, rooms, HELP_REQUEST_NEW, request)
    return request


async def list_for_student(db: AsyncSession, student_id: int) -> List[HelpRequest]:
    q = (
        select(HelpRequest)
        .where(HelpRequest.student_id == student_id)
        .order_by(HelpRequest.created_at.desc(), HelpRequest.id.desc())
    )
    return list((await db.scalars(q)).all())


async def list_for_caregiver(db: AsyncSession, caregiver_id: int) -> List[HelpRequestWithStudent]:
    """active 로 연결된 모든 학생의 요청 (학생 프로필 포함)"""
    q = (
        select(HelpRequest, Profile, User.role)
        .join(Connection, Connection.student_id == HelpRequest.student_id)
        .join(Profile, Profile.user_id == HelpRequest.student_id)
        .join(User, User.id == HelpRequest.student_id)
        .where(
            Connection.caregiver_id == caregiver_id,
            Connection.status == LinkStatus.ACTIVE.value,
        )
        .order_by(HelpRequest.created_at.desc(), HelpRequest.id.desc())
    )
    rows = (await db.execute(q)).all()

    results = []
    for request, profile, role in rows:
        item = HelpRequestWithStudent.model_validate(request)
        item.student_profile = profile_summary(profile, role)
        results.append(item)
    return results


async def list_help_requests(db: AsyncSession, user: User):
    role = user.account_role
    if role is Role.DEPENDENT:
        return await list_for_student(db, user.id)
    if role is Role.SUPERVISOR or role is Role.EDUCATOR:
        return await list_for_caregiver(db, user.id)
    raise ValueError(f"unknown role: {role!r}")


async def transition_help_request(
    db: AsyncSession,
    rooms: RoomRouter,
    caregiver: User,
    request_id: int,
    new_status: HelpStatus,
) -> HelpRequest:
    """
    상태 변경. 실패 순서: NotFound -> Forbidden -> InvalidTransition.
    저장은 현재 상태를 조건으로 한 UPDATE 한 번이며, 경쟁에서 지면 InvalidTransition.
    """
    request = await db.get(HelpRequest, request_id)
    if request is None:
        raise NotFound("Help request not found")

    if not caregiver.account_role.is_supervisor or not await has_active_link(
        db, caregiver.id, request.student_id
    ):
        raise Forbidden("Not connected to this student")

    current = HelpStatus(request.status)
    new_status = HelpStatus(new_status)
    if not can_transition(current, new_status):
        raise InvalidTransition(f"Cannot change status from {current.value} to {new_status.value}")

    stmt = (
        update(HelpRequest)
        .where(HelpRequest.id == request_id, HelpRequest.status == current.value)
        .values(
            status=new_status.value,
            resolved_by=caregiver.id,
            resolved_at=func.now(),
            updated_at=func.now(),
        )
        .returning(HelpRequest)
    )
    updated = (
        await db.scalars(
            stmt,
            execution_options={"populate_existing": True, "synchronize_session": "fetch"},
        )
    ).one_or_none()
    if updated is None:
        await db.rollback()
        raise InvalidTransition(f"Help request is no longer {current.value}")
    await db.commit()

    logger.info("help request #%s %s -> %s by caregiver %s",
                updated.id, current.value, new_status.value, caregiver.id)
    await _publish(db, rooms, HELP_REQUEST_UPDATED, updated)
    return updated
