"""
연결 코드로 학생 <-> 보호자(교사)를 연결합니다.

- 보호자가 학생 코드를 입력: redeem_student_code
- 학생이 보호자 코드를 입력: redeem_caregiver_code

같은 쌍을 다시 연결해도 행이 늘어나지 않고 status 만 'active' 로 갱신됩니다 (upsert).
성공하면 양쪽 룸에 ``connection:created`` 이벤트를 보냅니다.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.errors import CodeNotFound, Forbidden
from buddy.models import Connection, LinkStatus, Profile, Role, User
from buddy.schemas import ConnectionWithPartner, ProfileSummary
from buddy.services.code_generator import normalize_code
from buddy.services.room_router import RoomRouter, room_for_dependent, room_for_supervisor

logger = logging.getLogger(__name__)

CONNECTION_CREATED = "connection:created"


def profile_summary(profile: Profile, role: str) -> ProfileSummary:
    return ProfileSummary(
        user_id=profile.user_id,
        username=profile.username,
        role=Role(role),
        student_code=profile.student_code,
        caregiver_code=profile.caregiver_code,
    )


async def _find_owner_by_code(db: AsyncSession, column, code: str) -> Optional[Tuple[Profile, str]]:
    q = (
        select(Profile, User.role)
        .join(User, User.id == Profile.user_id)
        .where(func.upper(column) == normalize_code(code))
        .limit(1)
    )
    row = (await db.execute(q)).first()
    if row is None:
        return None
    return row[0], row[1]


def _insert_for(db: AsyncSession):
    # ON CONFLICT 구문은 방언별 insert 가 필요
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"upsert not supported for dialect {dialect!r}")


async def upsert_connection(db: AsyncSession, caregiver_id: int, student_id: int) -> Connection:
    """(caregiver_id, student_id) 쌍을 active 로 만드는 단일 upsert"""
    insert = _insert_for(db)
    stmt = insert(Connection).values(
        caregiver_id=caregiver_id,
        student_id=student_id,
        status=LinkStatus.ACTIVE.value,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Connection.caregiver_id, Connection.student_id],
        set_={"status": stmt.excluded.status, "updated_at": func.now()},
    ).returning(Connection)

    result = await db.scalars(stmt, execution_options={"populate_existing": True})
    connection = result.one()
    await db.commit()
    return connection


async def _publish_created(rooms: RoomRouter, caregiver_id: int, student_id: int) -> None:
    payload = {"caregiver_id": caregiver_id, "student_id": student_id}
    await rooms.emit_to_room(room_for_supervisor(caregiver_id), CONNECTION_CREATED, payload)
    await rooms.emit_to_room(room_for_dependent(student_id), CONNECTION_CREATED, payload)


async def redeem_student_code(
    db: AsyncSession, rooms: RoomRouter, caregiver: User, code: str
) -> Tuple[Connection, ProfileSummary]:
    """보호자/교사가 학생 코드를 입력해 연결"""
    if not caregiver.account_role.is_supervisor:
        raise Forbidden("Only caregivers can redeem student codes")

    found = await _find_owner_by_code(db, Profile.student_code, code)
    if found is None or Role(found[1]) is not Role.DEPENDENT:
        raise CodeNotFound("Invalid student code")
    student_profile, student_role = found

    connection = await upsert_connection(db, caregiver.id, student_profile.user_id)
    logger.info("connection %s active: caregiver=%s student=%s",
                connection.id, caregiver.id, student_profile.user_id)

    await _publish_created(rooms, caregiver.id, student_profile.user_id)
    return connection, profile_summary(student_profile, student_role)


async def redeem_caregiver_code(
    db: AsyncSession, rooms: RoomRouter, student: User, code: str
) -> Tuple[Connection, ProfileSummary]:
    """학생이 보호자/교사 코드를 입력해 연결"""
    if student.account_role is not Role.DEPENDENT:
        raise Forbidden("Only students can redeem caregiver codes")

    found = await _find_owner_by_code(db, Profile.caregiver_code, code)
    if found is None or not Role(found[1]).is_supervisor:
        raise CodeNotFound("Invalid caregiver code")
    caregiver_profile, caregiver_role = found

    connection = await upsert_connection(db, caregiver_profile.user_id, student.id)
    logger.info("connection %s active: caregiver=%s student=%s",
                connection.id, caregiver_profile.user_id, student.id)

    await _publish_created(rooms, caregiver_profile.user_id, student.id)
    return connection, profile_summary(caregiver_profile, caregiver_role)


async def list_connections(db: AsyncSession, user: User) -> List[ConnectionWithPartner]:
    """
    active 상태의 연결을 상대방 프로필과 함께 반환합니다.
    보호자는 student_profile, 학생은 caregiver_profile 이 채워집니다.
    """
    role = user.account_role
    if role is Role.DEPENDENT:
        mine, partner = Connection.student_id, Connection.caregiver_id
    elif role.is_supervisor:
        mine, partner = Connection.caregiver_id, Connection.student_id
    else:
        raise ValueError(f"unknown role: {role!r}")

    stmt = (
        select(Connection, Profile, User.role)
        .join(Profile, Profile.user_id == partner)
        .join(User, User.id == partner)
        .where(mine == user.id, Connection.status == LinkStatus.ACTIVE.value)
        .order_by(Connection.created_at.desc(), Connection.id.desc())
    )
    rows = (await db.execute(stmt)).all()

    results = []
    for conn, partner_profile, partner_role in rows:
        item = ConnectionWithPartner.model_validate(conn)
        summary = profile_summary(partner_profile, partner_role)
        if role is Role.DEPENDENT:
            item.caregiver_profile = summary
        else:
            item.student_profile = summary
        results.append(item)
    return results


async def active_caregiver_ids(db: AsyncSession, student_id: int) -> List[int]:
    """학생과 active 로 연결된 보호자/교사 id 목록 (발행 시점마다 새로 조회)"""
    q = select(Connection.caregiver_id).where(
        Connection.student_id == student_id,
        Connection.status == LinkStatus.ACTIVE.value,
    )
    return list((await db.scalars(q)).all())


async def has_active_link(db: AsyncSession, caregiver_id: int, student_id: int) -> bool:
    q = select(Connection.id).where(
        Connection.caregiver_id == caregiver_id,
        Connection.student_id == student_id,
        Connection.status == LinkStatus.ACTIVE.value,
    )
    return (await db.scalar(q)) is not None
