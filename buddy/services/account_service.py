import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.config import get_settings
from buddy.errors import Conflict, DomainError, InvalidCredentials, InvalidToken, NotFound
from buddy.models import PasswordReset, Profile, Role, User
from buddy.services.auth_service import hash_password, verify_password
from buddy.services.code_generator import generate_code

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(hours=1)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    q = select(User).where(func.lower(User.email) == email.strip().lower())
    return (await db.execute(q)).scalar_one_or_none()

async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    q = (
        select(User)
        .join(Profile, Profile.user_id == User.id)
        .where(func.lower(Profile.username) == username.strip().lower())
    )
    return (await db.execute(q)).scalar_one_or_none()

async def get_user_by_identifier(db: AsyncSession, identifier: str) -> Optional[User]:
    """
    이메일 또는 사용자명으로 조회 (대소문자 무시).
    둘 다 맞는 계정이 있으면 이메일이 우선.
    """
    user = await get_user_by_email(db, identifier)
    if user is None:
        user = await get_user_by_username(db, identifier)
    return user

async def get_profile(db: AsyncSession, user_id: int) -> Optional[Profile]:
    q = select(Profile).where(Profile.user_id == user_id)
    return (await db.execute(q)).scalar_one_or_none()


async def _ensure_available(db: AsyncSession, email: str, username: str) -> None:
    if "@" in username:
        raise DomainError("Username cannot contain '@'")
    if await get_user_by_email(db, email):
        raise Conflict("Email already registered")
    if await get_user_by_username(db, username):
        raise Conflict("Username already in use")


def _codes_for(role: Role) -> Tuple[Optional[str], Optional[str]]:
    """(student_code, caregiver_code)"""
    if role is Role.DEPENDENT:
        return generate_code(role), None
    if role is Role.SUPERVISOR or role is Role.EDUCATOR:
        return None, generate_code(role)
    raise ValueError(f"unknown role: {role!r}")


async def sign_up(
    db: AsyncSession, email: str, password: str, username: str, role: Role
) -> Tuple[User, Profile]:
    """
    사용자 + 프로필을 한 트랜잭션으로 생성합니다.
    연결 코드가 우연히 겹치면(unique 위반) 전체를 롤백하고 새 코드로 다시 시도합니다.
    """
    role = Role(role)
    password_hash = hash_password(password)
    attempts = get_settings().pairing_code_attempts

    for attempt in range(1, attempts + 1):
        await _ensure_available(db, email, username)

        student_code, caregiver_code = _codes_for(role)
        user = User(email=email.strip(), password_hash=password_hash, role=role.value)
        profile = Profile(username=username.strip(), student_code=student_code, caregiver_code=caregiver_code)
        user.profile = profile
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            # 이메일/사용자명 경쟁이면 Conflict, 아니면 코드 충돌로 보고 재시도
            await _ensure_available(db, email, username)
            logger.warning(
                "pairing code collision on signup (attempt %d/%d), regenerating", attempt, attempts
            )
            continue

        await db.refresh(user)
        await db.refresh(profile)
        logger.info("user %s signed up as %s", user.id, role.value)
        return user, profile

    raise Conflict("Could not allocate a unique pairing code, please retry")


async def sign_in(db: AsyncSession, identifier: str, password: str) -> User:
    user = await get_user_by_identifier(db, identifier)
    if not user or not user.password_hash or not verify_password(password, user.password_hash):
        raise InvalidCredentials()
    return user


async def request_password_reset(db: AsyncSession, identifier: str) -> str:
    """1시간 유효한 재설정 토큰 발급"""
    user = await get_user_by_identifier(db, identifier)
    if user is None:
        raise NotFound("User not found")

    token = secrets.token_hex(32)
    db.add(PasswordReset(
        user_id=user.id,
        token=token,
        expires_at=datetime.now(timezone.utc) + RESET_TOKEN_TTL,
    ))
    await db.commit()
    return token


async def reset_password(db: AsyncSession, token: str, password: str) -> None:
    now = datetime.now(timezone.utc)
    q = select(PasswordReset).where(
        PasswordReset.token == token,
        PasswordReset.used_at.is_(None),
        PasswordReset.expires_at > now,
    )
    reset = (await db.execute(q)).scalar_one_or_none()
    if reset is None:
        raise InvalidToken("Invalid or expired reset token")

    await db.execute(
        update(User).where(User.id == reset.user_id).values(password_hash=hash_password(password))
    )
    reset.used_at = now
    await db.commit()
    logger.info("password reset for user %s", reset.user_id)
