from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.config import get_settings
from buddy.db import get_db, SessionLocal
from buddy.errors import (
    AccountNotFound, Forbidden, InvalidToken, MalformedToken, TokenExpired, Unauthorized,
)
from buddy.models import Role, User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
# auto_error=False: 토큰 누락도 Unauthorized 로 통일해서 처리
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)
# 보호자 쪽 권한을 갖는 역할
SUPERVISOR_ROLES = (Role.SUPERVISOR, Role.EDUCATOR)


@dataclass(frozen=True)
class Identity:
    """웹소켓 핸드셰이크에서 검증된 사용자 정보"""
    account_id: int
    email: str
    role: Role
    expires_at: Optional[datetime]


def verify_password(plain_password, password_hash):
    return pwd_context.verify(plain_password, password_hash)

def hash_password(password):
    if not isinstance(password, (str, bytes)):
        raise TypeError("Password must be a string or bytes.")
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    settings = get_settings()
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

def issue_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """계정 id 와 역할을 담은 액세스 토큰 발급"""
    return create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role},
        expires_delta=expires_delta,
    )

def decode_access_token(token: Optional[str]) -> dict:
    """
    서명/만료만 확인하는 무상태 검증. DB 조회는 하지 않습니다.
    """
    if not token or not isinstance(token, str):
        raise MalformedToken("Missing token")
    # JWT 는 header.payload.signature 세 부분
    if token.count(".") != 2:
        raise MalformedToken()

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise InvalidToken() from exc

    sub = payload.get("sub")
    try:
        int(sub)
    except (TypeError, ValueError) as exc:
        raise InvalidToken() from exc
    return payload

async def _load_subject(db: AsyncSession, payload: dict) -> User:
    user = await db.get(User, int(payload["sub"]))
    if user is None:
        raise AccountNotFound()
    return user

async def verify_access_token(db: AsyncSession, token: Optional[str]) -> User:
    """
    토큰 검증 후 계정이 여전히 존재하는지 확인합니다.
    웹소켓(authenticate_socket)도 같은 두 단계를 거칩니다.
    """
    return await _load_subject(db, decode_access_token(token))

async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    API 요청 헤더의 Bearer 토큰을 검증하고 현재 사용자를 반환하는 의존성.
    실패 시 Unauthorized 계열 예외 -> 401.
    """
    if not token:
        raise Unauthorized()
    return await verify_access_token(db, token)

async def authenticate_socket(token: Optional[str]) -> Identity:
    """웹소켓 핸드셰이크 1회 검증. 자체 DB 세션을 사용합니다."""
    payload = decode_access_token(token)
    async with SessionLocal() as db:
        user = await _load_subject(db, payload)
    exp = payload.get("exp")
    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None
    return Identity(
        account_id=user.id,
        email=user.email,
        role=user.account_role,
        expires_at=expires_at,
    )

def require_roles(*roles: Role):
    """
    역할 검사 의존성. 예) Depends(require_roles(Role.DEPENDENT))
    인증 실패는 401, 역할 불일치는 403.
    """
    allowed = frozenset(Role(r) for r in roles)

    async def _checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.account_role not in allowed:
            raise Forbidden("Access denied for role " + current_user.role)
        return current_user

    return _checker
