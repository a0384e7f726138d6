from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from buddy.db import get_db
from buddy.models import User
from buddy.services import account_service
from buddy.services.auth_service import get_current_user, issue_token
from buddy.schemas import (
    AuthResponse, ProfileOut, ResetPasswordRequest, ResetRequest, ResetTokenResponse,
    SessionResponse, SignInRequest, SignUpRequest, SuccessResponse, UserPublic,
)

router = APIRouter(prefix="/auth", tags=["auth"])


async def _session_payload(db: AsyncSession, user: User) -> dict:
    profile = await account_service.get_profile(db, user.id)
    return {
        "user": UserPublic.model_validate(user),
        "profile": ProfileOut.model_validate(profile) if profile else None,
    }


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(req: SignUpRequest, db: AsyncSession = Depends(get_db)):
    """
    회원가입. 역할에 맞는 연결 코드가 프로필에 발급됩니다.
    """
    user, _ = await account_service.sign_up(
        db, email=req.email, password=req.password, username=req.username, role=req.role
    )
    return AuthResponse(token=issue_token(user), **await _session_payload(db, user))


@router.post("/login", response_model=AuthResponse)
async def login(req: SignInRequest, db: AsyncSession = Depends(get_db)):
    user = await account_service.sign_in(db, req.identifier, req.password)
    return AuthResponse(token=issue_token(user), **await _session_payload(db, user))


@router.get("/me", response_model=SessionResponse)
async def get_my_session(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    현재 인증된 사용자와 프로필을 반환합니다.
    """
    return SessionResponse(**await _session_payload(db, current_user))


@router.post("/logout", response_model=SuccessResponse)
async def logout():
    # 토큰은 무상태. 클라이언트가 버리면 끝
    return SuccessResponse()


@router.post("/password/reset-request", response_model=ResetTokenResponse)
async def password_reset_request(req: ResetRequest, db: AsyncSession = Depends(get_db)):
    token = await account_service.request_password_reset(db, req.identifier)
    return ResetTokenResponse(token=token)


@router.post("/password/reset", response_model=SuccessResponse)
async def password_reset(req: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    await account_service.reset_password(db, req.token, req.password)
    return SuccessResponse()
