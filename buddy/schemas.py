from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

from buddy.models import Role, Urgency, HelpStatus, LinkStatus

# --- 인증 ---
class SignUpRequest(BaseModel):
    """
    /auth/signup 요청 스키마.
    """
    email: EmailStr
    password: str = Field(..., min_length=8)
    # 이메일과 겹치지 않도록 @ 와 공백은 허용하지 않음
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[^@\s]+$")
    role: Role

class SignInRequest(BaseModel):
    # 이메일 또는 사용자명
    identifier: str = Field(..., min_length=3)
    password: str = Field(..., min_length=8)

class ResetRequest(BaseModel):
    identifier: str = Field(..., min_length=3)

class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=10)
    password: str = Field(..., min_length=8)

class ResetTokenResponse(BaseModel):
    token: str

class SuccessResponse(BaseModel):
    success: bool = True

class UserPublic(BaseModel):
    """
    비밀번호 해시 등 민감 정보를 제외한 사용자 정보.
    """
    id: int
    email: str
    role: Role

    class Config:
        from_attributes = True

class ProfileOut(BaseModel):
    id: int
    user_id: int
    username: str
    student_code: Optional[str] = None
    caregiver_code: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ProfileSummary(BaseModel):
    """연결 상대방 표시용 요약"""
    user_id: int
    username: str
    role: Role
    student_code: Optional[str] = None
    caregiver_code: Optional[str] = None

class SessionResponse(BaseModel):
    user: UserPublic
    profile: Optional[ProfileOut] = None

class AuthResponse(SessionResponse):
    """
    /auth/signup, /auth/login 응답. 프론트엔드에 JWT 를 전달합니다.
    """
    token: str

# --- 연결 관리 ---
class ConnectByCodeRequest(BaseModel):
    code: str = Field(..., min_length=3)

class ConnectionOut(BaseModel):
    id: int
    caregiver_id: int
    student_id: int
    status: LinkStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ConnectionWithPartner(ConnectionOut):
    # 역할에 따라 둘 중 하나만 채워짐
    student_profile: Optional[ProfileSummary] = None
    caregiver_profile: Optional[ProfileSummary] = None

class StudentConnectResponse(BaseModel):
    connection: ConnectionOut
    student: ProfileSummary

class CaregiverConnectResponse(BaseModel):
    connection: ConnectionOut
    caregiver: ProfileSummary

# --- 도움 요청 ---
class HelpRequestCreate(BaseModel):
    message: Optional[str] = Field(None, max_length=500)
    urgency: Optional[Urgency] = None

class HelpRequestUpdate(BaseModel):
    # open 으로 되돌리는 요청도 받아서 상태머신이 InvalidTransition 으로 거절
    status: HelpStatus

class HelpRequestOut(BaseModel):
    id: int
    student_id: int
    message: Optional[str] = None
    urgency: Urgency
    status: HelpStatus
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class HelpRequestWithStudent(HelpRequestOut):
    student_profile: Optional[ProfileSummary] = None

