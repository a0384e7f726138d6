from __future__ import annotations
from typing import Optional
from enum import Enum
from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    BigInteger, Integer, String, Text, DateTime, CheckConstraint,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.sql import func

from buddy.db import Base

# 운영(PostgreSQL)은 BIGINT, 테스트(sqlite)는 INTEGER PRIMARY KEY 자동증가
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class Role(str, Enum):
    """계정 역할. 값은 클라이언트/DB 에서 쓰는 문자열 그대로."""
    DEPENDENT = "student"
    SUPERVISOR = "caregiver"
    EDUCATOR = "educator"

    @property
    def is_supervisor(self) -> bool:
        if self is Role.DEPENDENT:
            return False
        if self is Role.SUPERVISOR or self is Role.EDUCATOR:
            return True
        raise ValueError(f"unknown role: {self!r}")


class LinkStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    BLOCKED = "blocked"


class Urgency(str, Enum):
    OK = "ok"
    ATTENTION = "attention"
    URGENT = "urgent"


class HelpStatus(str, Enum):
    OPEN = "open"
    ANSWERED = "answered"
    CLOSED = "closed"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role in ('student','caregiver','educator')",
            name="ck_users_role",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    profile: Mapped[Optional["Profile"]] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def account_role(self) -> Role:
        return Role(self.role)


class Profile(Base):
    """
    사용자 1:1 프로필.
    학생은 student_code, 보호자/교사는 caregiver_code 를 한 번만 발급받습니다.
    """
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    # 코드 중복은 이 unique 인덱스가 최종적으로 막아줌 (회원가입에서 재시도)
    student_code: Mapped[Optional[str]] = mapped_column(String(16), unique=True, nullable=True)
    caregiver_code: Mapped[Optional[str]] = mapped_column(String(16), unique=True, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship(back_populates="profile")


class Connection(Base):
    """
    보호자(caregiver/educator)와 학생 간의 연결.
    (caregiver_id, student_id) 쌍마다 한 행만 존재하며 삭제하지 않고 status 로 관리합니다.
    """
    __tablename__ = "connections"
    __table_args__ = (
        CheckConstraint(
            "status in ('pending','active','blocked')",
            name="ck_connections_status",
        ),
        UniqueConstraint("caregiver_id", "student_id", name="uq_connections_caregiver_student"),
        Index("idx_connections_caregiver", "caregiver_id"),
        Index("idx_connections_student", "student_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    caregiver_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String, default=LinkStatus.ACTIVE.value, nullable=False)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class HelpRequest(Base):
    __tablename__ = "help_requests"
    __table_args__ = (
        CheckConstraint(
            "urgency in ('ok','attention','urgent')",
            name="ck_help_requests_urgency",
        ),
        CheckConstraint(
            "status in ('open','answered','closed')",
            name="ck_help_requests_status",
        ),
        Index("idx_help_requests_student_time", "student_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    urgency: Mapped[str] = mapped_column(String, default=Urgency.OK.value, nullable=False)
    status: Mapped[str] = mapped_column(String, default=HelpStatus.OPEN.value, nullable=False)

    # open 에서 벗어날 때만 채워짐
    resolved_by: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PasswordReset(Base):
    __tablename__ = "password_resets"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
