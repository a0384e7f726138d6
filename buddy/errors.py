"""
도메인 오류 정의.

서비스 계층은 HTTPException 대신 아래 예외를 던지고,
main.py 의 exception handler 가 {"error": "..."} JSON 으로 변환합니다.
"""
from __future__ import annotations


class DomainError(Exception):
    status_code: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# --- 401 ---
class Unauthorized(DomainError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidToken(Unauthorized):
    default_message = "Invalid token"


class TokenExpired(Unauthorized):
    default_message = "Token expired"


class MalformedToken(Unauthorized):
    default_message = "Malformed token"


class AccountNotFound(Unauthorized):
    default_message = "User not found"


class InvalidCredentials(Unauthorized):
    default_message = "Invalid credentials"


# --- 403 ---
class Forbidden(DomainError):
    status_code = 403
    default_message = "Forbidden"


# --- 404 ---
class NotFound(DomainError):
    status_code = 404
    default_message = "Not found"


class CodeNotFound(NotFound):
    # 코드 불일치는 클라이언트 입력 오류로 취급 (400)
    status_code = 400
    default_message = "Invalid code"


# --- 400 / 409 ---
class InvalidTransition(DomainError):
    status_code = 400
    default_message = "Invalid status transition"


class Conflict(DomainError):
    status_code = 409
    default_message = "Conflict"
