import secrets

from buddy.models import Role

# 0/O, 1/I 처럼 헷갈리는 문자는 제외
CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

CODE_PREFIXES = {
    Role.DEPENDENT: "STU",
    Role.SUPERVISOR: "CAR",
    Role.EDUCATOR: "EDU",
}


def _random_block(length: int = 3) -> str:
    return "".join(secrets.choice(CHARSET) for _ in range(length))


def generate_code(role: Role) -> str:
    """
    역할별 연결 코드 생성 (예: STU-AB2-XYZ).
    중복 여부는 profiles 테이블 unique 제약이 최종 판단합니다.
    """
    prefix = CODE_PREFIXES.get(Role(role))
    if prefix is None:
        raise ValueError(f"no pairing code prefix for role {role!r}")
    return f"{prefix}-{_random_block()}-{_random_block()}"


def normalize_code(code: str) -> str:
    """사용자가 입력한 코드를 비교용으로 정리 (대소문자 무시)"""
    return code.strip().upper()
