# buddy/config.py
from __future__ import annotations
import os
import logging.config
from dataclasses import dataclass
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))


class ConfigError(RuntimeError):
    """필수 환경변수가 없을 때 프로세스 기동을 중단시키는 오류"""


@dataclass(frozen=True)
class Settings:
    database_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    cors_origins: tuple = ("http://localhost:5173",)
    log_level: str = "INFO"
    pairing_code_attempts: int = 5


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value or not value.strip():
        raise ConfigError(f"{name} is required")
    return value.strip()


def _split_origins(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    .env / 환경변수에서 설정을 읽습니다.
    ASYNC_DATABASE_URL, SECRET_KEY 가 없으면 ConfigError (기동 중단).
    """
    return Settings(
        database_url=_require("ASYNC_DATABASE_URL"),
        secret_key=_require("SECRET_KEY"),
        algorithm=os.getenv("ALGORITHM", "HS256"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24))),
        cors_origins=tuple(_split_origins(os.getenv("CORS_ORIGINS", "http://localhost:5173"))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        pairing_code_attempts=int(os.getenv("PAIRING_CODE_ATTEMPTS", "5")),
    )


def configure_logging(level: str | None = None) -> None:
    level = level or get_settings().log_level
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
            },
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "default"},
            },
            "loggers": {
                "buddy": {"handlers": ["console"], "level": level, "propagate": False},
            },
        }
    )
