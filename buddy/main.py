# /buddy/main.py

from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from buddy.config import configure_logging, get_settings
from buddy.db import engine
from buddy.errors import DomainError
from buddy.api.routers import auth, connection, help_requests, profile, realtime
from buddy.services.auth_service import authenticate_socket
from buddy.services.room_router import RoomRouter

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 앱 시작 시: DB 에 붙지 못하면 기동 자체를 중단
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database reachable, accepting traffic")
    try:
        yield
    finally:
        # 앱 종료 시
        await app.state.rooms.close_all()
        await engine.dispose()


app = FastAPI(
    title="Buddy Help Signal API",
    lifespan=lifespan,
)

# 💡 실시간 룸 라우터는 앱이 소유하고 의존성으로 주입
app.state.rooms = RoomRouter(authenticate=authenticate_socket)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- 오류 응답은 모두 {"error": "..."} 형태 ---
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(connection.router)
app.include_router(help_requests.router)
app.include_router(realtime.router)


@app.get("/health")
async def health():
    return {"status": "ok", "realtime_sessions": app.state.rooms.session_count}
