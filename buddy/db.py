from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from buddy.config import get_settings

ASYNC_DB_URL = get_settings().database_url

class Base(DeclarativeBase):
    pass

# sqlite(aiosqlite)는 이벤트 루프마다 커넥션을 새로 여는 편이 안전함
if ASYNC_DB_URL.startswith("sqlite"):
    engine = create_async_engine(ASYNC_DB_URL, echo=False, poolclass=NullPool)
else:
    engine = create_async_engine(ASYNC_DB_URL, echo=False, pool_pre_ping=True)

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_db():
    async with SessionLocal() as session:
        yield session
