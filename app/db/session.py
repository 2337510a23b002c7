# app/db/session.py
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import text
from app.core.config import settings

engine = None
AsyncSessionLocal = None

def get_engine():
    global engine
    if engine is not None:
        return engine

    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL env var is required (Postgres)")

    # Accept plain "postgresql://" URLs and switch them to the asyncpg dialect
    url = settings.DATABASE_URL
    if url.startswith("postgresql://"):
        url = url.replace(
            "postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(
        url, echo=False, pool_size=20, max_overflow=10, pool_pre_ping=True)
    return engine

def get_session_factory():
    global AsyncSessionLocal
    if AsyncSessionLocal is not None:
        return AsyncSessionLocal

    AsyncSessionLocal = async_sessionmaker(
        get_engine(), class_=AsyncSession, expire_on_commit=False)
    return AsyncSessionLocal


async def init_db():
    # lightweight connectivity check only; schema is managed outside the app
    eng = get_engine()
    async with eng.begin() as conn:
        await conn.execute(text("SELECT 1"))


async def get_db():
    SessionLocal = get_session_factory()
    async with SessionLocal() as session:
        yield session
