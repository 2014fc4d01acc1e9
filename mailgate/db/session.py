# mailgate/db/session.py
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from mailgate.core.config import settings

# ---- Engine ----
DATABASE_URL = settings.DATABASE_URL
echo_flag = str(getattr(settings, "DB_ECHO", "false")).lower() in {"1", "true", "yes"}

_engine_kwargs = {"echo": echo_flag, "pool_pre_ping": True, "future": True}
if DATABASE_URL.startswith("sqlite"):
    # SQLite 不共用連線，避免連線跨 event loop 被重用
    _engine_kwargs["poolclass"] = NullPool

engine = create_async_engine(DATABASE_URL, **_engine_kwargs)

# ---- Session factory ----
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def transaction() -> AsyncGenerator[AsyncSession, None]:
    """
    開一個資料庫交易：區塊內所有 repository 呼叫都帶入同一個 session。
    區塊正常結束就 commit；任何例外都 rollback 後原樣拋出。
    """
    session: AsyncSession = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()
