# mailgate/services/scheduler.py
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from mailgate.services import gmail_service
from mailgate.services.login_session_service import expire_stale_sessions
from mailgate.services.rate_limit import login_rate_limiter

scheduler: Optional[AsyncIOScheduler] = None


@asynccontextmanager
async def lifespan_scheduler(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan：啟動 / 關閉 APScheduler。
      - 每 30 分鐘把過期的登入 session 標記為 expired
      - 每 24 小時為所有 active Gmail token 續訂 push watch
    """
    global scheduler
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(run_expire_sessions_job, IntervalTrigger(minutes=30))
    scheduler.add_job(run_renew_gmail_watch_job, IntervalTrigger(hours=24))
    scheduler.start()
    logger.info("APScheduler started: session expiry every 30 minutes, Gmail watch renewal every 24 hours")
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            logger.info("APScheduler shutdown")
        await login_rate_limiter.close()


async def run_expire_sessions_job() -> int:
    """排程作業：失敗只記錄，不中斷 scheduler"""
    try:
        result = await expire_stale_sessions()
    except SQLAlchemyError as e:
        logger.opt(exception=e).error("Session expiry job failed: {}", e)
        return 0
    return result.modified_count


async def run_renew_gmail_watch_job() -> int:
    try:
        tokens = await gmail_service.gmail_token_repository.find_and_populate({"is_active": True})
    except SQLAlchemyError as e:
        logger.opt(exception=e).error("Gmail watch renewal job failed: {}", e)
        return 0

    renewed = 0
    for token in tokens:
        response = await gmail_service.listen_for_email_updates(token.token)
        if response["success"]:
            renewed += 1
        else:
            logger.warning("Unable to renew Gmail watch for {}: {}", token.email, response["error"])
    logger.info("Renewed Gmail watch for {}/{} mailboxes", renewed, len(tokens))
    return renewed
