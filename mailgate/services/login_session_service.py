# mailgate/services/login_session_service.py
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from mailgate.db.query import DBQuery, UpdateResult
from mailgate.models.base import utcnow
from mailgate.models.enums import Bit
from mailgate.models.login_session import LoginSession


class LoginSessionRepository(DBQuery[LoginSession, Dict[str, Any]]):
    def __init__(self):
        super().__init__(LoginSession)


login_session_repository = LoginSessionRepository()


async def close_active_sessions(user_id: str, session: Optional[AsyncSession] = None) -> int:
    """
    關閉使用者所有 status = ON 的 session：
      - 尚未到期的標記為 logged_out，validity_end_date 改為現在
      - 已過期的標記為 expired
    兩次皆為條件式 update，不先讀後寫。回傳被關閉的筆數。
    """
    now = utcnow()
    logged_out = await login_session_repository.update_many(
        {"user_id": user_id, "status": Bit.ON.value, "validity_end_date": {"$gt": now}},
        {"logged_out": True, "validity_end_date": now, "status": Bit.OFF.value},
        session=session,
    )
    expired = await login_session_repository.update_many(
        {"user_id": user_id, "status": Bit.ON.value},
        {"expired": True, "status": Bit.OFF.value},
        session=session,
    )
    return logged_out.modified_count + expired.modified_count


async def expire_session(login_session_id: str, session: Optional[AsyncSession] = None) -> Optional[LoginSession]:
    return await login_session_repository.update_by_id(
        login_session_id, {"expired": True, "status": Bit.OFF.value}, session=session
    )


async def expire_stale_sessions(session: Optional[AsyncSession] = None) -> UpdateResult:
    """排程用：把有效期已過、仍為 ON 的 session 全部轉成 expired"""
    result = await login_session_repository.update_many(
        {"status": Bit.ON.value, "validity_end_date": {"$lte": utcnow()}},
        {"expired": True, "status": Bit.OFF.value},
        session=session,
    )
    logger.info("Expired {} stale login sessions", result.modified_count)
    return result
