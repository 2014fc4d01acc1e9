# mailgate/services/user_service.py
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mailgate.core.security import create_auth_token
from mailgate.db.query import DBQuery
from mailgate.models.enums import Bit
from mailgate.models.users import User
from mailgate.services.login_session_service import close_active_sessions, login_session_repository


class UserRepository(DBQuery[User, Dict[str, Any]]):
    def __init__(self):
        super().__init__(User)


user_repository = UserRepository()


@dataclass
class ClientInfo:
    """登入時記錄在 session 上的用戶端資訊"""

    ip: Optional[str] = None
    device: Optional[str] = None
    os: Optional[str] = None
    version: Optional[str] = None


async def logout_user(user_id: str, session: Optional[AsyncSession] = None) -> int:
    return await close_active_sessions(user_id, session=session)


async def login_user(
    user_id: str, session: Optional[AsyncSession] = None, client: Optional[ClientInfo] = None
) -> str:
    """
    建立新的 ON session 並簽發 token。
    呼叫前必須先 logout_user，否則會撞到「每人一個 active session」的唯一索引。
    """
    info = client or ClientInfo()
    login_session = await login_session_repository.save(
        {
            "user_id": user_id,
            "status": Bit.ON.value,
            "ip": info.ip,
            "device": info.device,
            "os": info.os,
            "version": info.version,
        },
        session=session,
    )
    return create_auth_token(user_id, login_session.id)
