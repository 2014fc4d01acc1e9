# mailgate/services/password_service.py
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mailgate.core.security import hash_password
from mailgate.db.query import DBQuery
from mailgate.models.enums import PasswordStatus
from mailgate.models.user_password import UserPassword


class PasswordRepository(DBQuery[UserPassword, Dict[str, Any]]):
    def __init__(self):
        super().__init__(UserPassword)


password_repository = PasswordRepository()


async def find_active_password(
    email: str, populate_user: bool = False, session: Optional[AsyncSession] = None
) -> Optional[UserPassword]:
    query = {"email": email.lower(), "status": PasswordStatus.ACTIVE.value}
    if populate_user:
        return await password_repository.find_one_and_populate(query, ["user"], session=session)
    return await password_repository.find_one(query, session=session)


async def rotate_password(user_id: str, email: str, new_password: str, session: AsyncSession) -> UserPassword:
    """
    停用目前的 active 密碼，再建立新的 active 密碼。
    必須在交易內呼叫；先停用再新增，才不會撞到 active email 的唯一索引。
    """
    await password_repository.update_many(
        {"email": email.lower(), "status": PasswordStatus.ACTIVE.value},
        {"status": PasswordStatus.DEACTIVATED.value},
        session=session,
    )
    return await password_repository.save(
        {
            "password": hash_password(new_password),
            "email": email.lower(),
            "user_id": user_id,
            "status": PasswordStatus.ACTIVE.value,
        },
        session=session,
    )
