# mailgate/api/v1/endpoints/auth.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from mailgate.core import messages
from mailgate.core.deps import get_client_info
from mailgate.core.errors import AppError
from mailgate.core.responses import ok
from mailgate.core.security import hash_password, verify_password
from mailgate.db.session import transaction
from mailgate.models.enums import ItemStatus, PasswordStatus
from mailgate.schemas.auth import AuthResult, LoginRequest, SignupRequest
from mailgate.schemas.user import UserRead
from mailgate.services.password_service import find_active_password, password_repository
from mailgate.services.rate_limit import login_rate_limiter
from mailgate.services.user_service import ClientInfo, login_user, logout_user, user_repository

router = APIRouter(tags=["auth"])

# 軟刪除的使用者仍佔用 email / phone 的唯一值
ANY_STATUS = {"$in": [s.value for s in ItemStatus]}


async def _duplicate_user_error(email: str, phone: str) -> Optional[AppError]:
    if await user_repository.find_one({"email": email, "status": ANY_STATUS}) is not None:
        return AppError(messages.DUPLICATE_EMAIL, 400)
    if await user_repository.find_one({"phone": phone, "status": ANY_STATUS}) is not None:
        return AppError(messages.DUPLICATE_PHONE, 400)
    return None


# === 註冊 ===
@router.post("/signup")
async def signup(body: SignupRequest, client: ClientInfo = Depends(get_client_info)):
    """
    建立使用者、active 密碼與第一個登入 session，三者在同一個交易內完成。
    """
    if body.new_password != body.confirm_password:
        raise AppError(messages.PASSWORD_MISMATCH, 400)

    duplicate = await _duplicate_user_error(body.email, body.phone)
    if duplicate is not None:
        raise duplicate

    try:
        async with transaction() as session:
            user = await user_repository.save(
                {
                    "first_name": body.first_name,
                    "last_name": body.last_name,
                    "middle_name": body.middle_name,
                    "email": body.email,
                    "phone": body.phone,
                    "gender": body.gender.value,
                },
                session=session,
            )
            await password_repository.save(
                {
                    "password": hash_password(body.new_password),
                    "email": user.email,
                    "user_id": user.id,
                    "status": PasswordStatus.ACTIVE.value,
                },
                session=session,
            )
            token = await login_user(user.id, session=session, client=client)
    except IntegrityError as e:
        # 同時註冊撞到唯一索引
        duplicate = await _duplicate_user_error(body.email, body.phone)
        if duplicate is not None:
            raise duplicate from e
        raise AppError(messages.duplicate_value("email or phone"), 400, reason=str(e.orig)) from e

    return ok(AuthResult(message=messages.SIGNUP_SUCCESS, token=token, user=UserRead.model_validate(user)))


# === 登入（含 Redis Rate Limit） ===
@router.post("/login")
async def login(body: LoginRequest, client: ClientInfo = Depends(get_client_info)):
    """
    驗證 active 密碼後，關閉使用者所有 ON session 並建立新的 session（同一交易）。
    """
    ip = client.ip or "unknown"
    allowed, retry_after = await login_rate_limiter.check_and_hit(ip, body.email)
    if not allowed:
        raise AppError(
            messages.TOO_MANY_LOGIN_ATTEMPTS,
            429,
            headers={"Retry-After": str(retry_after)},
        )

    password = await find_active_password(body.email, populate_user=True)
    user = password.user if password is not None else None
    # 統一訊息避免帳號探測
    if user is None or user.status == ItemStatus.DELETED.value:
        raise AppError(messages.INVALID_LOGIN, 400)
    if not verify_password(body.password, password.password):
        raise AppError(messages.INVALID_LOGIN, 400)

    try:
        async with transaction() as session:
            await logout_user(user.id, session=session)
            token = await login_user(user.id, session=session, client=client)
    except SQLAlchemyError as e:
        raise AppError(messages.UNABLE_TO_LOGIN, 500, reason=str(e)) from e

    await login_rate_limiter.reset_success(ip, body.email)
    return ok(AuthResult(message=messages.LOGIN_SUCCESSFUL, token=token, user=UserRead.model_validate(user)))
