# mailgate/core/deps.py
from dataclasses import replace
from typing import Optional

from fastapi import Depends, Header, Request
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from mailgate.core import messages
from mailgate.core.context import RequestContext
from mailgate.core.errors import AppError
from mailgate.core.security import TokenExpired, TokenInvalid, decode_auth_token, get_token_from_header
from mailgate.models.base import utcnow
from mailgate.models.enums import Bit, ItemStatus
from mailgate.services import gmail_service
from mailgate.services.login_session_service import expire_session, login_session_repository
from mailgate.services.user_service import ClientInfo


async def get_request_context(authorization: Optional[str] = Header(None)) -> RequestContext:
    """
    驗證 Bearer token 並載入登入 session：
      1️⃣ token 缺少或無效 -> 401 INVALID_TOKEN；過期 -> 401 SESSION_EXPIRED
      2️⃣ 依 id + user + status ON 找 session，找不到 -> 401 INVALID_SESSION_USER
      3️⃣ session 已過有效期 -> 標記 expired，401 SESSION_EXPIRED
    """
    token = get_token_from_header(authorization)
    try:
        data = decode_auth_token(token)
    except TokenExpired as e:
        raise AppError(messages.SESSION_EXPIRED, 401, reason=str(e)) from e
    except TokenInvalid as e:
        raise AppError(messages.INVALID_TOKEN, 401, reason=str(e)) from e

    try:
        login_session = await login_session_repository.find_one_and_populate(
            {"id": data["loginSession"], "user_id": data["user"], "status": Bit.ON.value},
            ["user"],
        )
        if login_session is None or login_session.user is None or login_session.user.status == ItemStatus.DELETED.value:
            raise AppError(messages.INVALID_SESSION_USER, 401)

        if login_session.validity_end_date <= utcnow():
            await expire_session(login_session.id)
            raise AppError(messages.SESSION_EXPIRED, 401)
    except SQLAlchemyError as e:
        logger.opt(exception=e).error("Unable to load login session: {}", e)
        raise AppError(messages.UNABLE_TO_COMPLETE_REQUEST, 401) from e

    return RequestContext(user=login_session.user, login_session=login_session)


async def require_gmail_token(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """需要已授權 Gmail；沒有 active token 時回傳授權頁網址"""
    token = await gmail_service.gmail_token_repository.find_one({"user_id": ctx.user.id, "is_active": True})
    if token is None:
        consent_page_url = await gmail_service.get_gmail_consent_url(ctx.user.id)
        raise AppError(messages.GMAIL_OAUTH_CONSENT_REQUIRED, 400, data={"consentPageUrl": consent_page_url})
    return replace(ctx, gmail_token=token)


def get_client_info(request: Request) -> ClientInfo:
    """從請求取出要記在登入 session 上的用戶端資訊"""
    headers = request.headers
    return ClientInfo(
        ip=(request.client.host if request.client else None),
        device=headers.get("user-agent"),
        os=headers.get("x-client-os"),
        version=headers.get("x-client-version"),
    )
