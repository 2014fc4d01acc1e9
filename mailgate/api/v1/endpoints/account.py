# mailgate/api/v1/endpoints/account.py
from fastapi import APIRouter, Depends, Query

from mailgate.core import messages
from mailgate.core.context import RequestContext
from mailgate.core.deps import get_client_info, get_request_context
from mailgate.core.errors import AppError
from mailgate.core.responses import ok
from mailgate.core.security import verify_password
from mailgate.db.session import transaction
from mailgate.schemas.auth import AuthResult, PasswordUpdateRequest
from mailgate.schemas.session import LoginSessionRead
from mailgate.schemas.user import UserRead
from mailgate.services.login_session_service import login_session_repository
from mailgate.services.password_service import find_active_password, rotate_password
from mailgate.services.user_service import ClientInfo, login_user, logout_user

router = APIRouter(tags=["account"])


@router.get("/me")
async def read_me(ctx: RequestContext = Depends(get_request_context)):
    return ok(UserRead.model_validate(ctx.user))


@router.patch("/logout")
async def logout(ctx: RequestContext = Depends(get_request_context)):
    await logout_user(ctx.user.id)
    return ok({"message": messages.LOGOUT_SUCCESSFUL})


@router.patch("/password")
async def update_password(
    body: PasswordUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    client: ClientInfo = Depends(get_client_info),
):
    """
    更換密碼：停用舊密碼、新增新密碼、關閉現有 session、建立新 session，
    全部在同一個交易內；任一步失敗全部 rollback。
    """
    current = await find_active_password(ctx.user.email)
    if current is None or not verify_password(body.password, current.password):
        raise AppError(messages.INVALID_LOGIN, 400)
    if body.new_password != body.confirm_password:
        raise AppError(messages.PASSWORD_MISMATCH, 400)

    async with transaction() as session:
        await rotate_password(ctx.user.id, ctx.user.email, body.new_password, session)
        await logout_user(ctx.user.id, session=session)
        token = await login_user(ctx.user.id, session=session, client=client)

    return ok(AuthResult(message=messages.PASSWORD_UPDATE_SUCCESSFUL, token=token))


@router.get("/sessions")
async def list_sessions(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    ctx: RequestContext = Depends(get_request_context),
):
    result = await login_session_repository.paginate({"user_id": ctx.user.id}, page_size=page_size, page=page)
    return ok({
        "items": [LoginSessionRead.model_validate(s) for s in result.items],
        "paginator": result.paginator,
    })
