# mailgate/api/v1/endpoints/emails.py
import json
from typing import Any, Dict, List, Optional, Type

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from loguru import logger
from pydantic import ValidationError

from mailgate.core import messages
from mailgate.core.context import RequestContext
from mailgate.core.deps import get_request_context, require_gmail_token
from mailgate.core.errors import AppError, describe_validation_error
from mailgate.core.responses import ok
from mailgate.core.uploads import read_attachments
from mailgate.db.session import transaction
from mailgate.schemas.email import BatchTrashRequest, DraftEmail, GmailCallbackRequest, OutgoingEmail
from mailgate.services import gmail_service
from mailgate.services.gmail_service import gmail_token_repository

router = APIRouter(tags=["emails"])

LIST_LABELS = ("TRASH", "STARRED", "SENT", "DRAFT")


async def handle_gmail_api_errors(response: Dict[str, Any], ctx: RequestContext) -> Any:
    """
    成功回傳 data；失敗依 Gmail 錯誤碼轉成對應的 AppError：
      401/403 -> 需要重新授權（附授權頁網址）
      404 -> 找不到、400 -> 請求無效、其他 -> 500
    """
    if response["success"]:
        return response["data"]

    error = response.get("error") or {}
    code = error.get("code")
    reason = error.get("message")
    if code in (401, 403):
        consent_page_url = await gmail_service.get_gmail_consent_url(ctx.user.id)
        raise AppError(
            messages.GMAIL_OAUTH_CONSENT_REQUIRED, 400, data={"consentPageUrl": consent_page_url}, reason=reason
        )
    if code == 404:
        raise AppError(messages.resource_not_found("messages"), 404, reason=reason)
    if code == 400:
        raise AppError(messages.bad_request_error("Invalid request"), 400, reason=reason)
    raise AppError(messages.UNABLE_TO_COMPLETE_REQUEST, 500, reason=f"Gmail API error: {reason}")


# === Multipart email form ===
def _json_list(value: Optional[str], field: str) -> Optional[List[str]]:
    if value is None or not value.strip():
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        raise AppError(messages.bad_request_error(f"{field} must be a JSON array of email addresses"), 400)
    if not isinstance(parsed, list):
        raise AppError(messages.bad_request_error(f"{field} must be a JSON array of email addresses"), 400)
    return parsed


class EmailForm:
    """recipient / cc / bcc 以 JSON 陣列字串送出，其餘為一般欄位"""

    def __init__(
        self,
        recipient: Optional[str] = Form(None),
        cc: Optional[str] = Form(None),
        bcc: Optional[str] = Form(None),
        subject: Optional[str] = Form(None),
        email_body: Optional[str] = Form(None),
        thread_id: Optional[str] = Form(None),
        attachments: Optional[List[UploadFile]] = File(None),
    ):
        self.fields = {
            "recipient": _json_list(recipient, "recipient"),
            "cc": _json_list(cc, "cc"),
            "bcc": _json_list(bcc, "bcc"),
            "subject": subject,
            "email_body": email_body,
            "thread_id": thread_id,
        }
        self.attachments = attachments or []

    def parse(self, schema: Type[DraftEmail]) -> DraftEmail:
        try:
            return schema(**{k: v for k, v in self.fields.items() if v is not None})
        except ValidationError as e:
            raise AppError(messages.bad_request_error(describe_validation_error(e)), 400) from e


# === Consent flow ===
@router.get("/consent_prompt_url")
async def consent_prompt_url(ctx: RequestContext = Depends(get_request_context)):
    return ok(await gmail_service.get_gmail_consent_url(ctx.user.id))


@router.post("/gmail_oauth_callback")
async def gmail_oauth_callback(body: GmailCallbackRequest, ctx: RequestContext = Depends(get_request_context)):
    """
    授權碼換 refresh token：停用舊 token、儲存新 token，再開始監聽信箱。
    """
    data = await handle_gmail_api_errors(await gmail_service.exchange_code(body.code), ctx)

    async with transaction() as session:
        await gmail_token_repository.update_many(
            {"user_id": ctx.user.id, "is_active": True}, {"is_active": False}, session=session
        )
        token = await gmail_token_repository.save(
            {
                "user_id": ctx.user.id,
                "email": (data.get("email") or ctx.user.email).lower(),
                "token": data["refresh_token"],
                "scope": data["scope"],
                "is_active": True,
            },
            session=session,
        )

    watch = await gmail_service.listen_for_email_updates(token.token)
    if watch["success"]:
        await gmail_token_repository.update_by_id(token.id, {"history_id": watch["data"]["history_id"]})
    else:
        logger.warning("Unable to start Gmail watch for {}: {}", token.email, watch["error"])
    return ok()


@router.delete("/gmail_token")
async def delete_gmail_token(ctx: RequestContext = Depends(require_gmail_token)):
    """撤銷授權、停止監聽並刪除使用者所有 Gmail token"""
    stopped = await gmail_service.stop_email_updates(ctx.gmail_token.token)
    if not stopped["success"]:
        logger.warning("Unable to stop Gmail watch for {}: {}", ctx.gmail_token.email, stopped["error"])
    revoked = await gmail_service.revoke_token(ctx.gmail_token.token)
    if not revoked["success"]:
        logger.warning("Unable to revoke Gmail token for {}: {}", ctx.gmail_token.email, revoked["error"])

    result = await gmail_token_repository.delete_many({"user_id": ctx.user.id})
    return ok({"deleted_count": result.deleted_count})


# === Threads / messages ===
@router.get("/threads")
async def list_message_threads(
    page_size: int = Query(10, ge=1, le=100),
    next_page_token: Optional[str] = None,
    ctx: RequestContext = Depends(require_gmail_token),
):
    response = await gmail_service.list_message_threads(ctx.gmail_token.token, page_size, next_page_token)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.get("/threads/{thread_id}")
async def get_thread_messages(
    thread_id: str,
    search: Optional[str] = None,
    ctx: RequestContext = Depends(require_gmail_token),
):
    response = await gmail_service.get_thread_messages(ctx.gmail_token.token, thread_id, search)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.get("/")
async def list_messages(
    label: Optional[str] = None,
    page_size: int = Query(10, ge=1, le=100),
    next_page_token: Optional[str] = None,
    ctx: RequestContext = Depends(require_gmail_token),
):
    if label not in LIST_LABELS:
        raise AppError(messages.bad_request_error("Label must be either of " + ",".join(LIST_LABELS)), 400)
    response = await gmail_service.list_messages(ctx.gmail_token.token, label, page_size, next_page_token)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.get("/stats")
async def get_label_stats(label: Optional[str] = None, ctx: RequestContext = Depends(require_gmail_token)):
    if not label:
        raise AppError(messages.required_field("label"), 400)
    response = await gmail_service.get_label_stats(ctx.gmail_token.token, label)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.post("/send")
async def send_email(form: EmailForm = Depends(), ctx: RequestContext = Depends(require_gmail_token)):
    email = form.parse(OutgoingEmail)
    attachments = await read_attachments(form.attachments)
    response = await gmail_service.send_message(ctx.gmail_token.token, email, attachments, ctx.gmail_token.email)
    return ok(await handle_gmail_api_errors(response, ctx))


# === Drafts ===
@router.get("/drafts")
async def list_drafts(
    page_size: int = Query(10, ge=1, le=100),
    next_page_token: Optional[str] = None,
    ctx: RequestContext = Depends(require_gmail_token),
):
    response = await gmail_service.list_drafts(ctx.gmail_token.token, page_size, next_page_token)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.post("/drafts")
async def create_draft(form: EmailForm = Depends(), ctx: RequestContext = Depends(require_gmail_token)):
    email = form.parse(DraftEmail)
    attachments = await read_attachments(form.attachments)
    response = await gmail_service.create_draft(ctx.gmail_token.token, email, attachments, ctx.gmail_token.email)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.get("/drafts/{draft_id}")
async def get_draft_details(draft_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.get_draft_details(ctx.gmail_token.token, draft_id)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.put("/drafts/{draft_id}")
async def update_draft(draft_id: str, form: EmailForm = Depends(), ctx: RequestContext = Depends(require_gmail_token)):
    email = form.parse(DraftEmail)
    attachments = await read_attachments(form.attachments)
    response = await gmail_service.update_draft(
        ctx.gmail_token.token, draft_id, email, attachments, ctx.gmail_token.email
    )
    return ok(await handle_gmail_api_errors(response, ctx))


@router.post("/drafts/{draft_id}/send")
async def send_draft(draft_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.send_draft(ctx.gmail_token.token, draft_id)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.delete("/drafts/{draft_id}")
async def delete_draft(draft_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.delete_draft(ctx.gmail_token.token, draft_id)
    return ok(await handle_gmail_api_errors(response, ctx))


# === Trash ===
@router.delete("/trash")
async def batch_trash(body: BatchTrashRequest, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.batch_trash(ctx.gmail_token.token, body.ids)
    return ok(await handle_gmail_api_errors(response, ctx))


# === Single message ===
@router.get("/{message_id}/details")
async def get_message(message_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.get_message(ctx.gmail_token.token, message_id)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.patch("/{message_id}/star")
async def star_message(message_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.add_message_labels(ctx.gmail_token.token, message_id, "STARRED")
    return ok(await handle_gmail_api_errors(response, ctx))


@router.patch("/{message_id}/unstar")
async def unstar_message(message_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.remove_message_labels(ctx.gmail_token.token, message_id, "STARRED")
    return ok(await handle_gmail_api_errors(response, ctx))


@router.patch("/{message_id}/archive")
async def archive_message(message_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.remove_message_labels(ctx.gmail_token.token, message_id, "INBOX")
    return ok(await handle_gmail_api_errors(response, ctx))


@router.patch("/{message_id}/untrash")
async def untrash_message(message_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.untrash_message(ctx.gmail_token.token, message_id)
    return ok(await handle_gmail_api_errors(response, ctx))


@router.delete("/{message_id}/trash")
async def trash_message(message_id: str, ctx: RequestContext = Depends(require_gmail_token)):
    response = await gmail_service.trash_message(ctx.gmail_token.token, message_id)
    return ok(await handle_gmail_api_errors(response, ctx))
