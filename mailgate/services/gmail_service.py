# mailgate/services/gmail_service.py
"""
Gmail REST API 外觀層。

每個對外操作都用 refresh token 換一次 access token，再呼叫 Gmail API，
結果一律正規化成：
  {"success": True, "data": ...}
  {"success": False, "error": {"code", "message", "status"}}
不重試，錯誤由路由層依 code 轉成對應的錯誤回應。
"""
from __future__ import annotations

import base64
import binascii
import functools
import json
import re
from contextlib import asynccontextmanager
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email import encoders
from typing import Any, AsyncGenerator, Dict, Iterator, List, Optional, Sequence
from urllib.parse import urlencode

import httpx
from loguru import logger

from mailgate.core.config import settings
from mailgate.core.uploads import Attachment
from mailgate.db.query import DBQuery
from mailgate.models.gmail_token import GmailToken
from mailgate.schemas.email import DraftEmail
from mailgate.schemas.webhook import PubSubPush

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"

THREAD_LABELS = ("INBOX", "SENT")
HIDDEN_THREAD_LABELS = ("SPAM", "TRASH", "DRAFT")

_HEADER_KEYS = {
    "From": "from",
    "To": "to",
    "Subject": "subject",
    "Date": "date",
    "Cc": "cc",
    "Message-ID": "message_id",
}


class GmailTokenRepository(DBQuery[GmailToken, Dict[str, Any]]):
    def __init__(self):
        super().__init__(GmailToken)


gmail_token_repository = GmailTokenRepository()


# === Errors / HTTP ===
class GmailApiError(Exception):
    def __init__(self, code: int, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "status": self.status}


def _error_from_response(resp: httpx.Response) -> GmailApiError:
    try:
        body = resp.json()
    except ValueError:
        return GmailApiError(resp.status_code, resp.text or resp.reason_phrase)

    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        # Gmail API：{"error": {"code", "message", "status"}}
        return GmailApiError(int(err.get("code") or resp.status_code), err.get("message", ""), err.get("status"))
    if isinstance(err, str):
        # OAuth 端點：{"error": "invalid_grant", "error_description": "..."}
        code = 401 if err == "invalid_grant" else resp.status_code
        return GmailApiError(code, body.get("error_description") or err, err.upper())
    return GmailApiError(resp.status_code, resp.text or resp.reason_phrase)


def build_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.GMAIL_HTTP_TIMEOUT)


def _envelope(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs) -> Dict[str, Any]:
        try:
            return {"success": True, "data": await fn(*args, **kwargs)}
        except GmailApiError as e:
            logger.warning("Gmail API error on {}: {} {}", fn.__name__, e.code, e.message)
            return {"success": False, "error": e.to_dict()}
        except httpx.HTTPError as e:
            logger.warning("Gmail API transport error on {}: {}", fn.__name__, e)
            return {"success": False, "error": {"code": 503, "message": str(e), "status": "UNAVAILABLE"}}

    return wrapper


class GmailApi:
    """綁定 access token 的 Gmail API 呼叫器"""

    def __init__(self, client: httpx.AsyncClient, access_token: str):
        self.client = client
        self.access_token = access_token

    async def request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        resp = await self.client.request(
            method,
            f"{GMAIL_API_BASE}{path}",
            headers={"Authorization": f"Bearer {self.access_token}"},
            **kwargs,
        )
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        if not resp.content:
            return {}
        return resp.json()

    async def get(self, path: str, **params) -> Dict[str, Any]:
        return await self.request("GET", path, params={k: v for k, v in params.items() if v is not None})

    async def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, json=body or {})


async def _token_request(client: httpx.AsyncClient, data: Dict[str, str]) -> Dict[str, Any]:
    resp = await client.post(
        GOOGLE_TOKEN_URL,
        data={
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            **data,
        },
    )
    if resp.status_code >= 400:
        raise _error_from_response(resp)
    return resp.json()


@asynccontextmanager
async def gmail_api(refresh_token: str) -> AsyncGenerator[GmailApi, None]:
    async with build_http_client() as client:
        tokens = await _token_request(client, {"refresh_token": refresh_token, "grant_type": "refresh_token"})
        yield GmailApi(client, tokens["access_token"])


# === Message helpers ===
def decode_base64url(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def extract_message_headers(headers: Sequence[Dict[str, str]]) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for header in headers or []:
        key = _HEADER_KEYS.get(header.get("name", ""))
        if key:
            result[key] = header.get("value", "")
    return result


def _walk_parts(part: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    yield part
    for child in part.get("parts") or []:
        yield from _walk_parts(child)


def extract_message_body(payload: Dict[str, Any]) -> str:
    """優先取 text/html，其次 text/plain"""
    parts = [p for p in _walk_parts(payload or {}) if not p.get("filename") and (p.get("body") or {}).get("data")]
    for mime in ("text/html", "text/plain"):
        for part in parts:
            if part.get("mimeType") == mime:
                return decode_base64url(part["body"]["data"]).decode("utf-8", errors="replace")
    if parts:
        return decode_base64url(parts[0]["body"]["data"]).decode("utf-8", errors="replace")
    return ""


def attachment_parts(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        p for p in _walk_parts(payload or {})
        if p.get("filename") and (p.get("body") or {}).get("attachmentId")
    ]


def _summary(message: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "labelIds": message.get("labelIds") or [],
        "snippet": message.get("snippet", ""),
        "headers": extract_message_headers((message.get("payload") or {}).get("headers") or []),
    }


async def _message_details(api: GmailApi, message: Dict[str, Any]) -> Dict[str, Any]:
    """完整訊息：header、解碼後內文、附件內容"""
    payload = message.get("payload") or {}
    attachments = []
    for part in attachment_parts(payload):
        data = await api.get(f"/messages/{message['id']}/attachments/{part['body']['attachmentId']}")
        attachments.append({
            "file_name": part.get("filename"),
            "file_type": part.get("mimeType"),
            "file": data.get("data"),
        })
    return {**_summary(message), "body": extract_message_body(payload), "attachments": attachments}


def build_raw_message(
    email: DraftEmail, attachments: Sequence[Attachment] = (), sender: Optional[str] = None
) -> str:
    msg = MIMEMultipart("mixed")
    if sender:
        msg["From"] = sender
    if email.recipient:
        msg["To"] = ", ".join(email.recipient)
    if email.cc:
        msg["Cc"] = ", ".join(email.cc)
    if email.bcc:
        msg["Bcc"] = ", ".join(email.bcc)
    msg["Subject"] = email.subject or ""
    msg.attach(MIMEText(email.email_body or "", "html", "utf-8"))

    for item in attachments:
        maintype, _, subtype = (item.content_type or "application/octet-stream").partition("/")
        part = MIMEBase(maintype, subtype or "octet-stream")
        part.set_payload(item.content)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=item.filename)
        msg.attach(part)

    return base64.urlsafe_b64encode(msg.as_bytes()).decode()


def _message_body(raw: str, thread_id: Optional[str]) -> Dict[str, Any]:
    body: Dict[str, Any] = {"raw": raw}
    if thread_id:
        body["threadId"] = thread_id
    return body


# === OAuth / consent ===
async def get_gmail_consent_url(user_id: str, scopes: Optional[Sequence[str]] = None) -> str:
    """產生授權頁網址；已授權過的 scope 會一併請求（不改動傳入的 scopes）"""
    requested = list(scopes if scopes is not None else settings.GMAIL_SCOPES)
    existing = await gmail_token_repository.find_one({"user_id": user_id, "is_active": True})
    if existing:
        requested.extend(s for s in existing.scope or [] if s not in requested)
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": settings.GMAIL_CALLBACK_URL,
        "response_type": "code",
        "scope": " ".join(dict.fromkeys(requested)),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


@_envelope
async def exchange_code(code: str) -> Dict[str, Any]:
    """授權碼換 token，並查出授權的 Gmail 信箱"""
    async with build_http_client() as client:
        tokens = await _token_request(
            client,
            {"code": code, "redirect_uri": settings.GMAIL_CALLBACK_URL, "grant_type": "authorization_code"},
        )
        if not tokens.get("refresh_token"):
            raise GmailApiError(400, "No refresh token returned", "INVALID_ARGUMENT")
        profile = await GmailApi(client, tokens["access_token"]).get("/profile")
    return {
        "refresh_token": tokens["refresh_token"],
        "scope": (tokens.get("scope") or "").split(),
        "email": profile.get("emailAddress"),
    }


@_envelope
async def revoke_token(refresh_token: str) -> None:
    async with build_http_client() as client:
        resp = await client.post(GOOGLE_REVOKE_URL, data={"token": refresh_token})
        if resp.status_code >= 400:
            raise _error_from_response(resp)


# === Push notifications ===
@_envelope
async def listen_for_email_updates(refresh_token: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        data = await api.post("/watch", {"topicName": settings.GOOGLE_TOPIC_NAME, "labelIds": ["INBOX"]})
    return {"history_id": data.get("historyId"), "expiration": data.get("expiration")}


@_envelope
async def stop_email_updates(refresh_token: str) -> None:
    async with gmail_api(refresh_token) as api:
        await api.post("/stop")


@_envelope
async def get_history(refresh_token: str, start_history_id: str) -> Dict[str, Any]:
    messages: List[Dict[str, Any]] = []
    page_token: Optional[str] = None
    async with gmail_api(refresh_token) as api:
        while True:
            data = await api.get(
                "/history",
                startHistoryId=start_history_id,
                historyTypes="messageAdded",
                pageToken=page_token,
            )
            for record in data.get("history") or []:
                for added in record.get("messagesAdded") or []:
                    messages.append(added.get("message") or {})
            page_token = data.get("nextPageToken")
            if not page_token:
                break
    return {"messages": messages, "history_id": data.get("historyId")}


def decode_push_notification(push: PubSubPush) -> Dict[str, Any]:
    """解開 Pub/Sub 訊息：data 為 base64(JSON{emailAddress, historyId})"""
    try:
        payload = json.loads(base64.b64decode(push.message.data, validate=False).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValueError("Undecodable push notification payload") from e
    if not isinstance(payload, dict) or not payload.get("emailAddress") or not payload.get("historyId"):
        raise ValueError("Push notification payload is missing emailAddress or historyId")
    history_id = str(payload["historyId"])
    if not history_id.isdigit():
        raise ValueError("Push notification historyId is not numeric")
    return {"email": str(payload["emailAddress"]).lower(), "history_id": history_id}


def _is_newer_history(incoming: str, stored: Optional[str]) -> bool:
    if not stored or not stored.isdigit():
        return True
    return int(incoming) > int(stored)


async def process_gmail_push_notification(push: PubSubPush) -> Dict[str, Any]:
    notification = decode_push_notification(push)
    token = await gmail_token_repository.find_one({"email": notification["email"], "is_active": True})
    if token is None:
        logger.info("Ignoring Gmail push for unknown mailbox {}", notification["email"])
        return {"status": "ignored"}

    # Pub/Sub 不保證順序，舊的 historyId 不能把游標往回拉
    if not _is_newer_history(notification["history_id"], token.history_id):
        logger.info(
            "Skipping stale Gmail push for {} (history {} <= {})",
            token.email, notification["history_id"], token.history_id,
        )
        return {"status": "accepted", "messages_added": 0}

    added = 0
    if token.history_id:
        response = await get_history(token.token, token.history_id)
        if not response["success"]:
            logger.warning("Unable to fetch Gmail history for {}: {}", token.email, response["error"])
        else:
            added = len(response["data"]["messages"])

    await gmail_token_repository.update_by_id(token.id, {"history_id": notification["history_id"]})
    logger.info("Gmail push for {}: {} new messages", token.email, added)
    return {"status": "accepted", "messages_added": added}


# === Threads / messages ===
@_envelope
async def list_message_threads(
    refresh_token: str, max_results: int = 10, next_page_token: Optional[str] = None
) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        listing = await api.get("/threads", maxResults=max_results, pageToken=next_page_token)
        threads = []
        for item in listing.get("threads") or []:
            details = await api.get(f"/threads/{item['id']}", format="full")
            messages = []
            attachment_count = 0
            for message in details.get("messages") or []:
                labels = message.get("labelIds") or []
                if not any(label in labels for label in THREAD_LABELS):
                    continue
                attachment_count += len(attachment_parts(message.get("payload") or {}))
                messages.append(_summary(message))
            if messages:
                threads.append({"id": item["id"], "attachment_count": attachment_count, "messages": messages})
    return {"threads": threads, "next_page_token": listing.get("nextPageToken")}


@_envelope
async def get_thread_messages(refresh_token: str, thread_id: str, search: Optional[str] = None) -> List[Dict[str, Any]]:
    pattern = re.compile(re.escape(search), re.IGNORECASE) if search else None
    async with gmail_api(refresh_token) as api:
        thread = await api.get(f"/threads/{thread_id}", format="full")
        messages = []
        for message in thread.get("messages") or []:
            labels = message.get("labelIds") or []
            if any(label in labels for label in HIDDEN_THREAD_LABELS):
                continue
            details = await _message_details(api, message)
            if pattern is None or pattern.search(details["body"]):
                messages.append(details)
    return messages


@_envelope
async def list_messages(
    refresh_token: str, label: str, max_results: int = 10, next_page_token: Optional[str] = None
) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        listing = await api.get(
            "/messages",
            labelIds=label,
            maxResults=max_results,
            pageToken=next_page_token,
            includeSpamTrash="true" if label == "TRASH" else None,
        )
        messages = []
        for item in listing.get("messages") or []:
            message = await api.get(f"/messages/{item['id']}", format="metadata")
            messages.append(_summary(message))
    return {"messages": messages, "next_page_token": listing.get("nextPageToken")}


@_envelope
async def get_message(refresh_token: str, message_id: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        message = await api.get(f"/messages/{message_id}", format="full")
        return await _message_details(api, message)


@_envelope
async def get_label_stats(refresh_token: str, label: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        data = await api.get(f"/labels/{label}")
    return {
        "id": data.get("id"),
        "name": data.get("name"),
        "messages_total": data.get("messagesTotal", 0),
        "messages_unread": data.get("messagesUnread", 0),
        "threads_total": data.get("threadsTotal", 0),
        "threads_unread": data.get("threadsUnread", 0),
    }


# === Labels / trash ===
@_envelope
async def add_message_labels(refresh_token: str, message_id: str, *labels: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        return _summary(await api.post(f"/messages/{message_id}/modify", {"addLabelIds": list(labels)}))


@_envelope
async def remove_message_labels(refresh_token: str, message_id: str, *labels: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        return _summary(await api.post(f"/messages/{message_id}/modify", {"removeLabelIds": list(labels)}))


@_envelope
async def trash_message(refresh_token: str, message_id: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        return _summary(await api.post(f"/messages/{message_id}/trash"))


@_envelope
async def untrash_message(refresh_token: str, message_id: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        return _summary(await api.post(f"/messages/{message_id}/untrash"))


@_envelope
async def batch_trash(refresh_token: str, message_ids: Sequence[str]) -> None:
    # 移到垃圾桶而非永久刪除
    async with gmail_api(refresh_token) as api:
        await api.post("/messages/batchModify", {"ids": list(message_ids), "addLabelIds": ["TRASH"]})


# === Send / drafts ===
@_envelope
async def send_message(
    refresh_token: str, email: DraftEmail, attachments: Sequence[Attachment] = (), sender: Optional[str] = None
) -> Dict[str, Any]:
    raw = build_raw_message(email, attachments, sender)
    async with gmail_api(refresh_token) as api:
        data = await api.post("/messages/send", _message_body(raw, email.thread_id))
    return {"id": data.get("id"), "threadId": data.get("threadId"), "labelIds": data.get("labelIds") or []}


def _draft(data: Dict[str, Any]) -> Dict[str, Any]:
    message = data.get("message") or {}
    return {"id": data.get("id"), "message": _summary(message) if message else None}


@_envelope
async def list_drafts(refresh_token: str, max_results: int = 10, next_page_token: Optional[str] = None) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        listing = await api.get("/drafts", maxResults=max_results, pageToken=next_page_token)
        drafts = []
        for item in listing.get("drafts") or []:
            drafts.append(_draft(await api.get(f"/drafts/{item['id']}", format="metadata")))
    return {"drafts": drafts, "next_page_token": listing.get("nextPageToken")}


@_envelope
async def get_draft_details(refresh_token: str, draft_id: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        data = await api.get(f"/drafts/{draft_id}", format="full")
        message = data.get("message") or {}
        return {"id": data.get("id"), "message": await _message_details(api, message) if message else None}


@_envelope
async def create_draft(
    refresh_token: str, email: DraftEmail, attachments: Sequence[Attachment] = (), sender: Optional[str] = None
) -> Dict[str, Any]:
    raw = build_raw_message(email, attachments, sender)
    async with gmail_api(refresh_token) as api:
        return _draft(await api.post("/drafts", {"message": _message_body(raw, email.thread_id)}))


@_envelope
async def update_draft(
    refresh_token: str,
    draft_id: str,
    email: DraftEmail,
    attachments: Sequence[Attachment] = (),
    sender: Optional[str] = None,
) -> Dict[str, Any]:
    raw = build_raw_message(email, attachments, sender)
    async with gmail_api(refresh_token) as api:
        data = await api.request(
            "PUT", f"/drafts/{draft_id}", json={"id": draft_id, "message": _message_body(raw, email.thread_id)}
        )
    return _draft(data)


@_envelope
async def send_draft(refresh_token: str, draft_id: str) -> Dict[str, Any]:
    async with gmail_api(refresh_token) as api:
        data = await api.post("/drafts/send", {"id": draft_id})
    return {"id": data.get("id"), "threadId": data.get("threadId"), "labelIds": data.get("labelIds") or []}


@_envelope
async def delete_draft(refresh_token: str, draft_id: str) -> None:
    async with gmail_api(refresh_token) as api:
        await api.request("DELETE", f"/drafts/{draft_id}")
