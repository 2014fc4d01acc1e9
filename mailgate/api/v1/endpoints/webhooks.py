# mailgate/api/v1/endpoints/webhooks.py
import hmac
from typing import Optional

from fastapi import APIRouter

from mailgate.core import messages
from mailgate.core.config import settings
from mailgate.core.errors import AppError
from mailgate.core.responses import ok
from mailgate.schemas.webhook import PubSubPush
from mailgate.services import gmail_service

router = APIRouter(tags=["webhooks"])


@router.post("/gmail")
async def gmail_push_notification(push: PubSubPush, token: Optional[str] = None):
    """
    Gmail 經由 Pub/Sub push 通知信箱變動。
    有設定 PUBSUB_VERIFICATION_TOKEN 時，query 的 token 必須相符。
    """
    expected = settings.PUBSUB_VERIFICATION_TOKEN
    if expected and not hmac.compare_digest(token or "", expected):
        raise AppError(messages.INVALID_TOKEN, 401)

    try:
        result = await gmail_service.process_gmail_push_notification(push)
    except ValueError as e:
        raise AppError(messages.bad_request_error(str(e)), 400) from e
    return ok(result)
