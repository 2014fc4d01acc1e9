# mailgate/schemas/webhook.py
from typing import Dict, Optional

from pydantic import BaseModel, Field


class PubSubMessage(BaseModel):
    data: str
    messageId: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)


class PubSubPush(BaseModel):
    """Google Pub/Sub push 的請求本體"""

    message: PubSubMessage
    subscription: Optional[str] = None
