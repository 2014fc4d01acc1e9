# mailgate/schemas/email.py
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


def _unique(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is not None and len({x.lower() for x in v}) != len(v):
        raise ValueError("must contain unique email addresses")
    return v


class DraftEmail(BaseModel):
    """草稿：所有欄位皆可省略"""

    recipient: Optional[List[EmailStr]] = Field(None, min_length=1)
    cc: Optional[List[EmailStr]] = Field(None, min_length=1)
    bcc: Optional[List[EmailStr]] = Field(None, min_length=1)
    subject: Optional[str] = None
    email_body: Optional[str] = None
    thread_id: Optional[str] = None

    @field_validator("recipient", "cc", "bcc")
    @classmethod
    def _check_unique(cls, v):
        return _unique(v)


class OutgoingEmail(DraftEmail):
    """寄信：收件者與內文必填"""

    recipient: List[EmailStr] = Field(..., min_length=1)
    email_body: str = Field(..., min_length=1)


class GmailCallbackRequest(BaseModel):
    code: str = Field(..., min_length=1)


class BatchTrashRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)
