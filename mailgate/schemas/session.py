# mailgate/schemas/session.py
from typing import Optional
from datetime import datetime
from pydantic import BaseModel


class LoginSessionRead(BaseModel):
    id: str
    user_id: str
    status: int
    validity_end_date: datetime
    logged_out: bool
    expired: bool
    os: Optional[str] = None
    version: Optional[str] = None
    device: Optional[str] = None
    ip: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
