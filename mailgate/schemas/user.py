# mailgate/schemas/user.py
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, EmailStr


class UserRead(BaseModel):
    id: str
    first_name: str
    last_name: str
    middle_name: Optional[str] = None
    full_name: str
    email: EmailStr
    phone: str
    phone_country_code: str
    phone_with_country_code: str
    gender: str
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        # Pydantic v2：允許從 ORM 物件轉模型（full_name 等為 model 上的 property）
        from_attributes = True
