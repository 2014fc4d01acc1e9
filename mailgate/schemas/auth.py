# mailgate/schemas/auth.py
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from mailgate.models.enums import Gender
from mailgate.schemas.user import UserRead


class SignupRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    middle_name: Optional[str] = Field(None, max_length=50)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=50)
    gender: Gender
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class PasswordUpdateRequest(BaseModel):
    password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)


class AuthResult(BaseModel):
    message: str
    token: str
    user: Optional[UserRead] = None
