# mailgate/models/users.py
from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from mailgate.models.base import Base, IdMixin, TimestampMixin
from mailgate.models.enums import ItemStatus


class User(IdMixin, TimestampMixin, Base):
    __tablename__ = "users"
    __soft_delete__ = True

    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # email 一律小寫後存入
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    phone_country_code: Mapped[str] = mapped_column(String(8), nullable=False, default="234")
    gender: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ItemStatus.ACTIVE.value, index=True)

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    @property
    def phone_with_country_code(self) -> str:
        return f"+{self.phone_country_code or ''}{(self.phone or '').lstrip('0')}"
