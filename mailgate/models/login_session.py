# mailgate/models/login_session.py
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailgate.core.config import settings
from mailgate.models.base import Base, IdMixin, TimestampMixin, utcnow
from mailgate.models.enums import Bit
from mailgate.models.users import User


def default_validity_end_date() -> datetime:
    # 每一列各自計算，不能在 import 時算一次
    return utcnow() + timedelta(minutes=settings.SESSION_VALIDITY_MINUTES)


class LoginSession(IdMixin, TimestampMixin, Base):
    __tablename__ = "login_sessions"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    # BIT：1 = ON, 0 = OFF
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=Bit.OFF.value)
    validity_end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=default_validity_end_date)
    logged_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    os: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    version: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    device: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    user: Mapped[User] = relationship(lazy="raise")

    __table_args__ = (
        # 每位使用者最多一個 status = ON 的 session
        Index(
            "uq_login_sessions_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 1"),
            postgresql_where=text("status = 1"),
        ),
    )
