# mailgate/models/user_password.py
from sqlalchemy import String, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailgate.models.base import Base, IdMixin, TimestampMixin
from mailgate.models.enums import PasswordStatus
from mailgate.models.users import User


class UserPassword(IdMixin, TimestampMixin, Base):
    """密碼雜湊紀錄；輪替時只改 status，不刪除舊列"""

    __tablename__ = "user_passwords"
    __soft_delete__ = True

    password: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=PasswordStatus.ACTIVE.value)

    user: Mapped[User] = relationship(lazy="raise")

    __table_args__ = (
        # 同一個 email 只能有一組 active 密碼
        Index(
            "uq_user_passwords_active_email",
            "email",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )
