# mailgate/models/gmail_token.py
from typing import List, Optional

from sqlalchemy import String, Boolean, JSON, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailgate.models.base import Base, IdMixin, TimestampMixin
from mailgate.models.users import User


class GmailToken(IdMixin, TimestampMixin, Base):
    """使用者授權後取得的 Gmail refresh token"""

    __tablename__ = "gmail_tokens"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # push notification 最後處理到的 historyId
    history_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    user: Mapped[User] = relationship(lazy="raise")
