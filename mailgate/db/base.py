# mailgate/db/base.py
# 匯入所有 model，讓 Base.metadata 完整（Alembic 與測試 create_all 用）
from mailgate.models.base import Base  # noqa: F401
from mailgate.models.users import User  # noqa: F401
from mailgate.models.user_password import UserPassword  # noqa: F401
from mailgate.models.login_session import LoginSession  # noqa: F401
from mailgate.models.sequence_counter import SequenceCounter  # noqa: F401
from mailgate.models.gmail_token import GmailToken  # noqa: F401
