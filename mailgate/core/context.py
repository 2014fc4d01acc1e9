# mailgate/core/context.py
from dataclasses import dataclass
from typing import Optional

from mailgate.models.gmail_token import GmailToken
from mailgate.models.login_session import LoginSession
from mailgate.models.user_password import UserPassword
from mailgate.models.users import User


@dataclass(frozen=True)
class RequestContext:
    """由依賴注入產生、傳給路由的已驗證請求狀態"""

    user: User
    login_session: LoginSession
    user_password: Optional[UserPassword] = None
    gmail_token: Optional[GmailToken] = None
