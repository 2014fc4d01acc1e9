# mailgate/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

from mailgate.core.config import settings

# === Password Hashing ===
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
    # 若密碼超過 72 bytes，不拋錯
    bcrypt__truncate_error=False,
)

def _sanitize_password(p: str) -> str:
    # bcrypt 只吃前 72 bytes
    return p[:72] if isinstance(p, str) else p

def hash_password(plain: str) -> str:
    return pwd_context.hash(_sanitize_password(plain))

def verify_password(plain: str, password_hash: str) -> bool:
    return pwd_context.verify(_sanitize_password(plain), password_hash)


# === Auth Token ===
class TokenExpired(Exception):
    """簽章正確但 exp 已過期"""


class TokenInvalid(Exception):
    """簽章錯誤、格式錯誤或 payload 缺欄位"""


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)

def create_auth_token(user_id: str, login_session_id: str, expires_minutes: Optional[int] = None) -> str:
    """
    簽發 Auth Token，payload 內含 {user, loginSession}。
    exp 與 login session 的 validity_end_date 互相獨立。
    """
    now = _now_utc()
    claims = {
        "data": {"user": str(user_id), "loginSession": str(login_session_id)},
        "iat": int(now.timestamp()),
        "exp": now + timedelta(minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

def decode_auth_token(token: str) -> Dict[str, str]:
    """
    驗證並解出 {user, loginSession}。
    過期拋 TokenExpired；其他任何問題拋 TokenInvalid。
    """
    if not token:
        raise TokenInvalid("Missing token")
    try:
        claims: Dict[str, Any] = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as e:
        raise TokenExpired(str(e)) from e
    except JWTError as e:
        raise TokenInvalid(str(e)) from e

    data = claims.get("data")
    if not isinstance(data, dict) or not data.get("user") or not data.get("loginSession"):
        raise TokenInvalid("Invalid token payload")
    return {"user": str(data["user"]), "loginSession": str(data["loginSession"])}

def get_token_from_header(authorization: Optional[str]) -> str:
    """從 Authorization header 取出 bearer token；格式不符回空字串"""
    if not authorization:
        return ""
    parts = authorization.split(None, 1)
    if len(parts) > 1 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return ""
