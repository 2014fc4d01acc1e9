# mailgate/api/v1/router.py
from fastapi import APIRouter

# 匯入所有已定義的 endpoint 模組
from .endpoints import account, auth, emails, health, webhooks

# === API v1 主路由 ===
api_router = APIRouter()

# 系統健康檢查
api_router.include_router(health.router, prefix="/health", tags=["health"])

# 公開路由：註冊 / 登入
api_router.include_router(auth.router, prefix="/public")

# 需登入：個人資料、登出、改密碼、session 列表
api_router.include_router(account.router)

# Gmail 代理
api_router.include_router(emails.router, prefix="/emails")

# Pub/Sub push（公開，靠 verification token 保護）
api_router.include_router(webhooks.router, prefix="/webhooks")
