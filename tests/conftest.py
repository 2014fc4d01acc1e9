# tests/conftest.py
import asyncio
import os
import uuid

import pytest
import pytest_asyncio
import httpx
from httpx import AsyncClient, ASGITransport

# ---- 測試期環境變數（先於 app 載入）----
os.environ.setdefault("ENV", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-0123456789")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_TOPIC_NAME", "projects/mailgate-test/topics/gmail")

from mailgate.main import app  # noqa: E402
from mailgate.db.session import engine  # noqa: E402
from mailgate.db.base import Base  # noqa: E402
from mailgate.services import gmail_service  # noqa: E402

metadata = Base.metadata


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    """測試前自動 create_all，測試後 drop_all（用 asyncio.run 避免事件圈衝突）。"""
    async def init_models():
        async with engine.begin() as conn:
            # 上次中斷留下的 test.db 先清掉
            await conn.run_sync(metadata.drop_all)
            await conn.run_sync(metadata.create_all)
        await engine.dispose()

    async def drop_models():
        async with engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)
        await engine.dispose()

    asyncio.run(init_models())
    yield
    asyncio.run(drop_models())


@pytest_asyncio.fixture
async def client():
    """使用 ASGITransport 直接掛載 app，不需啟動伺服器；500 由錯誤處理器轉成 JSON。"""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


def new_signup_body(password: str = "MyStrongPass1", **overrides):
    """每次產生不重複的 email / phone，測試之間互不影響"""
    suffix = uuid.uuid4().hex[:12]
    body = {
        "first_name": "Ada",
        "last_name": "Obi",
        "email": f"user_{suffix}@example.com",
        "phone": "080" + str(uuid.uuid4().int)[:8],
        "gender": "female",
        "new_password": password,
        "confirm_password": password,
    }
    body.update(overrides)
    return body


@pytest.fixture
def signup(client: AsyncClient):
    """註冊一個新使用者，回傳 (request body, response data)"""
    async def _signup(password: str = "MyStrongPass1", **overrides):
        body = new_signup_body(password, **overrides)
        r = await client.post("/api/v1/public/signup", json=body)
        assert r.status_code == 200, r.text
        return body, r.json()["data"]

    return _signup

@pytest.fixture
def signup_body():
    """回傳產生註冊 body 的函式"""
    return new_signup_body


# ---- Google / Gmail 假伺服器 ----
GMAIL_PREFIX = "/gmail/v1/users/me"
NOT_FOUND = {"error": {"code": 404, "message": "Requested entity was not found.", "status": "NOT_FOUND"}}


class FakeGoogle:
    """以 httpx.MockTransport 模擬 OAuth 與 Gmail API，並記錄所有請求"""

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.token_status = 200
        self.token_body = {
            "access_token": "access-token",
            "refresh_token": "refresh-token-new",
            "scope": "https://www.googleapis.com/auth/gmail.modify https://www.googleapis.com/auth/gmail.labels",
        }

    def route(self, method: str, path: str, status: int = 200, json=None):
        self.routes[(method, path)] = (status, json)

    def calls(self, method: str, path: str):
        return [r for r in self.requests if r.method == method and r.url.path == GMAIL_PREFIX + path]

    def token_calls(self):
        return [r for r in self.requests if r.url.host == "oauth2.googleapis.com" and r.url.path == "/token"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            if request.url.path == "/token":
                return httpx.Response(self.token_status, json=self.token_body)
            return httpx.Response(200)

        key = (request.method, request.url.path[len(GMAIL_PREFIX):])
        status, body = self.routes.get(key, (404, NOT_FOUND))
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


@pytest.fixture
def fake_google(monkeypatch):
    fake = FakeGoogle()
    monkeypatch.setattr(
        gmail_service, "build_http_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    )
    return fake


@pytest.fixture
def gmail_user(signup):
    """已註冊且已授權 Gmail 的使用者，回傳 (auth headers, user data, GmailToken)"""
    async def _gmail_user(mailbox: str = None, history_id: str = None):
        body, data = await signup()
        token = await gmail_service.gmail_token_repository.save({
            "user_id": data["user"]["id"],
            "email": (mailbox or body["email"]).lower(),
            "token": "refresh-token-" + uuid.uuid4().hex,
            "scope": ["https://www.googleapis.com/auth/gmail.modify"],
            "is_active": True,
            "history_id": history_id,
        })
        return {"Authorization": f"Bearer {data['token']}"}, data, token

    return _gmail_user
