# tests/test_webhook.py
import base64
import json
import uuid

import pytest
from httpx import AsyncClient

from mailgate.core.config import settings
from mailgate.services.gmail_service import gmail_token_repository

pytestmark = pytest.mark.asyncio

WEBHOOK = "/api/v1/webhooks/gmail"


def _push(email: str, history_id: str):
    data = base64.b64encode(json.dumps({"emailAddress": email, "historyId": history_id}).encode()).decode()
    return {"message": {"data": data, "messageId": "pubsub-1"}, "subscription": "projects/x/subscriptions/gmail"}


async def test_push_for_unknown_mailbox_is_ignored(client: AsyncClient, fake_google):
    r = await client.post(WEBHOOK, json=_push(f"nobody_{uuid.uuid4().hex}@gmail.com", "55"))
    assert r.status_code == 200
    assert r.json()["data"] == {"status": "ignored"}
    assert fake_google.requests == []


async def test_push_fetches_history_and_advances_history_id(client: AsyncClient, gmail_user, fake_google):
    mailbox = f"owner_{uuid.uuid4().hex[:8]}@gmail.com"
    _, _, token = await gmail_user(mailbox=mailbox, history_id="100")
    fake_google.route("GET", "/history", json={
        "history": [
            {"id": "101", "messagesAdded": [{"message": {"id": "m1", "threadId": "t1"}}]},
            {"id": "102", "messagesAdded": [{"message": {"id": "m2", "threadId": "t2"}}]},
        ],
        "historyId": "102",
    })

    r = await client.post(WEBHOOK, json=_push(mailbox.upper(), "102"))
    assert r.status_code == 200, r.text
    assert r.json()["data"] == {"status": "accepted", "messages_added": 2}

    params = fake_google.calls("GET", "/history")[0].url.params
    assert params["startHistoryId"] == "100"
    assert params["historyTypes"] == "messageAdded"

    stored = await gmail_token_repository.find_by_id(token.id)
    assert stored.history_id == "102"


async def test_push_without_previous_history_only_records_it(client: AsyncClient, gmail_user, fake_google):
    mailbox = f"fresh_{uuid.uuid4().hex[:8]}@gmail.com"
    _, _, token = await gmail_user(mailbox=mailbox)

    r = await client.post(WEBHOOK, json=_push(mailbox, "7"))
    assert r.json()["data"] == {"status": "accepted", "messages_added": 0}
    assert fake_google.calls("GET", "/history") == []
    assert (await gmail_token_repository.find_by_id(token.id)).history_id == "7"


async def test_out_of_order_push_keeps_newer_history_id(client: AsyncClient, gmail_user, fake_google):
    mailbox = f"late_{uuid.uuid4().hex[:8]}@gmail.com"
    _, _, token = await gmail_user(mailbox=mailbox, history_id="200")

    r = await client.post(WEBHOOK, json=_push(mailbox, "150"))
    assert r.status_code == 200, r.text
    assert r.json()["data"] == {"status": "accepted", "messages_added": 0}
    assert fake_google.calls("GET", "/history") == []
    assert (await gmail_token_repository.find_by_id(token.id)).history_id == "200"


@pytest.mark.parametrize("data", [
    "%%%not-base64%%%",
    base64.b64encode(b'{"historyId": "1"}').decode(),
    base64.b64encode(b'{"emailAddress": "a@gmail.com", "historyId": "abc"}').decode(),
])
async def test_undecodable_push_is_rejected(client: AsyncClient, data):
    r = await client.post(WEBHOOK, json={"message": {"data": data}})
    assert r.status_code == 400
    assert r.json()["error_code"] == 26


async def test_push_verification_token(client: AsyncClient, monkeypatch, fake_google):
    monkeypatch.setattr(settings, "PUBSUB_VERIFICATION_TOKEN", "s3cret")
    body = _push(f"nobody_{uuid.uuid4().hex}@gmail.com", "1")

    r = await client.post(WEBHOOK, json=body)
    assert r.status_code == 401
    assert r.json()["error_code"] == 11

    r = await client.post(WEBHOOK, params={"token": "wrong"}, json=body)
    assert r.status_code == 401

    r = await client.post(WEBHOOK, params={"token": "s3cret"}, json=body)
    assert r.status_code == 200
