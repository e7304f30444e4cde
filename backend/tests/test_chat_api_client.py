from __future__ import annotations

import json

import httpx
import pytest

from app.core.errors import (
    ChatApiConnectionError,
    ChatApiStatusError,
    ChatApiTimeoutError,
    ChatTransportError,
)
from app.models import ChannelRole
from app.monitoring.metrics import chat_api_errors_total
from app.services.chat_api import ChatApiClient

BASE_URL = "http://chat.test/api"


def _client(handler, **kwargs) -> ChatApiClient:
    return ChatApiClient(BASE_URL, token="secret", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.anyio("asyncio")
async def test_fetch_messages_reads_envelope_and_aliases():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": 1,
                        "channel_id": 7,
                        "content": "hi",
                        "created_at": "2024-05-01T12:00:00Z",
                        "profiles": {"id": 3, "username": "alice"},
                        "reactions": [{"emoji": "👍", "profile_id": 4}],
                    },
                    {
                        "id": 2,
                        "channel_id": 7,
                        "content": "reply",
                        "created_at": "2024-05-01T12:01:00",
                        "parent_id": 1,
                        "reactions": None,
                    },
                    {"content": "broken"},
                ]
            },
        )

    messages = await _client(handler).fetch_messages("7")

    assert [message.id for message in messages] == ["1", "2"]
    assert messages[0].author.username == "alice"
    assert messages[0].reactions[0].user_id == "4"
    assert messages[1].parent_message_id == "1"
    assert messages[1].reactions == []
    assert messages[1].created_at.tzinfo is not None
    assert seen[0].url.path == "/api/messages/channel/7"
    assert seen[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.anyio("asyncio")
async def test_send_message_posts_parent_reference():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(
            201,
            json={
                "id": "10",
                "channel_id": "7",
                "content": "hello",
                "created_at": "2024-05-01T12:00:00Z",
                "parent_message_id": "1",
            },
        )

    message = await _client(handler).send_message("7", "hello", parent_id="1")

    assert bodies == [{"content": "hello", "parent_message_id": "1"}]
    assert message.id == "10"
    assert message.parent_message_id == "1"


@pytest.mark.anyio("asyncio")
async def test_reaction_and_delete_requests_use_expected_routes():
    seen: list[tuple[str, str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.raw_path.decode(), request.url.query.decode()))
        return httpx.Response(204)

    client = _client(handler)
    await client.add_reaction("9", "👍")
    await client.remove_reaction("9", "👍")
    await client.delete_message("9", hard=True)
    await client.delete_message("9")

    assert seen[0][:2] == ("POST", "/api/messages/9/reactions")
    assert seen[1][0] == "DELETE"
    assert seen[1][1] == "/api/messages/9/reactions/%F0%9F%91%8D"
    assert seen[2] == ("DELETE", "/api/messages/9?hard=true", "hard=true")
    assert seen[3] == ("DELETE", "/api/messages/9", "")


@pytest.mark.anyio("asyncio")
async def test_fetch_member_role_maps_membership():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"user_id": "alice", "role": "moderator"},
                {"profile_id": "bob", "role": "owner-ish"},
            ],
        )

    client = _client(handler)

    assert await client.fetch_member_role("7", "alice") is ChannelRole.MODERATOR
    assert await client.fetch_member_role("7", "bob") is ChannelRole.MEMBER
    assert await client.fetch_member_role("7", "mallory") is None


@pytest.mark.anyio("asyncio")
async def test_status_errors_carry_detail_and_are_counted():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"detail": "Not a channel member"})

    with pytest.raises(ChatApiStatusError) as exc_info:
        await _client(handler).fetch_messages("7")

    assert exc_info.value.status_code == 403
    assert exc_info.value.operation == "fetch_messages"
    assert "Not a channel member" in str(exc_info.value)
    assert chat_api_errors_total.value("fetch_messages", "status") == 1


@pytest.mark.anyio("asyncio")
async def test_timeouts_and_connection_failures_are_distinguished():
    def timeout_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ChatApiTimeoutError):
        await _client(timeout_handler, timeout=0.5).send_message("7", "hi")
    with pytest.raises(ChatApiConnectionError):
        await _client(refused_handler).add_reaction("9", "👍")

    assert chat_api_errors_total.value("send_message", "timeout") == 1
    assert chat_api_errors_total.value("add_reaction", "connection") == 1


@pytest.mark.anyio("asyncio")
async def test_unexpected_payloads_raise_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(ChatTransportError):
        await _client(handler).fetch_messages("7")
    with pytest.raises(ChatTransportError):
        await _client(handler).update_message("9", "edited")
