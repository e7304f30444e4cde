"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_registry
from app.main import app
from app.models import ChannelRole
from app.monitoring.registry import registry as metrics_registry
from app.schemas import Message
from app.services.sessions import ViewRegistry
from murmur.realtime import LocalPushSource

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
CHANNEL_ID = "general"


def make_message(
    message_id: str,
    parent: str | None = None,
    t: int = 0,
    *,
    channel_id: str = CHANNEL_ID,
    user_id: str = "alice",
    **extra: Any,
) -> Message:
    """Build a message created ``t`` seconds after a fixed base time."""

    return Message(
        id=message_id,
        channel_id=channel_id,
        user_id=user_id,
        content=extra.pop("content", f"message {message_id}"),
        created_at=BASE_TIME + timedelta(seconds=t),
        parent_message_id=parent,
        **extra,
    )


class DummyChatApi:
    """In-memory stand-in for :class:`app.services.chat_api.ChatApiClient`."""

    def __init__(
        self,
        messages: list[Message] | None = None,
        *,
        roles: dict[str, ChannelRole] | None = None,
    ) -> None:
        self.messages: list[Message] = list(messages or [])
        self.roles = dict(roles if roles is not None else {"alice": ChannelRole.MEMBER})
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail_with: BaseException | None = None
        self.release: asyncio.Event | None = None
        self._next_id = 1000

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.release is not None:
            await self.release.wait()
        if self.fail_with is not None:
            raise self.fail_with

    def _find(self, message_id: str) -> Message | None:
        return next((message for message in self.messages if message.id == message_id), None)

    async def fetch_messages(self, channel_id: str) -> list[Message]:
        await self._enter("fetch_messages", channel_id)
        return [message.model_copy(deep=True) for message in self.messages]

    async def fetch_member_role(self, channel_id: str, user_id: str) -> ChannelRole | None:
        await self._enter("fetch_member_role", channel_id, user_id)
        return self.roles.get(user_id)

    async def send_message(
        self, channel_id: str, content: str, *, parent_id: str | None = None
    ) -> Message:
        await self._enter("send_message", channel_id, content, parent_id)
        self._next_id += 1
        message = make_message(
            str(self._next_id),
            parent_id,
            t=self._next_id,
            channel_id=channel_id,
            content=content,
        )
        self.messages.append(message)
        return message.model_copy(deep=True)

    async def update_message(self, message_id: str, content: str) -> Message:
        await self._enter("update_message", message_id, content)
        message = self._find(message_id)
        assert message is not None
        message.content = content
        message.is_edited = True
        message.updated_at = BASE_TIME + timedelta(hours=1)
        return message.model_copy(deep=True)

    async def delete_message(self, message_id: str, *, hard: bool = False) -> None:
        await self._enter("delete_message", message_id, hard)

    async def add_reaction(self, message_id: str, emoji: str) -> None:
        await self._enter("add_reaction", message_id, emoji)

    async def remove_reaction(self, message_id: str, emoji: str) -> None:
        await self._enter("remove_reaction", message_id, emoji)

    def called(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    for metric in metrics_registry._metrics.values():
        metric._samples.clear()
    yield
    for metric in metrics_registry._metrics.values():
        metric._samples.clear()


@pytest.fixture()
def message_factory() -> Callable[..., Message]:
    return make_message


@pytest.fixture()
def chat_api() -> DummyChatApi:
    return DummyChatApi(
        [
            make_message("1", t=1),
            make_message("2", "1", t=2, user_id="bob"),
            make_message("3", t=3, user_id="bob"),
        ]
    )


@pytest.fixture()
def client(chat_api: DummyChatApi) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient whose views talk to ``chat_api``."""

    push = LocalPushSource()
    views = ViewRegistry(push, api_factory=lambda token: chat_api)

    app.dependency_overrides[get_registry] = lambda: views
    with TestClient(app) as test_client:
        test_client.portal.call(push.connect)
        test_client.views = views  # type: ignore[attr-defined]
        test_client.push = push  # type: ignore[attr-defined]
        yield test_client
        test_client.portal.call(views.close_all)
    app.dependency_overrides.clear()
