"""HTTP client for the chat server's REST API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from app.config import get_settings
from app.core.errors import (
    ChatApiConnectionError,
    ChatApiStatusError,
    ChatApiTimeoutError,
    ChatTransportError,
)
from app.models.enums import ChannelRole
from app.monitoring.metrics import chat_api_errors_total
from app.schemas.messages import Message


logger = logging.getLogger(__name__)


def _unwrap(payload: Any) -> Any:
    """Accept both bare payloads and the ``{"data": ...}`` envelope."""

    if isinstance(payload, dict) and "data" in payload and "id" not in payload:
        return payload["data"]
    return payload


class ChatApiClient:
    """Fetch, send and react through the chat server on behalf of one viewer."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.chat_api_base_url).rstrip("/")
        self.token = token or settings.chat_api_token
        self.timeout = timeout if timeout is not None else settings.chat_api_timeout_seconds
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, json=json, params=params, headers=self._get_headers()
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            chat_api_errors_total.labels(operation, "timeout").inc()
            raise ChatApiTimeoutError(operation, self.timeout) from exc
        except httpx.HTTPStatusError as exc:
            chat_api_errors_total.labels(operation, "status").inc()
            detail = self._extract_detail(exc.response)
            raise ChatApiStatusError(operation, exc.response.status_code, detail) from exc
        except httpx.HTTPError as exc:
            chat_api_errors_total.labels(operation, "connection").inc()
            raise ChatApiConnectionError(operation, str(exc) or exc.__class__.__name__) from exc

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            chat_api_errors_total.labels(operation, "decode").inc()
            raise ChatTransportError(operation, "response is not valid JSON") from exc

    @staticmethod
    def _extract_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("error") or body)
        return str(body)

    @staticmethod
    def _parse_message(operation: str, payload: Any) -> Message:
        try:
            return Message.model_validate(_unwrap(payload))
        except ValidationError as exc:
            chat_api_errors_total.labels(operation, "decode").inc()
            raise ChatTransportError(operation, "unexpected message payload") from exc

    async def fetch_messages(self, channel_id: str) -> list[Message]:
        """Return every visible message of ``channel_id``."""

        payload = _unwrap(
            await self._request("fetch_messages", "GET", f"/messages/channel/{quote(channel_id)}")
        )
        if not isinstance(payload, list):
            raise ChatTransportError("fetch_messages", "expected a list of messages")
        messages: list[Message] = []
        for item in payload:
            try:
                messages.append(Message.model_validate(item))
            except ValidationError:
                logger.warning(
                    "Skipping malformed message in channel batch",
                    extra={"channel_id": channel_id},
                )
        logger.debug(
            "Fetched channel batch", extra={"channel_id": channel_id, "count": len(messages)}
        )
        return messages

    async def send_message(
        self, channel_id: str, content: str, *, parent_id: str | None = None
    ) -> Message:
        body: dict[str, Any] = {"content": content}
        if parent_id is not None:
            body["parent_message_id"] = parent_id
        payload = await self._request(
            "send_message", "POST", f"/messages/channel/{quote(channel_id)}", json=body
        )
        return self._parse_message("send_message", payload)

    async def update_message(self, message_id: str, content: str) -> Message:
        payload = await self._request(
            "update_message", "PATCH", f"/messages/{quote(message_id)}", json={"content": content}
        )
        return self._parse_message("update_message", payload)

    async def delete_message(self, message_id: str, *, hard: bool = False) -> None:
        await self._request(
            "delete_message",
            "DELETE",
            f"/messages/{quote(message_id)}",
            params={"hard": "true"} if hard else None,
        )

    async def add_reaction(self, message_id: str, emoji: str) -> None:
        await self._request(
            "add_reaction", "POST", f"/messages/{quote(message_id)}/reactions", json={"emoji": emoji}
        )

    async def remove_reaction(self, message_id: str, emoji: str) -> None:
        await self._request(
            "remove_reaction",
            "DELETE",
            f"/messages/{quote(message_id)}/reactions/{quote(emoji, safe='')}",
        )

    async def fetch_member_role(self, channel_id: str, user_id: str) -> ChannelRole | None:
        """Return ``user_id``'s role in the channel, or None for non-members."""

        payload = _unwrap(
            await self._request("fetch_members", "GET", f"/channels/{quote(channel_id)}/members")
        )
        for member in payload or []:
            member_id = member.get("user_id") or member.get("profile_id")
            if str(member_id) != user_id:
                continue
            try:
                return ChannelRole(member.get("role", ChannelRole.MEMBER.value))
            except ValueError:
                logger.warning(
                    "Unknown channel role; treating as member",
                    extra={"channel_id": channel_id, "role": member.get("role")},
                )
                return ChannelRole.MEMBER
        return None
