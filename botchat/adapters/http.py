"""HTTP adapter for the bot chat REST API.

Implements the directory calls (bots, chats, persisted messages) as plain
request/response and the message stream as a chunked POST whose body is
consumed incrementally.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from botchat.adapters.base import ChatBackendAdapter
from botchat.config import Settings, settings as default_settings
from botchat.errors import TransportError
from botchat.schemas.chat import Bot, ChatResponse, ChatSummary, PersistedChatMessage

logger = logging.getLogger(__name__)


class HttpChatAdapter(ChatBackendAdapter):
    """httpx client for the chat API."""

    def __init__(
        self,
        config: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = config or default_settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.api_base_url,
            headers=self._settings.auth_headers,
            timeout=httpx.Timeout(self._settings.request_timeout),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Core protocol ────────────────────────────────────────────────

    async def _request(self, method: str, path: str, json: dict | None = None) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            message = response.text.strip()
            raise TransportError(
                message or f"Request failed: {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    def _message_body(self, text: str) -> dict[str, Any]:
        return {
            "query": text,
            "current_channel": self._settings.channel,
            "channels": [self._settings.channel],
        }

    # ── Directory ────────────────────────────────────────────────────

    async def list_bots(self) -> list[Bot]:
        data = await self._request("GET", "/bots") or {}
        return [Bot.model_validate(item) for item in data.get("items") or []]

    async def list_chats(self, bot_id: str) -> list[ChatSummary]:
        data = await self._request("GET", f"/bots/{bot_id}/chats") or {}
        return [ChatSummary.model_validate(item) for item in data.get("items") or []]

    async def create_chat(self, bot_id: str) -> ChatSummary:
        data = await self._request("POST", f"/bots/{bot_id}/chats", json={"kind": "direct"}) or {}
        logger.info("Created chat %s for bot %s", data.get("id"), bot_id)
        return ChatSummary.model_validate(data)

    async def delete_chat(self, chat_id: str) -> None:
        await self._request("DELETE", f"/chats/{chat_id}")
        logger.info("Deleted chat %s", chat_id)

    async def list_messages(self, chat_id: str) -> list[PersistedChatMessage]:
        data = await self._request("GET", f"/chats/{chat_id}/messages") or {}
        return [PersistedChatMessage.model_validate(item) for item in data.get("items") or []]

    # ── Messaging ────────────────────────────────────────────────────

    async def send_message(self, chat_id: str, text: str) -> ChatResponse:
        data = await self._request("POST", f"/chats/{chat_id}/messages", json=self._message_body(text))
        return ChatResponse.model_validate(data or {})

    async def stream_message(self, chat_id: str, text: str) -> AsyncGenerator[bytes, None]:
        path = f"/chats/{chat_id}/messages/stream"
        timeout = httpx.Timeout(self._settings.request_timeout, read=self._settings.stream_timeout)
        try:
            async with self._client.stream(
                "POST", path, json=self._message_body(text), timeout=timeout,
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode(errors="replace").strip()
                    raise TransportError(
                        body or f"Stream request failed: {response.status_code}",
                        status_code=response.status_code,
                    )
                logger.debug("Stream opened for chat %s", chat_id)
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(f"Stream request failed: {exc}") from exc
