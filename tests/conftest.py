"""Shared fixtures: a FastAPI fake of the chat API and an in-memory adapter."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from botchat.adapters.base import ChatBackendAdapter
from botchat.adapters.http import HttpChatAdapter
from botchat.config import Settings
from botchat.schemas.chat import (
    Bot,
    ChatResponse,
    ChatSummary,
    ModelMessage,
    PersistedChatMessage,
)
from botchat.services.session_store import ChatSessionStore


def frame(payload: Any) -> bytes:
    """One ``data:`` line; non-string payloads are JSON-encoded."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {text}\n".encode()


def frames(*payloads: Any) -> bytes:
    return b"".join(frame(p) for p in payloads)


# ── FastAPI fake of the chat API ─────────────────────────────────────


class FakeChatApi:
    """In-memory chat API served over ASGI."""

    def __init__(self) -> None:
        self.bots: list[dict[str, Any]] = [{"id": "bot-1", "display_name": "Helper"}]
        self.chats: dict[str, list[dict[str, Any]]] = {"bot-1": []}
        self.messages: dict[str, list[dict[str, Any]]] = {}
        self.stream_chunks: list[bytes] = []
        self.stream_status = 200
        self.stream_error_body = ""
        self.requests: list[tuple[str, str, Any]] = []
        self.app = self._build_app()

    async def _record(self, request: Request) -> Any:
        body = await request.body()
        payload = json.loads(body) if body else None
        self.requests.append((request.method, request.url.path, payload))
        return payload

    def _build_app(self) -> FastAPI:
        app = FastAPI()

        @app.get("/bots")
        async def list_bots(request: Request):
            await self._record(request)
            return {"items": self.bots}

        @app.get("/bots/{bot_id}/chats")
        async def list_chats(bot_id: str, request: Request):
            await self._record(request)
            if bot_id not in self.chats:
                return PlainTextResponse("bot not found", status_code=404)
            return {"items": self.chats[bot_id]}

        @app.post("/bots/{bot_id}/chats", status_code=201)
        async def create_chat(bot_id: str, request: Request):
            payload = await self._record(request)
            chats = self.chats.setdefault(bot_id, [])
            chat = {
                "id": f"chat-{len(chats) + 1}",
                "bot_id": bot_id,
                "kind": payload["kind"],
                "access_mode": "participant",
            }
            chats.insert(0, chat)
            return chat

        @app.delete("/chats/{chat_id}")
        async def delete_chat(chat_id: str, request: Request):
            await self._record(request)
            for chats in self.chats.values():
                chats[:] = [c for c in chats if c["id"] != chat_id]
            return Response(status_code=204)

        @app.get("/chats/{chat_id}/messages")
        async def list_messages(chat_id: str, request: Request):
            await self._record(request)
            return {"items": self.messages.get(chat_id, [])}

        @app.post("/chats/{chat_id}/messages")
        async def send_message(chat_id: str, request: Request):
            payload = await self._record(request)
            return {
                "messages": [
                    {"role": "user", "content": payload["query"]},
                    {"role": "assistant", "content": [{"type": "text", "text": "pong"}]},
                ],
                "model": "test-model",
                "provider": "test",
            }

        @app.post("/chats/{chat_id}/messages/stream")
        async def stream_message(chat_id: str, request: Request):
            await self._record(request)
            if self.stream_status != 200:
                return PlainTextResponse(self.stream_error_body, status_code=self.stream_status)

            async def body() -> AsyncIterator[bytes]:
                for chunk in self.stream_chunks:
                    yield chunk

            return StreamingResponse(body(), media_type="text/event-stream")

        return app


@pytest.fixture
def api() -> FakeChatApi:
    return FakeChatApi()


@pytest.fixture
def chat_settings() -> Settings:
    return Settings(_env_file=None, api_base_url="http://test", bot_id=None, chat_id=None)


@pytest_asyncio.fixture
async def http_client(api: FakeChatApi) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=api.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def http_adapter(http_client: httpx.AsyncClient, chat_settings: Settings) -> HttpChatAdapter:
    return HttpChatAdapter(chat_settings, client=http_client)


# ── In-memory adapter for store tests ────────────────────────────────


class ScriptedAdapter(ChatBackendAdapter):
    """Adapter whose stream replays ``chunks`` and records every call.

    Set ``chats_gate`` to hold ``list_chats`` until the event is set;
    ``listing`` is set once a call is waiting on it.
    """

    def __init__(self) -> None:
        self.bots: list[Bot] = [Bot(id="bot-1", display_name="Helper")]
        self.chats: dict[str, list[ChatSummary]] = {"bot-1": []}
        self.messages: dict[str, list[PersistedChatMessage]] = {}
        self.chunks: list[bytes] = []
        self.stream_error: Exception | None = None
        self.bots_error: Exception | None = None
        self.after_chunk: Callable[[int], Awaitable[None]] | None = None
        self.stream_calls: list[tuple[str, str]] = []
        self.closed_streams: list[str] = []
        self.chats_gate: asyncio.Event | None = None
        self.listing = asyncio.Event()
        self.listed_bots: list[str] = []
        self.created: list[str] = []
        self.deleted: list[str] = []

    async def list_bots(self) -> list[Bot]:
        if self.bots_error:
            raise self.bots_error
        return list(self.bots)

    async def list_chats(self, bot_id: str) -> list[ChatSummary]:
        self.listed_bots.append(bot_id)
        if self.chats_gate is not None:
            self.listing.set()
            await self.chats_gate.wait()
        return list(self.chats.get(bot_id, []))

    async def create_chat(self, bot_id: str) -> ChatSummary:
        chat = ChatSummary(id=f"new-{len(self.created) + 1}", bot_id=bot_id)
        self.created.append(chat.id)
        self.chats.setdefault(bot_id, []).insert(0, chat)
        return chat

    async def delete_chat(self, chat_id: str) -> None:
        self.deleted.append(chat_id)
        for chats in self.chats.values():
            chats[:] = [c for c in chats if c.id != chat_id]

    async def list_messages(self, chat_id: str) -> list[PersistedChatMessage]:
        return list(self.messages.get(chat_id, []))

    async def send_message(self, chat_id: str, text: str) -> ChatResponse:
        return ChatResponse(messages=[ModelMessage(role="assistant", content=text)])

    async def stream_message(self, chat_id: str, text: str) -> AsyncGenerator[bytes, None]:
        self.stream_calls.append((chat_id, text))
        try:
            if self.stream_error:
                raise self.stream_error
            for index, chunk in enumerate(self.chunks):
                yield chunk
                if self.after_chunk:
                    await self.after_chunk(index)
        finally:
            self.closed_streams.append(chat_id)


@pytest.fixture
def adapter() -> ScriptedAdapter:
    scripted = ScriptedAdapter()
    scripted.chats["bot-1"] = [
        ChatSummary(id="chat-a", bot_id="bot-1", title="First"),
        ChatSummary(id="chat-b", bot_id="bot-1", title="Second"),
    ]
    scripted.messages["chat-b"] = [
        PersistedChatMessage(id="m1", chat_id="chat-b", bot_id="bot-1", role="user", content="earlier"),
    ]
    return scripted


@pytest_asyncio.fixture
async def store(adapter: ScriptedAdapter) -> ChatSessionStore:
    session = ChatSessionStore(adapter)
    await session.initialize()
    return session
