"""Stream decoder — turn raw response bytes into classified chat events.

The server writes ``data: <payload>`` lines. Transport chunks are not aligned
to lines, so a carry-over buffer holds the trailing partial line between
chunks. Payloads are JSON (occasionally JSON-encoded twice) or, for older
servers, bare text. Nothing in here raises on bad input: unknown frames become
``Ignored`` and undecodable payloads are treated as text.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable, Awaitable, Callable
from typing import Any

from botchat.schemas.chat import ModelMessage
from botchat.schemas.events import AgentEnd, ChatEvent, Ignored, StreamError, TextDelta

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

# Servers sometimes JSON-encode an already encoded frame; unwrap at most twice.
_MAX_DECODE_ATTEMPTS = 2

_DEFAULT_ERROR_MESSAGE = "Stream error"


# ── Framing ──────────────────────────────────────────────────────────


class StreamLineBuffer:
    """Reassemble ``\\n``-delimited lines from arbitrarily split byte chunks."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add *chunk* and return every line it completed (trimmed)."""
        self._buffer += self._decoder.decode(chunk)
        lines: list[str] = []
        index = self._buffer.find("\n")
        while index >= 0:
            lines.append(self._buffer[:index].strip())
            self._buffer = self._buffer[index + 1:]
            index = self._buffer.find("\n")
        return lines

    def flush(self) -> str:
        """Return the trimmed unterminated remainder and reset."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer.strip(), ""
        return tail

    @property
    def pending(self) -> str:
        return self._buffer


def frame_payload(line: str) -> str | None:
    """Payload of a ``data:`` line, or None for any other line."""
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


# ── Payload classification ───────────────────────────────────────────


def parse_payload(payload: str) -> Any:
    """Decode a frame payload.

    Returns None when there is nothing to emit, the trimmed text when the
    payload is not JSON, or the decoded JSON value.
    """
    current: Any = payload
    for _ in range(_MAX_DECODE_ATTEMPTS):
        if not isinstance(current, str):
            break
        raw = current.strip()
        if not raw or raw == DONE_SENTINEL:
            return None
        try:
            current = json.loads(raw)
        except ValueError:
            return raw

    if isinstance(current, str):
        return current.strip()
    return current


def _agent_end(event: dict[str, Any]) -> AgentEnd:
    messages = [
        ModelMessage(
            role=item["role"] if isinstance(item.get("role"), str) else "",
            content=item.get("content"),
        )
        for item in event["messages"]
        if isinstance(item, dict)
    ]
    skills = event.get("skills")
    model = event.get("model")
    provider = event.get("provider")
    return AgentEnd(
        messages=messages,
        skills=[s for s in skills if isinstance(s, str)] if isinstance(skills, list) else None,
        model=model if isinstance(model, str) else None,
        provider=provider if isinstance(provider, str) else None,
    )


def classify_event(event: dict[str, Any]) -> ChatEvent:
    """Classify a decoded JSON object frame."""
    error = event.get("error")
    if isinstance(error, str) and error.strip():
        return StreamError(message=error)

    event_type = str(event.get("type") or "").lower()

    if event_type == "error":
        message = event.get("message")
        if not isinstance(message, str):
            message = error if isinstance(error, str) else _DEFAULT_ERROR_MESSAGE
        return StreamError(message=message)

    if event_type == "text_delta" and isinstance(event.get("delta"), str):
        return TextDelta(delta=event["delta"])

    if event_type == "agent_end" and isinstance(event.get("messages"), list):
        return _agent_end(event)

    return Ignored(raw=event)


def classify_payload(payload: str) -> ChatEvent | None:
    """Classify one frame payload; None means the frame carries no event."""
    value = parse_payload(payload)
    if value is None:
        return None
    if isinstance(value, str):
        # Legacy servers stream bare text
        return TextDelta(delta=value) if value else None
    if isinstance(value, dict):
        return classify_event(value)
    return Ignored(raw=value)


# ── Decoding loop ────────────────────────────────────────────────────


def _events_from_lines(lines: list[str]) -> list[ChatEvent]:
    events: list[ChatEvent] = []
    for line in lines:
        payload = frame_payload(line)
        if payload is None:
            continue
        event = classify_payload(payload)
        if event is None:
            continue
        if isinstance(event, Ignored):
            logger.debug("Ignoring stream frame: %.200s", payload)
        events.append(event)
    return events


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncGenerator[ChatEvent, None]:
    """Yield chat events from a byte stream as chunks arrive."""
    buffer = StreamLineBuffer()
    async for chunk in chunks:
        if not chunk:
            continue
        for event in _events_from_lines(buffer.feed(chunk)):
            yield event

    tail = buffer.flush()
    if tail:
        for event in _events_from_lines([tail]):
            yield event


async def decode(
    chunks: AsyncIterable[bytes],
    on_event: Callable[[ChatEvent], Awaitable[None] | None],
) -> None:
    """Feed every decoded event to *on_event* (sync or async callback)."""
    async for event in decode_stream(chunks):
        result = on_event(event)
        if result is not None:
            await result
