"""Text extraction over polymorphic message content.

Content arrives as a plain string, a list of typed parts
(``{"type": "text", "text": ...}``, ``{"type": "link", "url": ...}``,
``{"type": "emoji", "emoji": ...}``) or a mapping carrying ``text``.
All helpers here are total: unrecognized shapes yield ``""``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from botchat.schemas.chat import ModelMessage, PersistedChatMessage

# part type → field holding its text
_PART_TEXT_FIELDS = {
    "text": "text",
    "link": "url",
    "emoji": "emoji",
}


def _part_text(part: Any) -> str:
    if not isinstance(part, dict):
        return ""
    part_type = str(part.get("type") or "").lower()
    field = _PART_TEXT_FIELDS.get(part_type)
    if field and isinstance(part.get(field), str):
        return part[field].strip()
    if isinstance(part.get("text"), str):
        return part["text"].strip()
    return ""


def extract_text_from_content(content: Any) -> str:
    """Return the trimmed text of *content*, joining list parts with newlines."""
    if isinstance(content, str):
        return content.strip()

    if isinstance(content, list):
        lines = [text for text in (_part_text(part) for part in content) if text]
        return "\n".join(lines).strip()

    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"].strip()

    return ""


def extract_assistant_texts(messages: Iterable[ModelMessage] | None) -> list[str]:
    """Non-empty texts of the assistant-authored *messages*, in order."""
    if not messages:
        return []
    outputs: list[str] = []
    for message in messages:
        if message.role != "assistant":
            continue
        text = extract_text_from_content(message.content)
        if text:
            outputs.append(text)
    return outputs


def extract_persisted_message_text(message: PersistedChatMessage) -> str:
    """Text of a stored message.

    The backend stores whole model messages, so ``content`` may be a
    JSON-encoded model message, a model message mapping, or bare content.
    """
    raw = message.content
    if not raw:
        return ""

    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return raw.strip()
        if isinstance(parsed, dict) and parsed.get("content") is not None:
            return extract_text_from_content(parsed["content"]).strip()
        if isinstance(parsed, (str, list, dict)):
            return extract_text_from_content(parsed).strip()
        # JSON scalars ("42", "true") are plain text that happens to parse
        return raw.strip()

    if isinstance(raw, dict) and raw.get("content") is not None:
        return extract_text_from_content(raw["content"]).strip()

    return extract_text_from_content(raw).strip()
