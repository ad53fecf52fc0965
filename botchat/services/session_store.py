"""Conversation session store — the state a chat UI binds to.

Owns the bot and conversation lists, the active conversation and its message
list, and drives a send through the stream decoder:

    user message (complete) → assistant placeholder (thinking)
        → deltas (generating) → complete

The placeholder keeps its id for the whole send so bindings never re-key.
Every update looks the placeholder up in the live message list, so events
arriving after the user switched conversation are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime, timezone

from botchat.adapters.base import ChatBackendAdapter
from botchat.errors import (
    BotNotReadyError,
    ChatError,
    EmptyMessageError,
    ProtocolError,
    ReadOnlyChatError,
)
from botchat.schemas.chat import (
    AccessMode,
    Author,
    Bot,
    ChatMessage,
    ChatSummary,
    MessageState,
    PersistedChatMessage,
    new_message_id,
)
from botchat.schemas.events import AgentEnd, StreamError, TextDelta
from botchat.services.stream_decoder import decode_stream
from botchat.utils.content import extract_assistant_texts, extract_persisted_message_text

logger = logging.getLogger(__name__)

NO_CONTENT_TEXT = "No textual response."
FAILURE_PREFIX = "Failed to send message"
DEFAULT_ASSISTANT_LABEL = "Assistant"


class ChatSessionStore:
    """Session state for one user talking to one bot at a time."""

    def __init__(
        self,
        adapter: ChatBackendAdapter,
        *,
        bot_id: str | None = None,
        chat_id: str | None = None,
        no_content_text: str = NO_CONTENT_TEXT,
    ) -> None:
        self._adapter = adapter
        self._no_content_text = no_content_text

        self.bots: list[Bot] = []
        self.chats: list[ChatSummary] = []  # most recent first
        self.messages: list[ChatMessage] = []  # active conversation
        self.bot_id = bot_id
        self.chat_id = chat_id

        self.sending = False
        self.loading_chats = False
        self.initializing = False

    # ── Derived state ────────────────────────────────────────────────

    @property
    def active_chat(self) -> ChatSummary | None:
        return next((c for c in self.chats if c.id == self.chat_id), None)

    @property
    def active_chat_read_only(self) -> bool:
        chat = self.active_chat
        return chat is not None and chat.access_mode == AccessMode.OBSERVED

    @property
    def participant_chats(self) -> list[ChatSummary]:
        return [c for c in self.chats if c.access_mode == AccessMode.PARTICIPANT]

    @property
    def observed_chats(self) -> list[ChatSummary]:
        return [c for c in self.chats if c.access_mode == AccessMode.OBSERVED]

    # ── Message list helpers ─────────────────────────────────────────

    def _bot_label(self, bot_id: str | None = None) -> str:
        target = bot_id or self.bot_id
        if not target:
            return DEFAULT_ASSISTANT_LABEL
        bot = next((b for b in self.bots if b.id == target), None)
        return bot.label if bot else target

    def _replace_messages(self, items: list[ChatMessage]) -> None:
        # In place, so holders of the list see the new conversation
        self.messages[:] = items

    def _find_message(self, message_id: str) -> ChatMessage | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def _add_user_message(self, text: str) -> ChatMessage:
        message = ChatMessage(author=Author.USER, text=text)
        self.messages.append(message)
        return message

    def _add_assistant_message(
        self, text: str, state: MessageState = MessageState.COMPLETE
    ) -> ChatMessage:
        message = ChatMessage(
            author=Author.ASSISTANT, text=text, state=state, label=self._bot_label(),
        )
        self.messages.append(message)
        return message

    def _update_message(
        self,
        message_id: str,
        *,
        text: str | None = None,
        state: MessageState | None = None,
    ) -> bool:
        """Mutate a live, not yet complete message. Returns False if skipped."""
        target = self._find_message(message_id)
        if target is None:
            logger.debug("Message %s left the active conversation, dropping update", message_id)
            return False
        if target.is_complete:
            return False
        if text is not None:
            target.text = text
        if state is not None:
            target.state = state
        return True

    def _to_chat_message(self, raw: PersistedChatMessage) -> ChatMessage | None:
        if raw.role not in (Author.USER, Author.ASSISTANT):
            return None
        text = extract_persisted_message_text(raw)
        if not text:
            return None

        created_at = datetime.now(timezone.utc)
        if raw.created_at:
            try:
                created_at = datetime.fromisoformat(raw.created_at)
            except ValueError:
                pass

        message_id = raw.id or new_message_id()
        if raw.role == Author.USER:
            return ChatMessage(id=message_id, author=Author.USER, text=text, created_at=created_at)
        return ChatMessage(
            id=message_id,
            author=Author.ASSISTANT,
            text=text,
            created_at=created_at,
            label=self._bot_label(raw.bot_id),
        )

    async def _load_messages(self, chat_id: str) -> None:
        rows = await self._adapter.list_messages(chat_id)
        if self.chat_id != chat_id:
            # Another conversation was selected while loading
            return
        items = [m for m in map(self._to_chat_message, rows) if m is not None]
        self._replace_messages(items)

    def _adopt_chat(self, chat: ChatSummary) -> None:
        self.chats = [chat, *(c for c in self.chats if c.id != chat.id)]
        self.chat_id = chat.id
        self._replace_messages([])

    def _clear_view(self) -> None:
        self.chat_id = None
        self._replace_messages([])

    # ── Bots & conversations ─────────────────────────────────────────

    async def ensure_bot(self) -> str | None:
        """Resolve the bot to talk to: the current one if still listed, else the first."""
        try:
            bots = await self._adapter.list_bots()
        except ChatError:
            logger.warning("Failed to fetch bots, keeping bot %s", self.bot_id, exc_info=True)
            return self.bot_id

        self.bots = bots
        if not bots:
            self.bot_id = None
            return None
        if self.bot_id and any(b.id == self.bot_id for b in bots):
            return self.bot_id
        self.bot_id = bots[0].id
        return self.bot_id

    async def initialize(self) -> None:
        """Load the conversations of the current bot and open the active one.

        A bot switch while this is in flight restarts the load for the newly
        selected bot instead of publishing the old bot's conversations.
        """
        if self.initializing:
            return

        self.initializing = True
        self.loading_chats = True
        try:
            while True:
                bot_id = await self.ensure_bot()
                if not bot_id:
                    self.chats = []
                    self._clear_view()
                    return

                chats = await self._adapter.list_chats(bot_id)
                if self.bot_id != bot_id:
                    logger.debug("Bot changed to %s while loading chats, reloading", self.bot_id)
                    continue

                self.chats = chats
                if not chats:
                    self._clear_view()
                    return

                if self.chat_id and any(c.id == self.chat_id for c in chats):
                    active_id = self.chat_id
                else:
                    active_id = chats[0].id
                self.chat_id = active_id
                await self._load_messages(active_id)
                if self.bot_id != bot_id:
                    logger.debug("Bot changed to %s while loading messages, reloading", self.bot_id)
                    continue

                logger.info("Loaded %d chats for bot %s (active %s)", len(chats), bot_id, active_id)
                return
        finally:
            self.loading_chats = False
            self.initializing = False

    async def select_bot(self, bot_id: str) -> None:
        if self.bot_id == bot_id:
            return
        self.bot_id = bot_id
        self.chat_id = None
        await self.initialize()

    async def select_conversation(self, chat_id: str) -> None:
        next_id = chat_id.strip()
        if not next_id or next_id == self.chat_id:
            return

        self.chat_id = next_id
        self.loading_chats = True
        try:
            await self._load_messages(next_id)
        finally:
            self.loading_chats = False

    async def create_conversation(self) -> ChatSummary | None:
        """Create a conversation for the current bot and make it active."""
        self.loading_chats = True
        try:
            bot_id = await self.ensure_bot()
            if not bot_id:
                logger.warning("No bot available, cannot create a conversation")
                return None
            created = await self._adapter.create_chat(bot_id)
            self._adopt_chat(created)
            return created
        finally:
            self.loading_chats = False

    async def remove_conversation(self, chat_id: str) -> None:
        deleting_id = chat_id.strip()
        if not deleting_id:
            return

        self.loading_chats = True
        try:
            await self._adapter.delete_chat(deleting_id)
            remaining = [c for c in self.chats if c.id != deleting_id]
            self.chats = remaining

            if self.chat_id != deleting_id:
                return
            if not remaining:
                self._clear_view()
                return

            self.chat_id = remaining[0].id
            await self._load_messages(remaining[0].id)
        finally:
            self.loading_chats = False

    def touch_conversation(self, chat_id: str) -> None:
        """Move a conversation to the front of the list and refresh updated_at."""
        index = next((i for i, c in enumerate(self.chats) if c.id == chat_id), -1)
        if index < 0:
            return
        chat = self.chats.pop(index)
        chat.updated_at = datetime.now(timezone.utc)
        self.chats.insert(0, chat)

    async def _ensure_active_chat(self) -> str:
        if self.chat_id:
            return self.chat_id
        bot_id = self.bot_id or await self.ensure_bot()
        if not bot_id:
            raise BotNotReadyError()
        created = await self._adapter.create_chat(bot_id)
        self._adopt_chat(created)
        return created.id

    # ── Sending ──────────────────────────────────────────────────────

    async def _stream_reply(
        self, chat_id: str, text: str, target_id: str
    ) -> tuple[str, AgentEnd | None]:
        """Apply stream events to the target message.

        Returns the accumulated delta text and the last aggregate seen.
        """
        streamed = ""
        final: AgentEnd | None = None

        async with (
            aclosing(self._adapter.stream_message(chat_id, text)) as chunks,
            aclosing(decode_stream(chunks)) as events,
        ):
            async for event in events:
                if isinstance(event, TextDelta):
                    if not event.delta:
                        continue
                    streamed += event.delta
                    self._update_message(target_id, text=streamed, state=MessageState.GENERATING)
                elif isinstance(event, StreamError):
                    raise ProtocolError(event.message)
                elif isinstance(event, AgentEnd):
                    final = event
                # Ignored frames carry nothing for the conversation

        return streamed, final

    def _finalize_reply(self, target_id: str, streamed: str, final: AgentEnd | None) -> None:
        text = streamed.strip()
        if text:
            self._update_message(target_id, text=text, state=MessageState.COMPLETE)
            return

        texts = extract_assistant_texts(final.messages if final else None)
        if not texts:
            self._update_message(target_id, text=self._no_content_text, state=MessageState.COMPLETE)
            return

        if not self._update_message(target_id, text=texts[0], state=MessageState.COMPLETE):
            return
        for extra in texts[1:]:
            self._add_assistant_message(extra)

    async def send_message(self, text: str) -> ChatMessage | None:
        """Send *text* to the active conversation and stream the reply into it.

        Returns the finalized assistant message, or None when a send is
        already in flight. Failures are written into the placeholder (when
        one exists) and re-raised.
        """
        trimmed = text.strip()
        if not trimmed:
            raise EmptyMessageError()
        if self.sending:
            logger.debug("Send already in progress, ignoring")
            return None

        self.sending = True
        chat_id: str | None = None
        target: ChatMessage | None = None
        try:
            chat_id = await self._ensure_active_chat()
            if self.active_chat_read_only:
                raise ReadOnlyChatError()

            self._add_user_message(trimmed)
            target = self._add_assistant_message("", MessageState.THINKING)

            streamed, final = await self._stream_reply(chat_id, trimmed, target.id)
            self._finalize_reply(target.id, streamed, final)
            self.touch_conversation(chat_id)
            return target
        except asyncio.CancelledError:
            if target is not None:
                self._update_message(
                    target.id,
                    text=target.text or f"{FAILURE_PREFIX}: cancelled",
                    state=MessageState.COMPLETE,
                )
            raise
        except Exception as exc:
            reason = str(exc) or "Unknown error"
            logger.warning("Failed to send message to chat %s: %s", chat_id, reason)
            if target is not None:
                self._update_message(
                    target.id, text=f"{FAILURE_PREFIX}: {reason}", state=MessageState.COMPLETE,
                )
            raise
        finally:
            self.sending = False
