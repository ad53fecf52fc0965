"""Abstract base class for chat API adapters.

The session store only talks to the backend through this interface.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator

from botchat.schemas.chat import Bot, ChatResponse, ChatSummary, PersistedChatMessage


class ChatBackendAdapter(ABC):
    """Contract that any chat backend must satisfy."""

    @abstractmethod
    async def list_bots(self) -> list[Bot]:
        """Return the bots visible to the current user."""

    @abstractmethod
    async def list_chats(self, bot_id: str) -> list[ChatSummary]:
        """Return a bot's conversations, most recent first."""

    @abstractmethod
    async def create_chat(self, bot_id: str) -> ChatSummary:
        """Create a direct conversation with a bot."""

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        """Delete a conversation."""

    @abstractmethod
    async def list_messages(self, chat_id: str) -> list[PersistedChatMessage]:
        """Return the persisted messages of a conversation."""

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> ChatResponse:
        """Send a message and wait for the complete response."""

    @abstractmethod
    def stream_message(self, chat_id: str, text: str) -> AsyncGenerator[bytes, None]:
        """Send a message and yield the raw bytes of the streamed response.

        Transport failures are raised before the first chunk is yielded.
        Implementations are async generators; closing one abandons the stream.
        """

    async def aclose(self) -> None:
        """Release network resources."""
