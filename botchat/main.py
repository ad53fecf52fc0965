"""Application wiring — logging setup and session factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from botchat.adapters.base import ChatBackendAdapter
from botchat.adapters.http import HttpChatAdapter
from botchat.config import Settings, settings
from botchat.services.session_store import ChatSessionStore

logger = logging.getLogger(__name__)


def setup_logging(level: str | None = None) -> None:
    """Configure root logging at ``level``, or BOTCHAT_LOG_LEVEL via settings."""
    log_level = (level or settings.log_level).upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # Frame-level tracing is only useful while debugging a server
    if log_level != "DEBUG":
        logging.getLogger("botchat.services.stream_decoder").setLevel(logging.INFO)


def create_store(
    config: Settings | None = None, adapter: ChatBackendAdapter | None = None,
) -> ChatSessionStore:
    """Build a session store talking to the configured chat API."""
    config = config or settings
    return ChatSessionStore(
        adapter or HttpChatAdapter(config),
        bot_id=config.bot_id,
        chat_id=config.chat_id,
    )


@asynccontextmanager
async def open_session(
    config: Settings | None = None, adapter: ChatBackendAdapter | None = None,
) -> AsyncIterator[ChatSessionStore]:
    """Initialized session store whose adapter is closed on exit."""
    config = config or settings
    adapter = adapter or HttpChatAdapter(config)
    store = create_store(config, adapter)
    try:
        await store.initialize()
        logger.info("Session ready (bot %s, chat %s)", store.bot_id, store.chat_id)
        yield store
    finally:
        await adapter.aclose()
