"""Events classified from the chat completion stream."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from botchat.schemas.chat import ModelMessage


class TextDelta(BaseModel):
    """Incremental text fragment of the in-progress assistant message."""

    model_config = {"frozen": True}

    kind: Literal["text_delta"] = "text_delta"
    delta: str


class AgentEnd(BaseModel):
    """Terminal aggregate: the server's final view of the message list."""

    model_config = {"frozen": True}

    kind: Literal["agent_end"] = "agent_end"
    messages: list[ModelMessage] = Field(default_factory=list)
    skills: list[str] | None = None
    model: str | None = None
    provider: str | None = None


class StreamError(BaseModel):
    """Failure reported by the server inside the stream."""

    model_config = {"frozen": True}

    kind: Literal["error"] = "error"
    message: str


class Ignored(BaseModel):
    """A frame of an unknown or irrelevant kind."""

    model_config = {"frozen": True}

    kind: Literal["ignored"] = "ignored"
    raw: Any = None


ChatEvent = Annotated[
    Union[TextDelta, AgentEnd, StreamError, Ignored],
    Field(discriminator="kind"),
]
