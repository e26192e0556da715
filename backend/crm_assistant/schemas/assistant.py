from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class MessageKind(str, Enum):
    """How the chat surface should present an assistant message."""

    plain = "plain"
    ask = "ask"  # more input needed
    confirm = "confirm"  # awaiting yes/no before a write


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] | str = Field(default_factory=dict)


class Message(BaseModel):
    role: Literal["user", "assistant", "system", "tool"]
    content: str = ""
    kind: MessageKind = MessageKind.plain
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class AssistantContext(BaseModel):
    """Optional context about where the user is in the app."""

    mode: Literal["auto", "sales", "procurement", "partnership"] = "auto"
    scope: str | None = None  # "dashboard", "contacts", "companies", "deals"
    contact_id: int | None = None
    deal_id: int | None = None


class AssistantRequest(BaseModel):
    """Chat history as held by the chat surface."""

    messages: list[Message] = Field(min_length=1)
    context: AssistantContext | None = None


class CallerIdentity(BaseModel):
    """The authenticated user on whose behalf writes are made."""

    id: int
    email: str
    full_name: str | None = None
