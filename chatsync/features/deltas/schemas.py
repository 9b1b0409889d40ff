from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

DeltaSource = Literal["chat", "channel"]
AckCallback = Callable[[Any], None]

GUARDED_CONVERSATION_FIELDS = ("title", "pinned", "archived", "folder_id")

# Events that carry a bare value as ``data``, wrapped under this key.
BARE_VALUE_PAYLOAD_KEYS = {"chat:title": "title", "chat:tags": "tags"}


@dataclass(frozen=True)
class ConversationDeltaRequest:
    """Binding parameters for one socket subscription."""

    source: DeltaSource
    conversation_id: str | None = None
    session_id: str | None = None
    require_focus: bool = True

    @classmethod
    def chat(
        cls,
        *,
        conversation_id: str | None = None,
        session_id: str | None = None,
        require_focus: bool = True,
    ) -> ConversationDeltaRequest:
        return cls("chat", conversation_id, session_id, require_focus)

    @classmethod
    def channel(
        cls,
        *,
        conversation_id: str | None = None,
        session_id: str | None = None,
        require_focus: bool = True,
    ) -> ConversationDeltaRequest:
        return cls("channel", conversation_id, session_id, require_focus)


@dataclass(frozen=True)
class ConversationDelta:
    source: DeltaSource
    raw: Mapping[str, Any]
    type: str | None = None
    payload: Mapping[str, Any] | None = None
    ack: AckCallback | None = field(default=None, compare=False)

    @classmethod
    def from_socket_event(
        cls,
        source: DeltaSource,
        event: Mapping[str, Any],
        ack: AckCallback | None = None,
    ) -> ConversationDelta:
        delta_type: str | None = None
        payload: Mapping[str, Any] | None = None
        data = event.get("data") if isinstance(event, Mapping) else None
        if isinstance(data, Mapping):
            raw_type = data.get("type")
            delta_type = str(raw_type) if raw_type is not None else None
            inner = data.get("data")
            if isinstance(inner, Mapping):
                payload = inner
            elif inner is not None and delta_type in BARE_VALUE_PAYLOAD_KEYS:
                payload = {BARE_VALUE_PAYLOAD_KEYS[delta_type]: inner}
        return cls(
            source=source,
            raw=event if isinstance(event, Mapping) else {},
            type=delta_type,
            payload=payload,
            ack=ack,
        )


class _DeltaModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class MessageAppend(_DeltaModel):
    type: Literal["message-append"] = "message-append"
    conversation_id: str
    message_id: str | None = None
    role: Literal["user", "assistant", "system"] = "assistant"
    content: str


class MessageChunk(_DeltaModel):
    type: Literal["message-chunk"] = "message-chunk"
    conversation_id: str
    message_id: str
    content: str


class MessageReplace(_DeltaModel):
    type: Literal["message-replace"] = "message-replace"
    conversation_id: str
    message_id: str | None = None
    content: str


class MessageComplete(_DeltaModel):
    type: Literal["message-complete"] = "message-complete"
    conversation_id: str
    message_id: str | None = None
    content: str | None = None


class MessageStatus(_DeltaModel):
    type: Literal["message-status"] = "message-status"
    conversation_id: str
    message_id: str | None = None
    status: str


class MessageError(_DeltaModel):
    type: Literal["message-error"] = "message-error"
    conversation_id: str
    message_id: str | None = None
    error: str


class ConversationUpdated(_DeltaModel):
    type: Literal["conversation-updated"] = "conversation-updated"
    conversation_id: str
    changes: dict[str, Any] = Field(default_factory=dict)


class ConversationDeleted(_DeltaModel):
    type: Literal["conversation-deleted"] = "conversation-deleted"
    conversation_id: str


class UnknownDelta(_DeltaModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


DecodedDelta = Union[
    MessageAppend,
    MessageChunk,
    MessageReplace,
    MessageComplete,
    MessageStatus,
    MessageError,
    ConversationUpdated,
    ConversationDeleted,
    UnknownDelta,
]
