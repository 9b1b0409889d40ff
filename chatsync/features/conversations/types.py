from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

MessageRole = Literal["user", "assistant", "system"]

DEFAULT_CONVERSATION_TITLE = "New Chat"

# Epoch values above this are milliseconds rather than seconds.
_MILLISECOND_THRESHOLD = 1_000_000_000_000
_MESSAGE_ROLES = frozenset({"user", "assistant", "system"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Coerce an API timestamp (epoch seconds or ms, numeric string, ISO-8601) to aware UTC.

    Anything unreadable becomes the current time rather than failing the whole record.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return utc_now()
    if isinstance(value, str):
        stripped = value.strip()
        try:
            value = int(stripped)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
            except ValueError:
                logger.debug("Unparseable timestamp %r; using current time.", value)
                return utc_now()
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > _MILLISECOND_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    return utc_now()


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _string_items(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        return ()
    output: list[str] = []
    for item in value:
        if isinstance(item, Mapping):
            item = item.get("name") or item.get("id")
        if item is None:
            continue
        output.append(str(item))
    return tuple(output)


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(validation_alias=AliasChoices("id", "message_id", "messageId"))
    role: MessageRole = "assistant"
    content: str = ""
    timestamp: datetime = Field(
        default_factory=utc_now,
        validation_alias=AliasChoices("timestamp", "created_at", "createdAt"),
    )
    model: str | None = None
    is_streaming: bool = Field(default=False, validation_alias=AliasChoices("is_streaming", "isStreaming"))
    metadata: dict[str, Any] = Field(default_factory=dict)
    attachment_ids: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("attachment_ids", "attachmentIds"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @field_validator("attachment_ids", mode="before")
    @classmethod
    def coerce_attachment_ids(cls, value: Any) -> tuple[str, ...]:
        return _string_items(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, value: Any) -> dict[str, Any]:
        return _mapping(value)

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: Any) -> str:
        return value if value in _MESSAGE_ROLES else "assistant"

    @field_validator("content", mode="before")
    @classmethod
    def text_content(cls, value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            for part in value:
                if isinstance(part, Mapping) and part.get("type") == "text":
                    return str(part.get("text") or "")
            return ""
        if value is None:
            return ""
        return str(value)

    @field_validator("is_streaming", mode="before")
    @classmethod
    def streaming_flag(cls, value: Any) -> Any:
        return False if value is None else value


class Conversation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(validation_alias=AliasChoices("id", "chat_id", "chatId"))
    title: str = DEFAULT_CONVERSATION_TITLE
    created_at: datetime = Field(default_factory=utc_now, validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: datetime = Field(default_factory=utc_now, validation_alias=AliasChoices("updated_at", "updatedAt"))
    pinned: bool = False
    archived: bool = False
    folder_id: str | None = Field(default=None, validation_alias=AliasChoices("folder_id", "folderId"))
    tags: frozenset[str] = frozenset()
    model: str | None = None
    system_prompt: str | None = Field(
        default=None,
        validation_alias=AliasChoices("system_prompt", "systemPrompt", "system"),
    )
    share_id: str | None = Field(default=None, validation_alias=AliasChoices("share_id", "shareId"))
    messages: tuple[ChatMessage, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def coerce_timestamps(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @field_validator("folder_id", "model", "system_prompt", "share_id", mode="before")
    @classmethod
    def coerce_optional_text(cls, value: Any) -> str | None:
        return _optional_text(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, value: Any) -> dict[str, Any]:
        return _mapping(value)

    @field_validator("title", mode="before")
    @classmethod
    def default_title(cls, value: Any) -> str:
        return str(value) if value else DEFAULT_CONVERSATION_TITLE

    @field_validator("pinned", "archived", mode="before")
    @classmethod
    def default_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("tags", mode="before")
    @classmethod
    def tag_names(cls, value: Any) -> frozenset[str]:
        return frozenset(_string_items(value))


class Folder(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    created_at: datetime = Field(default_factory=utc_now, validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: datetime = Field(default_factory=utc_now, validation_alias=AliasChoices("updated_at", "updatedAt"))
    parent_id: str | None = Field(default=None, validation_alias=AliasChoices("parent_id", "parentId"))
    conversation_ids: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("conversation_ids", "conversationIds"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def coerce_timestamps(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @field_validator("parent_id", mode="before")
    @classmethod
    def coerce_parent_id(cls, value: Any) -> str | None:
        return _optional_text(value)

    @field_validator("conversation_ids", mode="before")
    @classmethod
    def coerce_conversation_ids(cls, value: Any) -> tuple[str, ...]:
        return _string_items(value)


@dataclass(frozen=True)
class StoreSnapshot:
    version: int
    conversations: tuple[Conversation, ...]
    folders: tuple[Folder, ...]
    active_conversation_id: str | None
    active_conversation: Conversation | None
    active_loading: bool

    @property
    def active_messages(self) -> tuple[ChatMessage, ...]:
        if self.active_conversation is None:
            return ()
        return self.active_conversation.messages
