from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from chatsync.features.conversations.types import parse_timestamp
from chatsync.features.shared.errors import MalformedDeltaError

from .schemas import (
    ConversationDelta,
    ConversationDeleted,
    ConversationUpdated,
    DecodedDelta,
    MessageAppend,
    MessageChunk,
    MessageComplete,
    MessageError,
    MessageReplace,
    MessageStatus,
    UnknownDelta,
)

# Wire names used by the chat server, mapped onto the canonical delta types.
TYPE_ALIASES: dict[str, str] = {
    "message-append": "message-append",
    "chat:message:delta": "message-append",
    "event:message:delta": "message-append",
    "message": "message-append",
    "message-chunk": "message-chunk",
    "message-replace": "message-replace",
    "chat:message": "message-replace",
    "replace": "message-replace",
    "message-complete": "message-complete",
    "chat:completion": "message-complete",
    "message-status": "message-status",
    "event:status": "message-status",
    "message-error": "message-error",
    "chat:message:error": "message-error",
    "conversation-updated": "conversation-updated",
    "chat:title": "conversation-updated",
    "chat:tags": "conversation-updated",
    "conversation-deleted": "conversation-deleted",
}

_VALID_ROLES = {"user", "assistant", "system"}


def canonical_type(raw_type: str) -> str | None:
    return TYPE_ALIASES.get(raw_type.strip())


def _first_str(data: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _conversation_id(
    delta: ConversationDelta,
    payload: Mapping[str, Any],
    default_conversation_id: str | None,
    *,
    conversation_level: bool,
) -> str:
    keys = ("conversation_id", "chat_id", "conversationId", "chatId")
    if conversation_level:
        keys += ("id",)
    conversation_id = (
        _first_str(payload, *keys)
        or _first_str(delta.raw, "chat_id", "conversation_id")
        or default_conversation_id
    )
    if conversation_id is None:
        raise MalformedDeltaError(f"Delta '{delta.type}' has no conversation id.")
    return conversation_id


def _message_id(delta: ConversationDelta, payload: Mapping[str, Any]) -> str | None:
    return _first_str(payload, "message_id", "messageId", "id") or _first_str(delta.raw, "message_id")


def _content(delta: ConversationDelta, payload: Mapping[str, Any]) -> str:
    if "content" not in payload:
        raise MalformedDeltaError(f"Delta '{delta.type}' has no content.")
    content = payload["content"]
    return "" if content is None else str(content)


def _error_text(payload: Mapping[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, Mapping):
        content = error.get("content")
        return "" if content is None else str(content)
    if isinstance(error, str):
        return error
    message = payload.get("message")
    return message if isinstance(message, str) else ""


def _conversation_changes(payload: Mapping[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if isinstance(payload.get("title"), str):
        changes["title"] = payload["title"]
    for flag in ("pinned", "archived"):
        if isinstance(payload.get(flag), bool):
            changes[flag] = payload[flag]
    for key in ("folder_id", "folderId"):
        if key in payload:
            value = payload[key]
            changes["folder_id"] = str(value) if value not in (None, "") else None
            break
    tags = payload.get("tags")
    if isinstance(tags, (list, tuple, set, frozenset)):
        changes["tags"] = frozenset(
            str(item.get("name") if isinstance(item, Mapping) else item)
            for item in tags
            if item is not None
        )
    if "model" in payload and (payload["model"] is None or isinstance(payload["model"], str)):
        changes["model"] = payload["model"]
    for key in ("updated_at", "updatedAt"):
        if payload.get(key) is not None:
            changes["updated_at"] = parse_timestamp(payload[key])
            break
    return changes


def decode_delta(
    delta: ConversationDelta,
    *,
    default_conversation_id: str | None = None,
) -> DecodedDelta:
    if not delta.type:
        raise MalformedDeltaError("Delta envelope has no type.")
    if delta.payload is None:
        raise MalformedDeltaError(f"Delta '{delta.type}' has no payload.")

    payload = delta.payload
    kind = canonical_type(delta.type)
    if kind == "message-complete" and delta.type == "chat:completion" and payload.get("done") is not True:
        kind = None
    if kind is None:
        return UnknownDelta(type=delta.type, payload=dict(payload))

    conversation_id = _conversation_id(
        delta,
        payload,
        default_conversation_id,
        conversation_level=kind.startswith("conversation-"),
    )
    message_id = _message_id(delta, payload)
    try:
        if kind == "message-append":
            role = str(payload.get("role") or "assistant")
            return MessageAppend(
                conversation_id=conversation_id,
                message_id=message_id,
                role=role if role in _VALID_ROLES else "assistant",
                content=_content(delta, payload),
            )
        if kind == "message-chunk":
            if message_id is None:
                raise MalformedDeltaError("message-chunk delta has no message id.")
            return MessageChunk(
                conversation_id=conversation_id,
                message_id=message_id,
                content=_content(delta, payload),
            )
        if kind == "message-replace":
            return MessageReplace(
                conversation_id=conversation_id,
                message_id=message_id,
                content=_content(delta, payload),
            )
        if kind == "message-complete":
            content = payload.get("content")
            return MessageComplete(
                conversation_id=conversation_id,
                message_id=message_id,
                content=content if isinstance(content, str) else None,
            )
        if kind == "message-status":
            status = _first_str(payload, "status", "description")
            if status is None:
                raise MalformedDeltaError("message-status delta has no status.")
            return MessageStatus(conversation_id=conversation_id, message_id=message_id, status=status)
        if kind == "message-error":
            return MessageError(
                conversation_id=conversation_id,
                message_id=message_id,
                error=_error_text(payload),
            )
        if kind == "conversation-updated":
            changes = _conversation_changes(payload)
            if not changes:
                raise MalformedDeltaError(
                    f"conversation-updated delta for '{conversation_id}' has no recognised field."
                )
            return ConversationUpdated(conversation_id=conversation_id, changes=changes)
        return ConversationDeleted(conversation_id=conversation_id)
    except ValidationError as exc:
        raise MalformedDeltaError(f"Delta '{delta.type}' failed validation: {exc.error_count()} error(s).") from exc


__all__ = [
    "TYPE_ALIASES",
    "canonical_type",
    "decode_delta",
]
