from __future__ import annotations

import logging
from typing import Any, Mapping

from .types import ChatMessage, Conversation, Folder, parse_timestamp

logger = logging.getLogger(__name__)


def message_from_payload(data: Mapping[str, Any]) -> ChatMessage:
    if not isinstance(data, Mapping):
        raise ValueError("Message payload must be a mapping.")
    return ChatMessage.model_validate(data)


def _raw_messages(source: Mapping[str, Any]) -> list[Any]:
    raw_messages = source.get("messages")
    if isinstance(raw_messages, list) and raw_messages:
        return raw_messages
    history = source.get("history")
    if isinstance(history, Mapping) and isinstance(history.get("messages"), Mapping):
        return [
            {"id": key, **value}
            for key, value in history["messages"].items()
            if isinstance(value, Mapping)
        ]
    return []


def _messages(source: Mapping[str, Any]) -> tuple[ChatMessage, ...]:
    messages: list[ChatMessage] = []
    for item in _raw_messages(source):
        try:
            messages.append(message_from_payload(item))
        except ValueError:
            logger.debug("Skipping unparseable message payload in chat listing.")
    return tuple(messages)


def conversation_from_payload(data: Mapping[str, Any]) -> Conversation:
    """Validate one conversation record from the list, get or search endpoints.

    Listings nest title, tags, models and history under ``chat``; top-level values win.
    """
    if not isinstance(data, Mapping):
        raise ValueError("Conversation payload must be a mapping.")
    chat = data.get("chat")
    chat = chat if isinstance(chat, Mapping) else {}

    fields = {key: value for key, value in data.items() if key != "chat"}
    if not fields.get("title"):
        fields["title"] = chat.get("title")
    if fields.get("tags") is None:
        fields["tags"] = chat.get("tags")
    models = chat.get("models")
    if fields.get("model") is None and isinstance(models, list) and models:
        fields["model"] = models[0]
    fields["messages"] = _messages(chat if chat else data)
    return Conversation.model_validate(fields)


def folder_from_payload(data: Mapping[str, Any]) -> Folder:
    if not isinstance(data, Mapping):
        raise ValueError("Folder payload must be a mapping.")
    folder = Folder.model_validate(data)
    items = data.get("items")
    if not folder.conversation_ids and isinstance(items, Mapping):
        folder = Folder.model_validate({**data, "conversation_ids": items.get("chat_ids")})
    return folder


__all__ = [
    "conversation_from_payload",
    "folder_from_payload",
    "message_from_payload",
    "parse_timestamp",
]
