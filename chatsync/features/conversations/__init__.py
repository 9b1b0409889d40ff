from __future__ import annotations

from .payloads import conversation_from_payload, folder_from_payload, message_from_payload, parse_timestamp
from .store import ConversationStore, MessagesTransform, StoreListener
from .types import DEFAULT_CONVERSATION_TITLE, ChatMessage, Conversation, Folder, MessageRole, StoreSnapshot

__all__ = [
    "DEFAULT_CONVERSATION_TITLE",
    "ChatMessage",
    "Conversation",
    "ConversationStore",
    "Folder",
    "MessageRole",
    "MessagesTransform",
    "StoreListener",
    "StoreSnapshot",
    "conversation_from_payload",
    "folder_from_payload",
    "message_from_payload",
    "parse_timestamp",
]
