from __future__ import annotations

import logging

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.conversations.types import Conversation
from chatsync.features.shared.errors import TransientNetworkError
from chatsync.features.shared.remote import ConversationApi
from chatsync.features.shared.text_sanitize import sanitize_text

from .partitions import ConversationPartitions, partition_conversations

logger = logging.getLogger(__name__)


def _matches(conversation: Conversation, needle: str) -> bool:
    if needle in conversation.title.casefold():
        return True
    return any(needle in message.content.casefold() for message in conversation.messages)


def search_local(
    store: ConversationStore,
    query: str,
    *,
    include_archived: bool = False,
    limit: int | None = None,
) -> list[Conversation]:
    """Case-insensitive substring match over titles and loaded message content."""
    needle = query.casefold()
    matches = [
        conversation
        for conversation in store.list_conversations()
        if (include_archived or not conversation.archived) and _matches(conversation, needle)
    ]
    if limit is not None:
        matches = matches[:limit]
    return matches


async def search_partitions(
    api: ConversationApi,
    store: ConversationStore,
    query: str,
    *,
    limit: int = 50,
    include_archived: bool = False,
    local_fallback: bool = True,
) -> ConversationPartitions:
    cleaned, _ = sanitize_text(query or "", strip=True, single_line=True)
    if not cleaned:
        return partition_conversations(store.list_conversations(), store.list_folders())

    try:
        results = await api.search_conversations(
            cleaned,
            limit=limit,
            archived=None if include_archived else False,
        )
    except Exception as exc:
        if not local_fallback:
            error = TransientNetworkError("search_conversations", None, str(exc) or type(exc).__name__)
            raise error from exc
        logger.warning("Remote search failed; falling back to local matches: %s", exc)
        results = search_local(store, cleaned, include_archived=include_archived, limit=limit)
    else:
        logger.debug("Remote search for %r returned %d result(s).", cleaned, len(results))

    return partition_conversations(results, store.list_folders())


__all__ = [
    "search_local",
    "search_partitions",
]
