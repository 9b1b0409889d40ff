from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.conversations.types import Conversation, Folder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DanglingFolderReference:
    conversation_id: str
    folder_id: str


@dataclass(frozen=True)
class ConversationPartitions:
    pinned: tuple[Conversation, ...] = ()
    archived: tuple[Conversation, ...] = ()
    foldered: Mapping[str, tuple[Conversation, ...]] = field(default_factory=dict)
    regular: tuple[Conversation, ...] = ()
    dangling: tuple[DanglingFolderReference, ...] = ()

    @property
    def total(self) -> int:
        return (
            len(self.pinned)
            + len(self.archived)
            + sum(len(items) for items in self.foldered.values())
            + len(self.regular)
        )

    def ids(self) -> dict[str, object]:
        return {
            "pinned": [item.id for item in self.pinned],
            "archived": [item.id for item in self.archived],
            "foldered": {folder_id: [item.id for item in items] for folder_id, items in self.foldered.items()},
            "regular": [item.id for item in self.regular],
        }


def _newest_first(conversations: list[Conversation]) -> tuple[Conversation, ...]:
    # sorted() is stable, so equal timestamps keep their input order.
    return tuple(sorted(conversations, key=lambda item: item.updated_at, reverse=True))


def partition_conversations(
    conversations: Iterable[Conversation],
    folders: Iterable[Folder],
) -> ConversationPartitions:
    """Split conversations into pinned, archived, foldered and regular buckets.

    Precedence is pinned > archived > foldered > regular. A conversation whose folder is not
    in ``folders`` lands in ``regular`` and is reported in ``dangling``; it is never dropped.
    """
    folder_ids = [folder.id for folder in folders]
    known_folders = set(folder_ids)

    pinned: list[Conversation] = []
    archived: list[Conversation] = []
    foldered: dict[str, list[Conversation]] = {}
    regular: list[Conversation] = []
    dangling: list[DanglingFolderReference] = []

    for conversation in conversations:
        if conversation.pinned:
            pinned.append(conversation)
        elif conversation.archived:
            archived.append(conversation)
        elif conversation.folder_id and conversation.folder_id in known_folders:
            foldered.setdefault(conversation.folder_id, []).append(conversation)
        else:
            if conversation.folder_id:
                dangling.append(DanglingFolderReference(conversation.id, conversation.folder_id))
            regular.append(conversation)

    if dangling:
        logger.debug("%d conversation(s) reference folders that are not loaded.", len(dangling))

    return ConversationPartitions(
        pinned=_newest_first(pinned),
        archived=_newest_first(archived),
        foldered={
            folder_id: _newest_first(foldered[folder_id])
            for folder_id in folder_ids
            if folder_id in foldered
        },
        regular=_newest_first(regular),
        dangling=tuple(dangling),
    )


class ConversationIndexView:
    """Partition of the store's list, recomputed only when the store version changes."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store
        self._version: int | None = None
        self._cached: ConversationPartitions | None = None

    def current(self) -> ConversationPartitions:
        version = self._store.version
        if self._cached is None or self._version != version:
            self._cached = partition_conversations(
                self._store.list_conversations(),
                self._store.list_folders(),
            )
            self._version = version
        return self._cached


__all__ = [
    "ConversationIndexView",
    "ConversationPartitions",
    "DanglingFolderReference",
    "partition_conversations",
]
