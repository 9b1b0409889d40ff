from __future__ import annotations

from .partitions import ConversationIndexView, ConversationPartitions, DanglingFolderReference, partition_conversations
from .search import search_local, search_partitions

__all__ = [
    "ConversationIndexView",
    "ConversationPartitions",
    "DanglingFolderReference",
    "partition_conversations",
    "search_local",
    "search_partitions",
]
