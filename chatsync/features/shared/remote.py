from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from chatsync.features.conversations.types import Conversation, Folder


@runtime_checkable
class ConversationApi(Protocol):
    """Remote source of truth. Implementations wrap the HTTP client; any exception is a failure."""

    async def get_conversation(self, conversation_id: str) -> Conversation: ...

    async def update_conversation(self, conversation_id: str, *, title: str | None = None) -> None: ...

    async def delete_conversation(self, conversation_id: str) -> None: ...

    async def pin_conversation(self, conversation_id: str, pinned: bool) -> None: ...

    async def archive_conversation(self, conversation_id: str, archived: bool) -> None: ...

    async def move_conversation_to_folder(self, conversation_id: str, folder_id: str | None) -> None: ...

    async def create_folder(self, name: str) -> Folder: ...

    async def update_folder(self, folder_id: str, *, name: str | None = None) -> None: ...

    async def delete_folder(self, folder_id: str) -> None: ...

    async def list_conversations(self) -> Sequence[Conversation]: ...

    async def search_conversations(
        self,
        query: str,
        *,
        limit: int = 50,
        archived: bool | None = None,
    ) -> Sequence[Conversation]: ...

    async def list_folders(self) -> Sequence[Folder]: ...


__all__ = ["ConversationApi"]
