from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator

from .types import ChatMessage, Conversation, Folder, StoreSnapshot

logger = logging.getLogger(__name__)

StoreListener = Callable[[StoreSnapshot], None]
MessagesTransform = Callable[[tuple[ChatMessage, ...]], tuple[ChatMessage, ...]]


def _insert_position(order: list[str], index: int | None) -> int:
    if index is None or index > len(order):
        return len(order)
    return max(0, index)


class ConversationStore:
    """In-memory table of conversations and folders plus the active-conversation slot.

    Every method is synchronous. Listeners receive a fresh snapshot after each change,
    or once per outermost ``batch()`` block.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._order: list[str] = []
        self._folders: dict[str, Folder] = {}
        self._folder_order: list[str] = []
        self._active_id: str | None = None
        self._active: Conversation | None = None
        self._active_loading = False
        self._version = 0
        self._listeners: list[StoreListener] = []
        self._batch_depth = 0
        self._dirty = False

    # Notification

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def get_snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            version=self._version,
            conversations=tuple(self._conversations[item] for item in self._order),
            folders=tuple(self._folders[item] for item in self._folder_order),
            active_conversation_id=self._active_id,
            active_conversation=self._active,
            active_loading=self._active_loading,
        )

    @contextmanager
    def batch(self) -> Iterator[None]:
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._dirty = False
                self._notify()

    def _changed(self) -> None:
        self._version += 1
        if self._batch_depth:
            self._dirty = True
            return
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.get_snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Store listener failed at version %d.", snapshot.version)

    # Conversations

    def replace_all(
        self,
        conversations: Iterable[Conversation],
        folders: Iterable[Folder] | None = None,
    ) -> None:
        self._conversations = {}
        self._order = []
        for conversation in conversations:
            if conversation.id not in self._conversations:
                self._order.append(conversation.id)
            self._conversations[conversation.id] = conversation
        if folders is not None:
            self._folders = {}
            self._folder_order = []
            for folder in folders:
                if folder.id not in self._folders:
                    self._folder_order.append(folder.id)
                self._folders[folder.id] = folder
        self._changed()

    def list_conversations(self) -> list[Conversation]:
        return [self._conversations[item] for item in self._order]

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    def index_of(self, conversation_id: str) -> int | None:
        try:
            return self._order.index(conversation_id)
        except ValueError:
            return None

    def upsert_conversation(self, conversation: Conversation) -> None:
        if conversation.id not in self._conversations:
            self._order.insert(0, conversation.id)
        self._conversations[conversation.id] = conversation
        self._changed()

    def insert_conversation(self, conversation: Conversation, index: int | None = None) -> None:
        if conversation.id in self._conversations:
            self._conversations[conversation.id] = conversation
        else:
            self._order.insert(_insert_position(self._order, index), conversation.id)
            self._conversations[conversation.id] = conversation
        self._changed()

    def update_conversation(self, conversation_id: str, **changes: Any) -> Conversation | None:
        current = self._conversations.get(conversation_id)
        active = self._active if self._active_id == conversation_id else None
        if current is None and active is None:
            return None

        touched = False
        if current is not None:
            effective = {key: value for key, value in changes.items() if getattr(current, key) != value}
            if effective:
                current = current.model_copy(update=effective)
                self._conversations[conversation_id] = current
                touched = True
        if active is not None:
            effective = {key: value for key, value in changes.items() if getattr(active, key) != value}
            if effective:
                active = active.model_copy(update=effective)
                self._active = active
                touched = True
        if touched:
            self._changed()
        return current if current is not None else active

    def remove_conversation(self, conversation_id: str) -> tuple[Conversation, int] | None:
        conversation = self._conversations.pop(conversation_id, None)
        if conversation is None:
            return None
        index = self._order.index(conversation_id)
        self._order.pop(index)
        self._changed()
        return conversation, index

    def update_messages(self, conversation_id: str, transform: MessagesTransform) -> bool:
        targets = 0
        touched = False
        current = self._conversations.get(conversation_id)
        if current is not None:
            targets += 1
            messages = transform(current.messages)
            if messages != current.messages:
                self._conversations[conversation_id] = current.model_copy(update={"messages": messages})
                touched = True
        if self._active is not None and self._active_id == conversation_id:
            targets += 1
            messages = transform(self._active.messages)
            if messages != self._active.messages:
                self._active = self._active.model_copy(update={"messages": messages})
                touched = True
        if touched:
            self._changed()
        return targets > 0

    # Folders

    def list_folders(self) -> list[Folder]:
        return [self._folders[item] for item in self._folder_order]

    def get_folder(self, folder_id: str) -> Folder | None:
        return self._folders.get(folder_id)

    def has_folder(self, folder_id: str) -> bool:
        return folder_id in self._folders

    def upsert_folder(self, folder: Folder) -> None:
        if folder.id not in self._folders:
            self._folder_order.append(folder.id)
        self._folders[folder.id] = folder
        self._changed()

    def insert_folder(self, folder: Folder, index: int | None = None) -> None:
        if folder.id not in self._folders:
            self._folder_order.insert(_insert_position(self._folder_order, index), folder.id)
        self._folders[folder.id] = folder
        self._changed()

    def update_folder(self, folder_id: str, **changes: Any) -> Folder | None:
        current = self._folders.get(folder_id)
        if current is None:
            return None
        effective = {key: value for key, value in changes.items() if getattr(current, key) != value}
        if not effective:
            return current
        updated = current.model_copy(update=effective)
        self._folders[folder_id] = updated
        self._changed()
        return updated

    def remove_folder(self, folder_id: str) -> tuple[Folder, int] | None:
        folder = self._folders.pop(folder_id, None)
        if folder is None:
            return None
        index = self._folder_order.index(folder_id)
        self._folder_order.pop(index)
        self._changed()
        return folder, index

    def replace_folder(self, old_folder_id: str, folder: Folder) -> None:
        if old_folder_id not in self._folders:
            self.upsert_folder(folder)
            return
        index = self._folder_order.index(old_folder_id)
        del self._folders[old_folder_id]
        if folder.id in self._folders and folder.id != old_folder_id:
            self._folder_order.pop(index)
        else:
            self._folder_order[index] = folder.id
        self._folders[folder.id] = folder
        self._changed()

    def reassign_folder(self, old_folder_id: str, new_folder_id: str | None) -> list[str]:
        moved = [
            item
            for item in self._order
            if self._conversations[item].folder_id == old_folder_id
        ]
        if self._active is not None and self._active.folder_id == old_folder_id and self._active_id not in moved:
            moved.append(self._active.id)
        if not moved:
            return []
        with self.batch():
            for conversation_id in moved:
                self.update_conversation(conversation_id, folder_id=new_folder_id)
        return moved

    def clear_folder_references(self, folder_id: str) -> list[str]:
        return self.reassign_folder(folder_id, None)

    # Active conversation

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_id

    @property
    def active_conversation(self) -> Conversation | None:
        return self._active

    @property
    def active_loading(self) -> bool:
        return self._active_loading

    def begin_active_load(self, conversation_id: str) -> None:
        self._active_id = conversation_id
        self._active = None
        self._active_loading = True
        self._changed()

    def set_active(
        self,
        conversation: Conversation | None,
        *,
        conversation_id: str | None = None,
    ) -> None:
        self._active = conversation
        self._active_id = conversation.id if conversation is not None else conversation_id
        self._active_loading = False
        self._changed()

    def clear_active(self) -> None:
        if self._active_id is None and self._active is None and not self._active_loading:
            return
        self._active_id = None
        self._active = None
        self._active_loading = False
        self._changed()


__all__ = [
    "ConversationStore",
    "MessagesTransform",
    "StoreListener",
]
