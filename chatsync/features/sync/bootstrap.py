from __future__ import annotations

import logging
from dataclasses import dataclass

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.conversations.types import Conversation, Folder
from chatsync.features.mutations.ledger import PendingMutationLedger
from chatsync.features.mutations.types import MUTATION_FIELDS
from chatsync.features.shared.errors import TransientNetworkError
from chatsync.features.shared.remote import ConversationApi

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitialState:
    conversations: tuple[Conversation, ...]
    folders: tuple[Folder, ...]
    folders_loaded: bool
    unavailable_ids: tuple[str, ...] = ()


def _assign_folders(
    conversations: dict[str, Conversation],
    folders: list[Folder],
) -> list[str]:
    """Fill ``folder_id`` from folder listings; returns ids listed in folders but not loaded."""
    missing: list[str] = []
    for folder in folders:
        for conversation_id in folder.conversation_ids:
            conversation = conversations.get(conversation_id)
            if conversation is None:
                if conversation_id not in missing:
                    missing.append(conversation_id)
                continue
            if conversation.folder_id is None:
                conversations[conversation_id] = conversation.model_copy(update={"folder_id": folder.id})
    return missing


def _overlay_conversations(
    conversations: list[Conversation],
    store: ConversationStore,
    ledger: PendingMutationLedger,
) -> list[Conversation]:
    output: list[Conversation] = []
    for conversation in conversations:
        fields = ledger.pending_fields("conversation", conversation.id)
        if "deleted" in fields:
            continue
        local = store.get_conversation(conversation.id)
        if fields and local is not None:
            conversation = conversation.model_copy(update={name: getattr(local, name) for name in fields})
        output.append(conversation)
    return output


def _overlay_folders(
    folders: list[Folder],
    store: ConversationStore,
    ledger: PendingMutationLedger,
) -> list[Folder]:
    output: list[Folder] = []
    for folder in folders:
        fields = ledger.pending_fields("folder", folder.id)
        if "deleted" in fields:
            continue
        local = store.get_folder(folder.id)
        if "name" in fields and local is not None:
            folder = folder.model_copy(update={"name": local.name})
        output.append(folder)

    # Folders still waiting on their create call keep their provisional entry.
    loaded = {folder.id for folder in output}
    _, created_field = MUTATION_FIELDS["create_folder"]
    for pending in ledger.outstanding():
        key = pending.key
        if key.entity != "folder" or key.field != created_field or key.entity_id in loaded:
            continue
        provisional = store.get_folder(key.entity_id)
        if provisional is not None:
            output.append(provisional)
    return output


async def load_initial_state(
    api: ConversationApi,
    store: ConversationStore,
    ledger: PendingMutationLedger | None = None,
) -> InitialState:
    """Populate the store from the remote list endpoints.

    The store is left untouched when the conversation list cannot be fetched. A failed
    folder list is tolerated: the folder table already in the store is kept as it is, so a
    brief outage does not move foldered conversations into the regular section.
    """
    try:
        listed = list(await api.list_conversations())
    except Exception as exc:
        raise TransientNetworkError("list_conversations", None, str(exc) or type(exc).__name__) from exc

    folders_loaded = True
    try:
        folders = list(await api.list_folders())
    except Exception as exc:
        logger.warning("Folder list unavailable; keeping the current folder table: %s", exc)
        folders = []
        folders_loaded = False

    conversations: dict[str, Conversation] = {}
    for conversation in listed:
        conversations.setdefault(conversation.id, conversation)

    missing = _assign_folders(conversations, folders)
    unavailable: list[str] = []
    for conversation_id in missing:
        try:
            fetched = await api.get_conversation(conversation_id)
        except Exception as exc:
            logger.debug("Skipping folder-listed conversation '%s': %s", conversation_id, exc)
            unavailable.append(conversation_id)
            continue
        conversations[conversation_id] = fetched
    if missing:
        _assign_folders(conversations, folders)

    ordered = sorted(conversations.values(), key=lambda item: item.updated_at, reverse=True)
    if ledger is not None:
        ordered = _overlay_conversations(ordered, store, ledger)
        if folders_loaded:
            folders = _overlay_folders(folders, store, ledger)

    store.replace_all(ordered, folders if folders_loaded else None)
    if not folders_loaded:
        folders = store.list_folders()
    logger.info(
        "Loaded %d conversation(s) and %d folder(s).",
        len(ordered),
        len(folders),
    )
    return InitialState(
        conversations=tuple(ordered),
        folders=tuple(folders),
        folders_loaded=folders_loaded,
        unavailable_ids=tuple(unavailable),
    )


__all__ = [
    "InitialState",
    "load_initial_state",
]
