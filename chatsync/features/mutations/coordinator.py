from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.conversations.types import Conversation, Folder
from chatsync.features.shared.diagnostics import SyncDiagnostics
from chatsync.features.shared.errors import (
    ConversationNotFoundError,
    FolderNotFoundError,
    MutationValidationError,
    TransientNetworkError,
)
from chatsync.features.shared.remote import ConversationApi
from chatsync.features.shared.text_sanitize import log_sanitization_stats, sanitize_text

from .ledger import PendingMutationLedger
from .types import MUTATION_FIELDS, MutationKind, MutationResult, PendingKey, PendingMutation

logger = logging.getLogger(__name__)

PROVISIONAL_FOLDER_PREFIX = "local-"

RemoteCall = Callable[[], Awaitable[Any]]
ActiveClearedCallback = Callable[[str], None]


def is_provisional_folder(folder_id: str | None) -> bool:
    return bool(folder_id) and folder_id.startswith(PROVISIONAL_FOLDER_PREFIX)


class MutationCoordinator:
    """Three-phase optimistic mutations: apply locally, call remote, confirm or roll back.

    Mutations on the same entity field are linearized by the ledger's sequence numbers: only
    the most recently issued call may settle into the store.
    """

    def __init__(
        self,
        store: ConversationStore,
        api: ConversationApi,
        ledger: PendingMutationLedger,
        *,
        diagnostics: SyncDiagnostics | None = None,
        max_title_length: int = 255,
        on_active_cleared: ActiveClearedCallback | None = None,
    ) -> None:
        self._store = store
        self._api = api
        self._ledger = ledger
        self.diagnostics = diagnostics or SyncDiagnostics()
        self._max_title_length = max_title_length
        self._on_active_cleared = on_active_cleared

    async def mutate(self, entity_id: str | None, kind: MutationKind, new_value: Any = None) -> MutationResult:
        if kind not in MUTATION_FIELDS:
            raise MutationValidationError(f"Unknown mutation kind '{kind}'.")
        if kind == "create_folder":
            return await self.create_folder(new_value)
        if entity_id is None:
            raise MutationValidationError(f"Mutation '{kind}' requires an entity id.")
        if kind in ("set_pinned", "set_archived") and not isinstance(new_value, bool):
            raise MutationValidationError(f"Mutation '{kind}' requires a boolean value, got {new_value!r}.")
        if kind == "set_pinned":
            return await self.set_pinned(entity_id, new_value)
        if kind == "set_archived":
            return await self.set_archived(entity_id, new_value)
        if kind == "rename":
            return await self.rename(entity_id, new_value)
        if kind == "move_to_folder":
            return await self.move_to_folder(entity_id, new_value)
        if kind == "delete":
            return await self.delete(entity_id)
        if kind == "rename_folder":
            return await self.rename_folder(entity_id, new_value)
        return await self.delete_folder(entity_id)

    # Conversations

    async def set_pinned(self, conversation_id: str, pinned: bool) -> MutationResult:
        return await self._mutate_conversation_field(
            conversation_id,
            "set_pinned",
            pinned,
            call=lambda: self._api.pin_conversation(conversation_id, pinned),
        )

    async def set_archived(self, conversation_id: str, archived: bool) -> MutationResult:
        hidden_active: Conversation | None = None
        if archived and self._store.active_conversation_id == conversation_id:
            hidden_active = self._store.active_conversation

        def _hide_active() -> None:
            if hidden_active is not None:
                self._store.clear_active()

        def _restore_active() -> None:
            if hidden_active is not None and self._store.active_conversation_id is None:
                self._store.set_active(hidden_active)

        return await self._mutate_conversation_field(
            conversation_id,
            "set_archived",
            archived,
            call=lambda: self._api.archive_conversation(conversation_id, archived),
            after_apply=_hide_active,
            after_rollback=_restore_active,
        )

    async def rename(self, conversation_id: str, title: str) -> MutationResult:
        clean_title = self._clean_label(title, field_name="title")
        return await self._mutate_conversation_field(
            conversation_id,
            "rename",
            clean_title,
            call=lambda: self._api.update_conversation(conversation_id, title=clean_title),
        )

    async def move_to_folder(self, conversation_id: str, folder_id: str | None) -> MutationResult:
        if is_provisional_folder(folder_id):
            raise MutationValidationError("Folder is still being created; retry once it is confirmed.")
        if folder_id is not None and not self._store.has_folder(folder_id):
            logger.debug("Moving '%s' into folder '%s' that is not loaded locally.", conversation_id, folder_id)
        return await self._mutate_conversation_field(
            conversation_id,
            "move_to_folder",
            folder_id,
            call=lambda: self._api.move_conversation_to_folder(conversation_id, folder_id),
        )

    async def delete(self, conversation_id: str) -> MutationResult:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation '{conversation_id}' was not found.")
        index = self._store.index_of(conversation_id)
        pending = self._ledger.begin(
            PendingKey("conversation", conversation_id, "deleted"),
            "delete",
            (conversation, index),
        )
        self._store.remove_conversation(conversation_id)

        try:
            await self._api.delete_conversation(conversation_id)
        except Exception as exc:
            return self._settle_failure(
                pending,
                exc,
                operation="delete_conversation",
                restore=lambda snapshot: self._store.insert_conversation(*snapshot),
            )

        result = self._settle_success(pending, None)
        if result.ok and self._store.active_conversation_id == conversation_id:
            self._store.clear_active()
            if self._on_active_cleared is not None:
                self._on_active_cleared(conversation_id)
        return result

    # Folders

    async def create_folder(self, name: str) -> MutationResult:
        clean_name = self._clean_label(name, field_name="name")
        provisional = Folder(id=f"{PROVISIONAL_FOLDER_PREFIX}{uuid4().hex}", name=clean_name)
        pending = self._ledger.begin(PendingKey("folder", provisional.id, "created"), "create_folder", None)
        self._store.upsert_folder(provisional)

        try:
            created = await self._api.create_folder(clean_name)
        except Exception as exc:
            return self._settle_failure(
                pending,
                exc,
                operation="create_folder",
                restore=lambda _previous: self._store.remove_folder(provisional.id),
            )

        result = self._settle_success(pending, created)
        if result.ok:
            self._store.replace_folder(provisional.id, created)
            return MutationResult(status="confirmed", kind="create_folder", entity_id=created.id, value=created)
        return result

    async def rename_folder(self, folder_id: str, name: str) -> MutationResult:
        folder = self._require_folder(folder_id)
        clean_name = self._clean_label(name, field_name="name")
        pending = self._ledger.begin(PendingKey("folder", folder_id, "name"), "rename_folder", folder.name)
        self._store.update_folder(folder_id, name=clean_name)

        try:
            await self._api.update_folder(folder_id, name=clean_name)
        except Exception as exc:
            return self._settle_failure(
                pending,
                exc,
                operation="update_folder",
                restore=lambda previous: self._restore_folder_name(folder_id, previous),
            )
        return self._settle_success(pending, clean_name)

    async def delete_folder(self, folder_id: str) -> MutationResult:
        folder = self._require_folder(folder_id)
        removed = self._store.remove_folder(folder_id)
        index = removed[1] if removed is not None else None
        pending = self._ledger.begin(PendingKey("folder", folder_id, "deleted"), "delete_folder", (folder, index))

        try:
            await self._api.delete_folder(folder_id)
        except Exception as exc:
            return self._settle_failure(
                pending,
                exc,
                operation="delete_folder",
                restore=lambda snapshot: self._store.insert_folder(*snapshot),
            )

        result = self._settle_success(pending, None)
        if result.ok:
            unfiled = self._store.clear_folder_references(folder_id)
            logger.info("Folder '%s' deleted; %d conversation(s) unfiled.", folder_id, len(unfiled))
        return result

    # Protocol

    async def _mutate_conversation_field(
        self,
        conversation_id: str,
        kind: MutationKind,
        value: Any,
        *,
        call: RemoteCall,
        after_apply: Callable[[], None] | None = None,
        after_rollback: Callable[[], None] | None = None,
    ) -> MutationResult:
        _, field = MUTATION_FIELDS[kind]
        current = self._require_conversation(conversation_id)
        previous = getattr(current, field)
        pending = self._ledger.begin(PendingKey("conversation", conversation_id, field), kind, previous)

        with self._store.batch():
            self._store.update_conversation(conversation_id, **{field: value})
            if after_apply is not None:
                after_apply()

        try:
            await call()
        except Exception as exc:

            def _restore(restored: Any) -> None:
                with self._store.batch():
                    self._store.update_conversation(conversation_id, **{field: restored})
                    if not self._store.has_conversation(conversation_id):
                        self._revise_deleted_conversation(conversation_id, field, restored)
                    if after_rollback is not None:
                        after_rollback()

            return self._settle_failure(pending, exc, operation=kind, restore=_restore)
        return self._settle_success(pending, value)

    def _settle_success(self, pending: PendingMutation, value: Any) -> MutationResult:
        entity_id = pending.key.entity_id
        if not self._ledger.settle(pending):
            self.diagnostics.stale_settlements += 1
            logger.debug("Ignoring late confirmation of superseded %s on '%s'.", pending.kind, entity_id)
            return MutationResult(status="superseded", kind=pending.kind, entity_id=entity_id, value=value)

        discarded = self._ledger.release_held(pending.key)
        if discarded:
            self.diagnostics.discarded_held_deltas += len(discarded)
            logger.debug(
                "Discarded %d held remote %s value(s) for '%s'; local change confirmed.",
                len(discarded),
                pending.key.field,
                entity_id,
            )
        return MutationResult(status="confirmed", kind=pending.kind, entity_id=entity_id, value=value)

    def _settle_failure(
        self,
        pending: PendingMutation,
        exc: Exception,
        *,
        operation: str,
        restore: Callable[[Any], Any],
    ) -> MutationResult:
        entity_id = pending.key.entity_id
        error = TransientNetworkError(operation, entity_id, str(exc) or type(exc).__name__)
        error.__cause__ = exc
        current = self._ledger.pending_for(pending.key)
        if not self._ledger.settle(pending):
            self.diagnostics.stale_settlements += 1
            logger.debug("Ignoring late failure of superseded %s on '%s'.", pending.kind, entity_id)
            return MutationResult(status="superseded", kind=pending.kind, entity_id=entity_id, error=error)

        # Later mutations on other fields may have revised the snapshot.
        previous = current.previous if current is not None else pending.previous
        restore(previous)
        self.diagnostics.rollbacks += 1
        logger.warning("Rolled back %s on '%s' after remote failure: %s", pending.kind, entity_id, exc)
        self._replay_held(pending.key)
        return MutationResult(
            status="rolled_back",
            kind=pending.kind,
            entity_id=entity_id,
            value=previous,
            error=error,
        )

    def _replay_held(self, key: PendingKey) -> None:
        held = self._ledger.release_held(key)
        if not held or key.entity != "conversation":
            return
        self._store.update_conversation(key.entity_id, **{key.field: held[-1]})
        self.diagnostics.replayed_held_deltas += 1
        self.diagnostics.discarded_held_deltas += len(held) - 1
        logger.debug("Re-applied held remote %s for '%s' after rollback.", key.field, key.entity_id)

    # Helpers

    def _revise_deleted_conversation(self, conversation_id: str, field: str, value: Any) -> None:
        revised = self._ledger.revise_previous(
            PendingKey("conversation", conversation_id, "deleted"),
            lambda snapshot: (snapshot[0].model_copy(update={field: value}), snapshot[1]),
        )
        if revised:
            logger.debug("Rolled %s of '%s' back into its pending delete snapshot.", field, conversation_id)

    def _restore_folder_name(self, folder_id: str, name: str) -> None:
        if self._store.update_folder(folder_id, name=name) is not None:
            return
        revised = self._ledger.revise_previous(
            PendingKey("folder", folder_id, "deleted"),
            lambda snapshot: (snapshot[0].model_copy(update={"name": name}), snapshot[1]),
        )
        if revised:
            logger.debug("Rolled name of folder '%s' back into its pending delete snapshot.", folder_id)


    def _require_conversation(self, conversation_id: str) -> Conversation:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None and self._store.active_conversation_id == conversation_id:
            conversation = self._store.active_conversation
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation '{conversation_id}' was not found.")
        return conversation

    def _require_folder(self, folder_id: str) -> Folder:
        if is_provisional_folder(folder_id):
            raise MutationValidationError("Folder is still being created; retry once it is confirmed.")
        folder = self._store.get_folder(folder_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder '{folder_id}' was not found.")
        return folder

    def _clean_label(self, value: str | None, *, field_name: str) -> str:
        cleaned, stats = sanitize_text(value or "", strip=True, single_line=True)
        log_sanitization_stats(logger, location=f"mutations.{field_name}", stats=stats)
        if not cleaned:
            raise MutationValidationError(f"{field_name} cannot be empty.")
        if len(cleaned) > self._max_title_length:
            raise MutationValidationError(f"{field_name} exceeds max length of {self._max_title_length}.")
        return cleaned


__all__ = [
    "PROVISIONAL_FOLDER_PREFIX",
    "MutationCoordinator",
    "is_provisional_folder",
]
