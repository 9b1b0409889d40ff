from __future__ import annotations

import logging
from typing import Any, Callable

from chatsync.core.config import Settings, get_settings
from chatsync.features.conversations.store import ConversationStore
from chatsync.features.deltas.listener import ConversationDeltaListener, StreamFactory
from chatsync.features.deltas.reconciler import DeltaReconciler
from chatsync.features.deltas.schemas import ConversationDelta, ConversationDeltaRequest
from chatsync.features.mutations.coordinator import MutationCoordinator
from chatsync.features.mutations.ledger import PendingMutationLedger
from chatsync.features.mutations.types import MutationKind, MutationResult
from chatsync.features.shared.diagnostics import SyncDiagnostics, log_diagnostics
from chatsync.features.shared.remote import ConversationApi
from chatsync.features.switching.controller import ConversationSwitchController, SwitchOutcome
from chatsync.features.views.partitions import ConversationIndexView, ConversationPartitions
from chatsync.features.views.search import search_partitions

from .bootstrap import InitialState, load_initial_state

logger = logging.getLogger(__name__)

ActiveClearedCallback = Callable[[str], None]


class ConversationSync:
    """One client session: store, ledger, reconciler, coordinator, switcher and listeners."""

    def __init__(
        self,
        api: ConversationApi,
        *,
        settings: Settings | None = None,
        store: ConversationStore | None = None,
        on_active_cleared: ActiveClearedCallback | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api = api
        self.store = store or ConversationStore()
        self.diagnostics = SyncDiagnostics()
        self.ledger = PendingMutationLedger(held_limit=self.settings.held_delta_limit)
        self._on_active_cleared = on_active_cleared

        self.switch = ConversationSwitchController(
            self.store,
            api,
            diagnostics=self.diagnostics,
            ledger=self.ledger,
        )
        self.reconciler = DeltaReconciler(
            self.store,
            self.ledger,
            diagnostics=self.diagnostics,
            on_active_cleared=self._active_cleared,
        )
        self.mutations = MutationCoordinator(
            self.store,
            api,
            self.ledger,
            diagnostics=self.diagnostics,
            max_title_length=self.settings.max_title_length,
            on_active_cleared=self._active_cleared,
        )
        self.index = ConversationIndexView(self.store)
        self._listeners: list[ConversationDeltaListener] = []

    def _active_cleared(self, conversation_id: str) -> None:
        # In-flight loads for the removed conversation must not repopulate the view.
        self.switch.reset()
        if self._on_active_cleared is not None:
            self._on_active_cleared(conversation_id)

    # Loading

    async def refresh(self) -> InitialState:
        return await load_initial_state(self.api, self.store, self.ledger)

    async def select_conversation(self, conversation_id: str) -> SwitchOutcome:
        return await self.switch.select(conversation_id)

    def clear_selection(self) -> None:
        self.switch.clear()

    # Deltas

    def apply_delta(self, delta: ConversationDelta, *, default_conversation_id: str | None = None) -> None:
        self.reconciler.apply(delta, default_conversation_id=default_conversation_id)

    def listen(
        self,
        request: ConversationDeltaRequest,
        stream_factory: StreamFactory,
        *,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> ConversationDeltaListener:
        listener = ConversationDeltaListener(
            request,
            stream_factory,
            lambda delta: self.apply_delta(delta, default_conversation_id=request.conversation_id),
            on_error=on_error,
            diagnostics=self.diagnostics,
        )
        self._listeners.append(listener)
        listener.start()
        return listener

    async def close(self) -> None:
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            await listener.dispose()
        self.switch.reset()
        log_diagnostics(logger, location="sync.session", diagnostics=self.diagnostics)

    # Views

    def partitions(self) -> ConversationPartitions:
        return self.index.current()

    async def search(self, query: str) -> ConversationPartitions:
        return await search_partitions(
            self.api,
            self.store,
            query,
            limit=self.settings.search_result_limit,
            include_archived=self.settings.search_include_archived,
            local_fallback=self.settings.search_local_fallback,
        )

    # Mutations

    async def mutate(self, entity_id: str | None, kind: MutationKind, new_value: Any = None) -> MutationResult:
        return await self.mutations.mutate(entity_id, kind, new_value)

    async def set_pinned(self, conversation_id: str, pinned: bool) -> MutationResult:
        return await self.mutations.set_pinned(conversation_id, pinned)

    async def set_archived(self, conversation_id: str, archived: bool) -> MutationResult:
        return await self.mutations.set_archived(conversation_id, archived)

    async def rename(self, conversation_id: str, title: str) -> MutationResult:
        return await self.mutations.rename(conversation_id, title)

    async def move_to_folder(self, conversation_id: str, folder_id: str | None) -> MutationResult:
        return await self.mutations.move_to_folder(conversation_id, folder_id)

    async def delete(self, conversation_id: str) -> MutationResult:
        return await self.mutations.delete(conversation_id)

    async def create_folder(self, name: str) -> MutationResult:
        return await self.mutations.create_folder(name)

    async def rename_folder(self, folder_id: str, name: str) -> MutationResult:
        return await self.mutations.rename_folder(folder_id, name)

    async def delete_folder(self, folder_id: str) -> MutationResult:
        return await self.mutations.delete_folder(folder_id)


__all__ = ["ConversationSync"]
