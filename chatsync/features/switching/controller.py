from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from typing import Literal

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.conversations.types import Conversation
from chatsync.features.mutations.ledger import PendingMutationLedger
from chatsync.features.shared.diagnostics import SyncDiagnostics
from chatsync.features.shared.errors import StaleResultDiscarded, TransientNetworkError
from chatsync.features.shared.remote import ConversationApi

logger = logging.getLogger(__name__)

SwitchPhase = Literal["idle", "loading", "settled"]
SwitchStatus = Literal["applied", "fallback", "stale"]


@dataclass(frozen=True)
class SwitchState:
    phase: SwitchPhase
    token: int | None = None
    conversation_id: str | None = None


@dataclass(frozen=True)
class SwitchOutcome:
    status: SwitchStatus
    token: int
    conversation_id: str
    conversation: Conversation | None = None
    error: TransientNetworkError | None = None


class ConversationSwitchController:
    """Latest-token-wins arbitration for conversation loads.

    Every ``select`` mints a strictly larger token. A load result is written to the store
    only while its token is still the latest one minted.
    """

    def __init__(
        self,
        store: ConversationStore,
        api: ConversationApi,
        *,
        diagnostics: SyncDiagnostics | None = None,
        ledger: PendingMutationLedger | None = None,
    ) -> None:
        self._store = store
        self._api = api
        self._ledger = ledger
        self.diagnostics = diagnostics or SyncDiagnostics()
        self._tokens = itertools.count(1)
        self._latest_token = 0
        self._state = SwitchState(phase="idle")

    @property
    def state(self) -> SwitchState:
        return self._state

    @property
    def latest_token(self) -> int:
        return self._latest_token

    def _mint(self) -> int:
        token = next(self._tokens)
        self._latest_token = token
        return token

    def _ensure_latest(self, token: int) -> None:
        if token != self._latest_token:
            raise StaleResultDiscarded(token, self._latest_token)

    async def select(self, conversation_id: str) -> SwitchOutcome:
        token = self._mint()
        self._state = SwitchState(phase="loading", token=token, conversation_id=conversation_id)
        self._store.begin_active_load(conversation_id)
        logger.debug("Loading conversation '%s' with token %d.", conversation_id, token)

        try:
            conversation = await self._api.get_conversation(conversation_id)
        except Exception as exc:
            return self._settle_failure(token, conversation_id, exc)

        try:
            self._ensure_latest(token)
        except StaleResultDiscarded as stale:
            return self._discard(stale, conversation_id, conversation)

        conversation = self._overlay_pending(conversation)
        self._store.set_active(conversation)
        self._state = SwitchState(phase="settled", token=token, conversation_id=conversation_id)
        return SwitchOutcome(
            status="applied",
            token=token,
            conversation_id=conversation_id,
            conversation=conversation,
        )

    def _settle_failure(self, token: int, conversation_id: str, exc: Exception) -> SwitchOutcome:
        error = TransientNetworkError("get_conversation", conversation_id, str(exc) or type(exc).__name__)
        error.__cause__ = exc
        try:
            self._ensure_latest(token)
        except StaleResultDiscarded as stale:
            return replace(self._discard(stale, conversation_id, None), error=error)

        summary = self._store.get_conversation(conversation_id)
        self._store.set_active(summary, conversation_id=conversation_id)
        self._state = SwitchState(phase="settled", token=token, conversation_id=conversation_id)
        logger.warning(
            "Loading conversation '%s' failed; falling back to %s: %s",
            conversation_id,
            "list summary" if summary is not None else "empty view",
            exc,
        )
        return SwitchOutcome(
            status="fallback",
            token=token,
            conversation_id=conversation_id,
            conversation=summary,
            error=error,
        )

    def _discard(
        self,
        stale: StaleResultDiscarded,
        conversation_id: str,
        conversation: Conversation | None,
    ) -> SwitchOutcome:
        self.diagnostics.stale_loads += 1
        logger.debug("Discarding load of '%s': %s", conversation_id, stale)
        return SwitchOutcome(
            status="stale",
            token=stale.token,
            conversation_id=conversation_id,
            conversation=conversation,
        )

    def _overlay_pending(self, conversation: Conversation) -> Conversation:
        if self._ledger is None:
            return conversation
        local = self._store.get_conversation(conversation.id)
        fields = self._ledger.pending_fields("conversation", conversation.id) - {"deleted"}
        if local is None or not fields:
            return conversation
        # Unconfirmed local edits stay visible over the freshly loaded copy.
        return conversation.model_copy(update={field: getattr(local, field) for field in fields})

    def reset(self) -> None:
        """Invalidate in-flight loads and return to idle without touching the store."""
        self._mint()
        self._state = SwitchState(phase="idle")

    def clear(self) -> None:
        self.reset()
        self._store.clear_active()


__all__ = [
    "ConversationSwitchController",
    "SwitchOutcome",
    "SwitchState",
]
