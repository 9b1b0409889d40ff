from __future__ import annotations

import logging
from typing import Any, Callable, Iterable
from uuid import uuid4

from chatsync.features.conversations.store import ConversationStore
from chatsync.features.conversations.types import ChatMessage
from chatsync.features.mutations.ledger import PendingMutationLedger
from chatsync.features.mutations.types import PendingKey
from chatsync.features.shared.diagnostics import SyncDiagnostics
from chatsync.features.shared.errors import MalformedDeltaError
from chatsync.features.shared.text_sanitize import log_sanitization_stats, sanitize_text

from .decoder import decode_delta
from .schemas import (
    GUARDED_CONVERSATION_FIELDS,
    ConversationDelta,
    ConversationDeleted,
    ConversationUpdated,
    DecodedDelta,
    MessageAppend,
    MessageChunk,
    MessageComplete,
    MessageError,
    MessageReplace,
    MessageStatus,
    UnknownDelta,
)

logger = logging.getLogger(__name__)

Messages = tuple[ChatMessage, ...]
ActiveClearedCallback = Callable[[str], None]


def _find_message(messages: Messages, message_id: str | None) -> int | None:
    if message_id is None:
        return None
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].id == message_id:
            return index
    return None


def _last_assistant(messages: Messages) -> int | None:
    if messages and messages[-1].role == "assistant":
        return len(messages) - 1
    return None


def _target_index(messages: Messages, message_id: str | None) -> int | None:
    if message_id is not None:
        return _find_message(messages, message_id)
    return _last_assistant(messages)


def _replace_at(messages: Messages, index: int, **changes: Any) -> Messages:
    updated = messages[index].model_copy(update=changes)
    return messages[:index] + (updated,) + messages[index + 1 :]


def _new_message(
    message_id: str | None,
    *,
    content: str,
    role: str = "assistant",
    is_streaming: bool = True,
    metadata: dict[str, Any] | None = None,
) -> ChatMessage:
    return ChatMessage(
        id=message_id or f"local-{uuid4().hex}",
        role=role,
        content=content,
        is_streaming=is_streaming,
        metadata=metadata or {},
    )


def _clean_chunk(content: str) -> str:
    cleaned, stats = sanitize_text(content, strip=False)
    log_sanitization_stats(logger, location="deltas.message_content", stats=stats)
    return cleaned


class DeltaReconciler:
    """Applies decoded socket deltas to the store; never raises past ``apply``."""

    def __init__(
        self,
        store: ConversationStore,
        ledger: PendingMutationLedger,
        *,
        diagnostics: SyncDiagnostics | None = None,
        on_active_cleared: ActiveClearedCallback | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self.diagnostics = diagnostics or SyncDiagnostics()
        self._on_active_cleared = on_active_cleared

    def apply(self, delta: ConversationDelta, *, default_conversation_id: str | None = None) -> None:
        applied = False
        try:
            decoded = decode_delta(delta, default_conversation_id=default_conversation_id)
            applied = self._dispatch(decoded)
        except MalformedDeltaError as exc:
            self.diagnostics.malformed_deltas += 1
            logger.debug("Dropping malformed %s delta: %s", delta.source, exc)
        except Exception:
            self.diagnostics.malformed_deltas += 1
            logger.exception("Unexpected failure applying %s delta '%s'.", delta.source, delta.type)
        self._acknowledge(delta, applied)

    def apply_many(
        self,
        deltas: Iterable[ConversationDelta],
        *,
        default_conversation_id: str | None = None,
    ) -> None:
        with self._store.batch():
            for delta in deltas:
                self.apply(delta, default_conversation_id=default_conversation_id)

    def _acknowledge(self, delta: ConversationDelta, applied: bool) -> None:
        if delta.ack is None:
            return
        try:
            delta.ack({"ok": applied})
        except Exception:
            logger.warning("Delta acknowledgement callback failed.", exc_info=True)

    def _dispatch(self, decoded: DecodedDelta) -> bool:
        if isinstance(decoded, ConversationUpdated):
            return self._apply_conversation_updated(decoded)
        if isinstance(decoded, ConversationDeleted):
            return self._apply_conversation_deleted(decoded)
        if isinstance(decoded, UnknownDelta):
            self.diagnostics.unknown_deltas += 1
            logger.debug("Ignoring delta of unknown type '%s'.", decoded.type)
            return False
        return self._apply_message_delta(decoded)

    # Messages

    def _apply_message_delta(
        self,
        decoded: MessageAppend | MessageChunk | MessageReplace | MessageComplete | MessageStatus | MessageError,
    ) -> bool:
        if isinstance(decoded, MessageAppend):
            transform = self._append(decoded)
        elif isinstance(decoded, MessageChunk):
            transform = self._chunk(decoded)
        elif isinstance(decoded, MessageReplace):
            transform = self._replace(decoded)
        elif isinstance(decoded, MessageComplete):
            transform = self._complete(decoded)
        elif isinstance(decoded, MessageStatus):
            transform = self._status(decoded)
        else:
            transform = self._error(decoded)

        if not self._store.update_messages(decoded.conversation_id, transform):
            self.diagnostics.orphan_deltas += 1
            logger.debug(
                "Dropping %s delta for unknown conversation '%s'.",
                decoded.type,
                decoded.conversation_id,
            )
            return False
        return True

    @staticmethod
    def _append(decoded: MessageAppend) -> Callable[[Messages], Messages]:
        content = _clean_chunk(decoded.content)

        def transform(messages: Messages) -> Messages:
            if not content:
                return messages
            index = _find_message(messages, decoded.message_id)
            if index is None and decoded.message_id is None:
                last = _last_assistant(messages)
                if last is not None and messages[last].is_streaming:
                    index = last
            if index is not None:
                return _replace_at(messages, index, content=messages[index].content + content)
            return messages + (
                _new_message(
                    decoded.message_id,
                    content=content,
                    role=decoded.role,
                    is_streaming=decoded.role == "assistant",
                ),
            )

        return transform

    @staticmethod
    def _chunk(decoded: MessageChunk) -> Callable[[Messages], Messages]:
        content = _clean_chunk(decoded.content)

        def transform(messages: Messages) -> Messages:
            index = _find_message(messages, decoded.message_id)
            if index is None:
                return messages + (_new_message(decoded.message_id, content=content),)
            if not content:
                return messages
            return _replace_at(messages, index, content=messages[index].content + content)

        return transform

    @staticmethod
    def _replace(decoded: MessageReplace) -> Callable[[Messages], Messages]:
        content = _clean_chunk(decoded.content)

        def transform(messages: Messages) -> Messages:
            if not content:
                return messages
            index = _target_index(messages, decoded.message_id)
            if index is None:
                if decoded.message_id is None:
                    return messages
                return messages + (_new_message(decoded.message_id, content=content),)
            return _replace_at(messages, index, content=content)

        return transform

    @staticmethod
    def _complete(decoded: MessageComplete) -> Callable[[Messages], Messages]:
        def transform(messages: Messages) -> Messages:
            index = _target_index(messages, decoded.message_id)
            if index is None:
                return messages
            changes: dict[str, Any] = {"is_streaming": False}
            if decoded.content and not messages[index].content:
                changes["content"] = _clean_chunk(decoded.content)
            return _replace_at(messages, index, **changes)

        return transform

    @staticmethod
    def _status(decoded: MessageStatus) -> Callable[[Messages], Messages]:
        def transform(messages: Messages) -> Messages:
            index = _target_index(messages, decoded.message_id)
            if index is None:
                return messages
            metadata = {**messages[index].metadata, "status": decoded.status}
            return _replace_at(messages, index, metadata=metadata)

        return transform

    @staticmethod
    def _error(decoded: MessageError) -> Callable[[Messages], Messages]:
        text = _clean_chunk(decoded.error)

        def transform(messages: Messages) -> Messages:
            index = _target_index(messages, decoded.message_id)
            if index is None:
                return messages + (
                    _new_message(
                        decoded.message_id,
                        content=text,
                        is_streaming=False,
                        metadata={"error": True},
                    ),
                )
            current = messages[index]
            return _replace_at(
                messages,
                index,
                content=text or current.content,
                is_streaming=False,
                metadata={**current.metadata, "error": True},
            )

        return transform

    # Conversations

    def _apply_conversation_updated(self, decoded: ConversationUpdated) -> bool:
        conversation_id = decoded.conversation_id
        if self._ledger.has_pending("conversation", conversation_id, "deleted"):
            self.diagnostics.orphan_deltas += 1
            logger.debug("Discarding update for '%s'; a local delete is pending.", conversation_id)
            return False
        if (
            not self._store.has_conversation(conversation_id)
            and self._store.active_conversation_id != conversation_id
        ):
            self.diagnostics.orphan_deltas += 1
            logger.debug("Dropping update for unknown conversation '%s'.", conversation_id)
            return False

        immediate: dict[str, Any] = {}
        for field, value in decoded.changes.items():
            if field == "title":
                value, stats = sanitize_text(value, strip=True, single_line=True)
                log_sanitization_stats(logger, location="deltas.conversation_title", stats=stats)
            if field in GUARDED_CONVERSATION_FIELDS and self._ledger.has_pending(
                "conversation", conversation_id, field
            ):
                self._ledger.hold(PendingKey("conversation", conversation_id, field), value)
                self.diagnostics.held_deltas += 1
                logger.debug(
                    "Holding remote %s for '%s' until the local mutation settles.",
                    field,
                    conversation_id,
                )
                continue
            immediate[field] = value

        if immediate:
            self._store.update_conversation(conversation_id, **immediate)
        return True

    def _apply_conversation_deleted(self, decoded: ConversationDeleted) -> bool:
        conversation_id = decoded.conversation_id
        self._ledger.invalidate_entity("conversation", conversation_id)
        was_active = self._store.active_conversation_id == conversation_id
        with self._store.batch():
            removed = self._store.remove_conversation(conversation_id)
            if was_active:
                self._store.clear_active()

        if removed is None and not was_active:
            logger.debug("Conversation '%s' already absent; delete is a no-op.", conversation_id)
            return True
        logger.info("Conversation '%s' deleted remotely.", conversation_id)
        if was_active and self._on_active_cleared is not None:
            self._on_active_cleared(conversation_id)
        return True


__all__ = ["DeltaReconciler"]
