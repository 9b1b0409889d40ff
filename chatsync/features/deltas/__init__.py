from __future__ import annotations

from .decoder import TYPE_ALIASES, canonical_type, decode_delta
from .listener import ConversationDeltaListener, StreamFactory
from .reconciler import DeltaReconciler
from .schemas import (
    ConversationDelta,
    ConversationDeleted,
    ConversationDeltaRequest,
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

__all__ = [
    "TYPE_ALIASES",
    "ConversationDelta",
    "ConversationDeleted",
    "ConversationDeltaListener",
    "ConversationDeltaRequest",
    "ConversationUpdated",
    "DecodedDelta",
    "DeltaReconciler",
    "MessageAppend",
    "MessageChunk",
    "MessageComplete",
    "MessageError",
    "MessageReplace",
    "MessageStatus",
    "StreamFactory",
    "UnknownDelta",
    "canonical_type",
    "decode_delta",
]
