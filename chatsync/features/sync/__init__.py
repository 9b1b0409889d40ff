from __future__ import annotations

from .bootstrap import InitialState, load_initial_state
from .session import ConversationSync

__all__ = [
    "ConversationSync",
    "InitialState",
    "load_initial_state",
]
