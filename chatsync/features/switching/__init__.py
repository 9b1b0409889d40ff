from __future__ import annotations

from .controller import ConversationSwitchController, SwitchOutcome, SwitchState

__all__ = [
    "ConversationSwitchController",
    "SwitchOutcome",
    "SwitchState",
]
