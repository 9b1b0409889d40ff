from __future__ import annotations


class ChatSyncError(Exception):
    """Base exception for conversation synchronization failures."""


class ConversationNotFoundError(ChatSyncError):
    pass


class FolderNotFoundError(ChatSyncError):
    pass


class MutationValidationError(ChatSyncError):
    pass


class TransientNetworkError(ChatSyncError):
    """A remote call failed; the local change was rolled back and may be retried."""

    def __init__(self, operation: str, entity_id: str | None, message: str | None = None):
        self.operation = operation
        self.entity_id = entity_id
        detail = message or "remote call failed"
        target = f" for '{entity_id}'" if entity_id else ""
        super().__init__(f"{operation}{target}: {detail}")


class MalformedDeltaError(ChatSyncError):
    pass


class StaleResultDiscarded(ChatSyncError):
    """A load result arrived after a newer switch request; it is dropped, not applied."""

    def __init__(self, token: int, latest_token: int):
        self.token = token
        self.latest_token = latest_token
        super().__init__(f"Load token {token} superseded by {latest_token}.")


__all__ = [
    "ChatSyncError",
    "ConversationNotFoundError",
    "FolderNotFoundError",
    "MalformedDeltaError",
    "MutationValidationError",
    "StaleResultDiscarded",
    "TransientNetworkError",
]
