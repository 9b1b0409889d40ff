from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from chatsync.features.shared.errors import TransientNetworkError

EntityKind = Literal["conversation", "folder"]
MutationKind = Literal[
    "set_pinned",
    "set_archived",
    "rename",
    "move_to_folder",
    "delete",
    "create_folder",
    "rename_folder",
    "delete_folder",
]
MutationStatus = Literal["confirmed", "rolled_back", "superseded"]

# Ledger field name touched by each mutation kind.
MUTATION_FIELDS: dict[str, tuple[EntityKind, str]] = {
    "set_pinned": ("conversation", "pinned"),
    "set_archived": ("conversation", "archived"),
    "rename": ("conversation", "title"),
    "move_to_folder": ("conversation", "folder_id"),
    "delete": ("conversation", "deleted"),
    "create_folder": ("folder", "created"),
    "rename_folder": ("folder", "name"),
    "delete_folder": ("folder", "deleted"),
}


@dataclass(frozen=True)
class PendingKey:
    entity: EntityKind
    entity_id: str
    field: str


@dataclass(frozen=True)
class PendingMutation:
    key: PendingKey
    kind: MutationKind
    previous: Any
    sequence: int
    issued_at: datetime


@dataclass(frozen=True)
class MutationResult:
    status: MutationStatus
    kind: MutationKind
    entity_id: str
    value: Any = None
    error: TransientNetworkError | None = None

    @property
    def ok(self) -> bool:
        return self.status == "confirmed"
