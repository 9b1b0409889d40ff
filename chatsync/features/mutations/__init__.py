from __future__ import annotations

from .coordinator import PROVISIONAL_FOLDER_PREFIX, MutationCoordinator, is_provisional_folder
from .ledger import PendingMutationLedger
from .types import MUTATION_FIELDS, MutationKind, MutationResult, MutationStatus, PendingKey, PendingMutation

__all__ = [
    "MUTATION_FIELDS",
    "PROVISIONAL_FOLDER_PREFIX",
    "MutationCoordinator",
    "MutationKind",
    "MutationResult",
    "MutationStatus",
    "PendingKey",
    "PendingMutation",
    "PendingMutationLedger",
    "is_provisional_folder",
]
