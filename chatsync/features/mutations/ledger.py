from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from .types import EntityKind, MutationKind, PendingKey, PendingMutation

logger = logging.getLogger(__name__)


class PendingMutationLedger:
    """Outstanding optimistic mutations, keyed by (entity, id, field).

    Sequence numbers come from one ledger-wide counter, so they increase per key and are never
    reused. Only the mutation holding the latest sequence for its key may settle; anything
    older is stale. Nothing is retained for a key once it has no outstanding mutation.
    """

    def __init__(self, *, held_limit: int = 16) -> None:
        self._sequences = itertools.count(1)
        self._pending: dict[PendingKey, PendingMutation] = {}
        self._held: dict[PendingKey, deque[Any]] = {}
        self._held_limit = max(1, held_limit)

    def begin(self, key: PendingKey, kind: MutationKind, previous: Any) -> PendingMutation:
        sequence = next(self._sequences)
        superseded = self._pending.get(key)
        if superseded is not None:
            logger.debug(
                "Mutation %s on %s/%s.%s supersedes sequence %d with %d.",
                kind,
                key.entity,
                key.entity_id,
                key.field,
                superseded.sequence,
                sequence,
            )
        pending = PendingMutation(
            key=key,
            kind=kind,
            previous=previous,
            sequence=sequence,
            issued_at=datetime.now(timezone.utc),
        )
        self._pending[key] = pending
        return pending

    def is_current(self, pending: PendingMutation) -> bool:
        current = self._pending.get(pending.key)
        return current is not None and current.sequence == pending.sequence

    def settle(self, pending: PendingMutation) -> bool:
        if not self.is_current(pending):
            return False
        del self._pending[pending.key]
        return True

    def latest_sequence(self, key: PendingKey) -> int:
        pending = self._pending.get(key)
        return pending.sequence if pending is not None else 0

    def pending_for(self, key: PendingKey) -> PendingMutation | None:
        return self._pending.get(key)

    def revise_previous(self, key: PendingKey, revise: Callable[[Any], Any]) -> bool:
        """Rewrite the rollback snapshot of the outstanding mutation on ``key``, if any."""
        pending = self._pending.get(key)
        if pending is None:
            return False
        self._pending[key] = replace(pending, previous=revise(pending.previous))
        return True

    def has_pending(self, entity: EntityKind, entity_id: str, field: str) -> bool:
        return PendingKey(entity, entity_id, field) in self._pending

    def pending_fields(self, entity: EntityKind, entity_id: str) -> set[str]:
        return {
            key.field
            for key in self._pending
            if key.entity == entity and key.entity_id == entity_id
        }

    def outstanding(self) -> list[PendingMutation]:
        return sorted(self._pending.values(), key=lambda item: item.issued_at)

    def hold(self, key: PendingKey, value: Any) -> None:
        bucket = self._held.get(key)
        if bucket is None:
            bucket = deque(maxlen=self._held_limit)
            self._held[key] = bucket
        bucket.append(value)

    def release_held(self, key: PendingKey) -> list[Any]:
        bucket = self._held.pop(key, None)
        return list(bucket) if bucket else []

    def invalidate_entity(self, entity: EntityKind, entity_id: str) -> list[PendingMutation]:
        dropped: list[PendingMutation] = []
        for key in [item for item in self._pending if item.entity == entity and item.entity_id == entity_id]:
            dropped.append(self._pending.pop(key))
        for key in [item for item in self._held if item.entity == entity and item.entity_id == entity_id]:
            del self._held[key]
        if dropped:
            logger.debug(
                "Invalidated %d pending mutation(s) for %s '%s'.",
                len(dropped),
                entity,
                entity_id,
            )
        return dropped


__all__ = ["PendingMutationLedger"]
