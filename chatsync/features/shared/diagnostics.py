from __future__ import annotations

import logging
from dataclasses import asdict, dataclass


@dataclass
class SyncDiagnostics:
    malformed_deltas: int = 0
    unknown_deltas: int = 0
    orphan_deltas: int = 0
    held_deltas: int = 0
    discarded_held_deltas: int = 0
    replayed_held_deltas: int = 0
    stale_settlements: int = 0
    stale_loads: int = 0
    rollbacks: int = 0
    listener_errors: int = 0

    @property
    def changed(self) -> bool:
        return any(value > 0 for value in asdict(self).values())

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    def reset(self) -> None:
        for name in asdict(self):
            setattr(self, name, 0)


def log_diagnostics(
    logger: logging.Logger,
    *,
    location: str,
    diagnostics: SyncDiagnostics,
) -> None:
    if not diagnostics.changed:
        return
    counters = ", ".join(
        f"{name}={value}" for name, value in diagnostics.as_dict().items() if value
    )
    logger.debug("Sync diagnostics for %s (%s).", location, counters)


__all__ = [
    "SyncDiagnostics",
    "log_diagnostics",
]
