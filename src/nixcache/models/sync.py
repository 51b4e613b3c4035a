from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class SyncPhase(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    CONVERTING = "converting"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class SyncReport(BaseModel):
    """Outcome of one synchronization attempt."""

    phase: SyncPhase
    skipped: bool = False  # Index was fresh and the attempt was not forced
    seeded: int = 0  # Popular packages seeded before the full build
    records_persisted: int = 0  # Index size after the build, or rows committed before a failure
    batches_committed: int = 0
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
