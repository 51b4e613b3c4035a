"""Staleness policy for the persistent package index."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nixcache.models.index import IndexStats

DEFAULT_MAX_AGE_HOURS = 24


def needs_update(
    stats: IndexStats,
    *,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    now: datetime | None = None,
) -> bool:
    """Return True when the index should be rebuilt from the catalog.

    True for an empty index, for an index with no update timestamp, and when
    the newest row is older than ``max_age_hours``. Pure: the answer depends
    only on ``stats`` and ``now``.
    """
    if stats.total_count == 0:
        return True
    if stats.last_updated is None:
        return True

    last_updated = stats.last_updated
    if last_updated.tzinfo is None:
        last_updated = last_updated.replace(tzinfo=UTC)
    current = now if now is not None else datetime.now(UTC)
    return current - last_updated > timedelta(hours=max_age_hours)
