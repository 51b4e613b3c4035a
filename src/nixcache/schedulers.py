"""Background scheduler coroutines for index refreshes and result-cache cleanup."""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from nixcache.models.sync import SyncReport
    from nixcache.state import AppState

log = structlog.get_logger()

REFRESH_INITIAL_BACKOFF_SECONDS = 60
REFRESH_MAX_BACKOFF_SECONDS = 60 * 60
REFRESH_MAX_CONSECUTIVE_FAILURES = 8


def _jittered_delay(base_seconds: int) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


async def _refresh_once(state: AppState, *, force: bool) -> SyncReport | None:
    """Start a refresh in the background slot (or join the running one) and wait."""
    state.background.trigger(force=force)
    return await state.background.wait()


async def run_index_refresh_scheduler(state: AppState) -> None:
    """Keep the package index fresh according to ``settings.sync.mode``.

    ``off`` does nothing, ``startup`` runs one refresh if the index is stale,
    ``periodic`` keeps polling: the poll interval after a success, jittered
    exponential backoff after a failure, and a full poll-interval cooldown
    once failures pile up.
    """
    mode = state.settings.sync.mode
    if mode == "off":
        return

    if mode == "startup":
        try:
            await _refresh_once(state, force=False)
        except Exception:
            log.warning("index_refresh_scheduler_error", mode="startup_once", exc_info=True)
        return

    backoff_seconds = REFRESH_INITIAL_BACKOFF_SECONDS
    consecutive_failures = 0
    # After a failed attempt the seeded/partial rows look fresh, so retries
    # must bypass the freshness check.
    force = False

    while True:
        try:
            report = await _refresh_once(state, force=force)
            failed = report is None or not report.ok
        except Exception:
            log.warning("index_refresh_scheduler_error", mode="periodic", exc_info=True)
            failed = True

        poll_interval_seconds = state.settings.sync.poll_interval_hours * 3600

        if not failed:
            consecutive_failures = 0
            backoff_seconds = REFRESH_INITIAL_BACKOFF_SECONDS
            force = False
            await asyncio.sleep(poll_interval_seconds)
            continue

        force = True
        consecutive_failures += 1
        if consecutive_failures >= REFRESH_MAX_CONSECUTIVE_FAILURES:
            log.warning(
                "index_refresh_retry_suspended",
                consecutive_failures=consecutive_failures,
                cooldown_seconds=poll_interval_seconds,
            )
            consecutive_failures = 0
            backoff_seconds = REFRESH_INITIAL_BACKOFF_SECONDS
            await asyncio.sleep(poll_interval_seconds)
            continue

        await asyncio.sleep(_jittered_delay(backoff_seconds))
        backoff_seconds = min(backoff_seconds * 2, REFRESH_MAX_BACKOFF_SECONDS)


async def run_result_cache_cleanup_scheduler(state: AppState) -> None:
    """Purge expired result-cache entries on the configured interval."""
    interval_seconds = state.settings.result_cache.cleanup_interval_minutes * 60
    while True:
        await asyncio.sleep(interval_seconds)
        state.result_cache.cleanup_expired()
