"""Process entry point for embedding nixcache.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the ``lifespan`` async context manager
- Start and stop the background schedulers
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

import structlog

from nixcache import __version__
from nixcache.config import Settings
from nixcache.index import open_index
from nixcache.result_cache import ResultCache
from nixcache.schedulers import run_index_refresh_scheduler, run_result_cache_cleanup_scheduler
from nixcache.state import AppState
from nixcache.sync import BackgroundSync, CatalogSynchronizer

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from nixcache.protocols import CatalogSource

log = structlog.get_logger()


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout belongs to the host program's own output
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(
    catalog: CatalogSource,
    settings: Settings | None = None,
) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the process lifetime."""
    settings = settings if settings is not None else Settings()
    setup_logging(settings)

    log.info("nixcache_starting", version=__version__, sync_mode=settings.sync.mode)

    async with open_index(
        settings.index.db_path,
        promote_on_search=settings.index.promote_on_search,
        promotion_step=settings.index.promotion_step,
    ) as index:
        synchronizer = CatalogSynchronizer(
            index,
            catalog,
            batch_size=settings.sync.batch_size,
            popular_score=settings.sync.popular_score,
            seed_popular=settings.sync.seed_popular,
            max_age_hours=settings.sync.max_age_hours,
        )
        state = AppState(
            settings=settings,
            index=index,
            result_cache=ResultCache(settings.result_cache.ttl_seconds),
            catalog=catalog,
            synchronizer=synchronizer,
            background=BackgroundSync(synchronizer),
        )

        refresh_task = asyncio.create_task(run_index_refresh_scheduler(state))
        cleanup_task = asyncio.create_task(run_result_cache_cleanup_scheduler(state))

        stats = await index.stats()
        log.info(
            "nixcache_started",
            version=__version__,
            packages=stats.total_count,
            last_updated=stats.last_updated.isoformat() if stats.last_updated else None,
        )

        try:
            yield state
        finally:
            refresh_task.cancel()
            cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await refresh_task
            with suppress(asyncio.CancelledError):
                await cleanup_task
            # Committed batches stay valid; an interrupted build simply stops.
            await state.background.cancel()
            log.info("nixcache_stopping")
