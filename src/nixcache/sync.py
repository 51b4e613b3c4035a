"""Background synchronization of the package index from the catalog source.

A build walks ``idle -> fetching -> converting -> committing (per batch) ->
done | failed``. ``done`` is logged and the synchronizer is back at ``idle``;
``failed`` stays until the next attempt starts. Catalog calls are blocking,
so each pull runs in a worker thread via ``asyncio.to_thread`` and never on
the event loop that serves searches. Every batch is its own transaction: a
failure midway keeps what was already committed and reports one
``CatalogFetchError`` for the attempt.
"""

from __future__ import annotations

import asyncio
import itertools
from contextlib import suppress
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from nixcache import freshness
from nixcache.errors import CatalogFetchError, SerializationError
from nixcache.models.catalog import CatalogRecord
from nixcache.models.sync import SyncPhase, SyncReport

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from nixcache.index import PackageIndex
    from nixcache.models.index import CachedRecord
    from nixcache.protocols import CatalogSource

log = structlog.get_logger()

DEFAULT_BATCH_SIZE = 1000
DEFAULT_POPULAR_SCORE = 100

METADATA_LAST_SYNC_AT = "last_full_sync_at"
METADATA_LAST_SYNC_COUNT = "last_full_sync_count"

POPULAR_PACKAGES: tuple[str, ...] = (
    # Programming languages
    "python3", "python310", "python311", "python312",
    "nodejs", "nodejs_20", "nodejs_22",
    "go", "rustc", "cargo",
    "ruby", "ruby_3_2", "ruby_3_3",
    "php", "php83",
    "java", "openjdk", "jdk17", "jdk21",
    # Development tools
    "git", "gh", "vim", "neovim", "emacs",
    "vscode", "code", "jetbrains",
    "docker", "docker-compose", "kubectl",
    "terraform", "ansible",
    # Databases
    "postgresql", "mysql", "redis", "mongodb", "sqlite",
    # Build tools
    "cmake", "make", "ninja", "meson",
    "gcc", "clang", "llvm",
    # Common utilities
    "curl", "wget", "jq", "ripgrep", "fd",
    "bat", "exa", "htop", "tmux", "zsh",
)  # fmt: skip


def _take(iterator: Iterator[Any], size: int) -> list[Any]:
    return list(itertools.islice(iterator, size))


class CatalogSynchronizer:
    """Repopulates a PackageIndex from a CatalogSource."""

    def __init__(
        self,
        index: PackageIndex,
        catalog: CatalogSource,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        popular_packages: Sequence[str] = POPULAR_PACKAGES,
        popular_score: int = DEFAULT_POPULAR_SCORE,
        seed_popular: bool = True,
        max_age_hours: float = freshness.DEFAULT_MAX_AGE_HOURS,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._index = index
        self._catalog = catalog
        self._batch_size = batch_size
        self._popular_packages = tuple(popular_packages)
        self._popular_score = popular_score
        self._seed_popular = seed_popular
        self._max_age_hours = max_age_hours
        self._phase = SyncPhase.IDLE
        self._records_committed = 0
        self._batches_committed = 0

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    async def needs_update(self) -> bool:
        stats = await self._index.stats()
        return freshness.needs_update(stats, max_age_hours=self._max_age_hours)

    # ------------------------------------------------------------------
    # Full build
    # ------------------------------------------------------------------

    async def build_from_catalog(self) -> int:
        """Pull the whole catalog and upsert it in batches.

        Returns the number of packages the index holds afterwards. Raises
        ``CatalogFetchError`` (with ``records_committed``) if the source fails;
        batches committed before the failure stay in the index.
        """
        self._records_committed = 0
        self._batches_committed = 0
        log.info("sync_build_started", batch_size=self._batch_size)

        try:
            await self._build()
            total = (await self._index.stats()).total_count
        except BaseException:
            self._phase = SyncPhase.FAILED
            raise

        self._phase = SyncPhase.DONE
        log.info(
            "sync_build_complete",
            records=self._records_committed,
            batches=self._batches_committed,
            index_total=total,
        )
        self._phase = SyncPhase.IDLE
        return total

    async def _build(self) -> None:
        self._phase = SyncPhase.FETCHING
        try:
            iterator = iter(await asyncio.to_thread(self._catalog.list_all))
        except Exception as exc:
            raise self._fetch_failed(exc) from exc

        while True:
            self._phase = SyncPhase.FETCHING
            try:
                raw_batch = await asyncio.to_thread(_take, iterator, self._batch_size)
            except Exception as exc:
                raise self._fetch_failed(exc) from exc
            if not raw_batch:
                return

            self._phase = SyncPhase.CONVERTING
            batch = _convert(raw_batch, datetime.now(UTC))

            self._phase = SyncPhase.COMMITTING
            await self._index.upsert_packages(batch)
            self._records_committed += len(batch)
            self._batches_committed += 1
            log.debug(
                "sync_batch_committed",
                batch=self._batches_committed,
                size=len(batch),
                committed=self._records_committed,
            )

    def _fetch_failed(self, exc: Exception) -> CatalogFetchError:
        message = exc.message if isinstance(exc, CatalogFetchError) else str(exc) or repr(exc)
        log.warning(
            "sync_catalog_fetch_failed",
            error=message,
            records_committed=self._records_committed,
            batches_committed=self._batches_committed,
        )
        return CatalogFetchError(
            f"Catalog source failed: {message}",
            suggestion="Previously committed batches were kept; retry the sync later.",
            records_committed=self._records_committed,
        )

    # ------------------------------------------------------------------
    # Popular subset
    # ------------------------------------------------------------------

    async def build_popular_subset(self) -> int:
        """Seed well-known packages with an elevated starting popularity.

        Gives instant answers to the most common searches while the full
        build is still running. Lookups that fail or find nothing are skipped.
        Rows that already exist keep their own popularity.
        """
        log.info("sync_popular_started", candidates=len(self._popular_packages))
        now = datetime.now(UTC)
        seeded: dict[str, CachedRecord] = {}

        for name in self._popular_packages:
            try:
                matches = await asyncio.to_thread(self._catalog.find, name)
            except Exception as exc:
                log.debug("sync_popular_lookup_failed", package=name, error=str(exc))
                continue

            record = _pick_match(name, matches)
            if record is None:
                log.debug("sync_popular_not_found", package=name)
                continue
            seeded[record.canonical_id] = record.to_cached(now, popularity=self._popular_score)

        await self._index.upsert_packages(list(seeded.values()))
        log.info("sync_popular_complete", seeded=len(seeded))
        return len(seeded)

    # ------------------------------------------------------------------
    # Whole attempt
    # ------------------------------------------------------------------

    async def refresh(self, *, force: bool = False) -> SyncReport:
        """Run one synchronization attempt and report how it went.

        Skips when the index is fresh unless ``force``. Seeds the popular
        subset first when the index is empty. Catalog failures end up in the
        report; storage errors propagate.
        """
        started_at = datetime.now(UTC)
        if not force and not await self.needs_update():
            log.info("sync_skipped", reason="index_fresh")
            return SyncReport(
                phase=SyncPhase.IDLE,
                skipped=True,
                started_at=started_at,
                finished_at=datetime.now(UTC),
            )

        seeded = 0
        try:
            if self._seed_popular and await self._index.is_empty():
                seeded = await self.build_popular_subset()
            total = await self.build_from_catalog()
        except CatalogFetchError as exc:
            log.warning("sync_failed", error=exc.message, records_committed=exc.records_committed)
            return SyncReport(
                phase=SyncPhase.FAILED,
                seeded=seeded,
                records_persisted=exc.records_committed,
                batches_committed=self._batches_committed,
                error=exc.message,
                started_at=started_at,
                finished_at=datetime.now(UTC),
            )

        finished_at = datetime.now(UTC)
        await self._index.set_metadata(METADATA_LAST_SYNC_AT, finished_at.isoformat())
        await self._index.set_metadata(METADATA_LAST_SYNC_COUNT, str(total))
        return SyncReport(
            phase=SyncPhase.DONE,
            seeded=seeded,
            records_persisted=total,
            batches_committed=self._batches_committed,
            started_at=started_at,
            finished_at=finished_at,
        )


class BackgroundSync:
    """Single background slot for synchronization attempts.

    ``trigger`` starts a refresh task unless one is already running, so
    repeated triggers never stack concurrent builds.
    """

    def __init__(self, synchronizer: CatalogSynchronizer) -> None:
        self._synchronizer = synchronizer
        self._task: asyncio.Task[SyncReport] | None = None
        self.last_report: SyncReport | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, *, force: bool = False) -> bool:
        """Start a refresh in the background. Returns False if one is running."""
        if self.is_running:
            log.debug("background_sync_already_running")
            return False
        self._task = asyncio.create_task(self._run(force), name="nixcache-sync")
        return True

    async def wait(self) -> SyncReport | None:
        """Wait for the current attempt (if any) and return the latest report."""
        if self._task is None or self._task.cancelled():
            return self.last_report
        # Shielded: cancelling a waiter must not abort the build itself.
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            return self.last_report

    async def cancel(self) -> None:
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task

    async def _run(self, force: bool) -> SyncReport:
        started_at = datetime.now(UTC)
        try:
            report = await self._synchronizer.refresh(force=force)
        except Exception as exc:
            log.error("background_sync_error", exc_info=True)
            report = SyncReport(
                phase=SyncPhase.FAILED,
                error=str(exc),
                started_at=started_at,
                finished_at=datetime.now(UTC),
            )
        self.last_report = report
        return report


def _convert(raw_batch: Iterable[Any], now: datetime) -> list[CachedRecord]:
    records: list[CachedRecord] = []
    for item in raw_batch:
        try:
            record = CatalogRecord.coerce(item)
        except SerializationError as exc:
            log.warning("sync_record_skipped", reason=exc.message)
            continue
        records.append(record.to_cached(now))
    return records


def _pick_match(name: str, matches: Iterable[Any]) -> CatalogRecord | None:
    candidates: list[CatalogRecord] = []
    for item in matches:
        try:
            candidates.append(CatalogRecord.coerce(item))
        except SerializationError as exc:
            log.debug("sync_popular_match_skipped", package=name, reason=exc.message)
            continue
    for candidate in candidates:
        if candidate.name.lower() == name.lower():
            return candidate
    return candidates[0] if candidates else None
