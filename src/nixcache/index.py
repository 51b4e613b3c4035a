"""SQLite-backed persistent package index.

The index is the durable local mirror of the catalog. It survives restarts,
answers substring searches ranked by popularity, and learns from use: every
search bumps the popularity of the rows it returned (read-through promotion,
switchable via ``promote_on_search``).

Unlike the best-effort result cache, the index propagates failures:
``aiosqlite.Error`` from a statement surfaces as ``QueryError``, schema
creation failures as ``SchemaError``, and an unusable database file as
``StorageUnavailableError``. A requested write is never silently dropped.

Every statement on the shared connection runs under one asyncio lock. A
batch is an open transaction between its INSERTs and its COMMIT or ROLLBACK,
and a read on the same connection would see it; holding the lock keeps
searches from returning rows of a batch that is later rolled back.

Matching is case-insensitive for all of Unicode: SQLite's ``LOWER()`` only
folds ASCII, so ``initialize`` registers Python's ``str.lower`` as
``py_lower`` on the connection.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from nixcache.errors import QueryError, SchemaError, StorageUnavailableError
from nixcache.models.index import CachedRecord, IndexStats

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

log = structlog.get_logger()

_CREATE_PACKAGES_TABLE = """
CREATE TABLE IF NOT EXISTS packages (
    canonical_id TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    version      TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    last_updated TEXT NOT NULL,
    popularity   INTEGER NOT NULL DEFAULT 0
)
"""

_CREATE_NAME_INDEX = "CREATE INDEX IF NOT EXISTS idx_packages_name ON packages(name)"
_CREATE_POPULARITY_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_packages_popularity ON packages(popularity DESC)"
)

_CREATE_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS metadata (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

# popularity is not in the UPDATE clause: an existing row keeps its counter,
# a new row starts at the supplied seed.
_UPSERT_PACKAGE = """
INSERT INTO packages (canonical_id, name, version, description, last_updated, popularity)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(canonical_id) DO UPDATE SET
    name         = excluded.name,
    version      = excluded.version,
    description  = excluded.description,
    last_updated = excluded.last_updated
"""

_SEARCH_PACKAGES = """
SELECT canonical_id, name, version, description, last_updated, popularity
FROM packages
WHERE py_lower(name) LIKE ? ESCAPE '\\' OR py_lower(description) LIKE ? ESCAPE '\\'
ORDER BY popularity DESC, name ASC
LIMIT ?
"""

_SELECT_COLUMNS = "canonical_id, name, version, description, last_updated, popularity"

# Stay well under SQLITE_MAX_VARIABLE_NUMBER on old builds (999).
_MAX_IN_PARAMS = 500


class PackageIndex:
    """Persistent, queryable mirror of the package catalog."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        *,
        promote_on_search: bool = True,
        promotion_step: int = 1,
    ) -> None:
        self._db = db
        self.promote_on_search = promote_on_search
        self.promotion_step = promotion_step
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create tables and indexes. Safe to call on every startup."""
        try:
            await self._db.create_function("py_lower", 1, str.lower, deterministic=True)
            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute(_CREATE_PACKAGES_TABLE)
            await self._db.execute(_CREATE_NAME_INDEX)
            await self._db.execute(_CREATE_POPULARITY_INDEX)
            await self._db.execute(_CREATE_METADATA_TABLE)
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.error("index_schema_error", exc_info=True)
            raise SchemaError(
                f"Failed to create package index schema: {exc}",
                suggestion="Delete the package database file and let nixcache rebuild it.",
            ) from exc
        log.info("index_initialized")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int) -> list[CachedRecord]:
        """Case-insensitive substring search over name and description.

        Results are ranked by popularity (descending) then name. When
        promotion is enabled each returned row's popularity is bumped once;
        the returned records show the value from before the bump.
        """
        if limit < 1:
            raise QueryError(f"limit must be a positive integer, got {limit}")

        pattern = f"%{_escape_like(query.lower())}%"
        async with self._lock:
            try:
                cursor = await self._db.execute(_SEARCH_PACKAGES, (pattern, pattern, limit))
                rows = await cursor.fetchall()
            except aiosqlite.Error as exc:
                log.warning("index_search_error", query=query, exc_info=True)
                raise QueryError(
                    f"Package search for {query!r} failed: {exc}", recoverable=True
                ) from exc

        packages = [_row_to_record(row) for row in rows]
        log.debug("index_search", query=query, limit=limit, results=len(packages))

        if packages and self.promote_on_search and self.promotion_step:
            await self._increment_popularity([p.canonical_id for p in packages])

        return packages

    async def get_package(self, canonical_id: str) -> CachedRecord | None:
        """Point lookup by canonical id. Does not touch popularity."""
        async with self._lock:
            try:
                cursor = await self._db.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM packages WHERE canonical_id = ?",
                    (canonical_id,),
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as exc:
                raise QueryError(
                    f"Lookup of {canonical_id!r} failed: {exc}", recoverable=True
                ) from exc
        return None if row is None else _row_to_record(row)

    async def stats(self) -> IndexStats:
        async with self._lock:
            try:
                cursor = await self._db.execute(
                    "SELECT COUNT(*), MAX(last_updated) FROM packages"
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as exc:
                raise QueryError(
                    f"Reading index statistics failed: {exc}", recoverable=True
                ) from exc

        total, last_updated = row if row is not None else (0, None)
        return IndexStats(
            total_count=total or 0,
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )

    async def is_empty(self) -> bool:
        return (await self.stats()).total_count == 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_packages(self, packages: Sequence[CachedRecord]) -> int:
        """Insert or update a batch in a single transaction.

        All rows commit together or none do. Existing rows keep their
        popularity; new rows start at the record's ``popularity``.
        """
        if not packages:
            return 0

        params = [
            (
                p.canonical_id,
                p.name,
                p.version,
                p.description,
                _to_iso(p.last_updated),
                p.popularity,
            )
            for p in packages
        ]
        async with self._lock:
            try:
                await self._db.executemany(_UPSERT_PACKAGE, params)
                await self._db.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                log.warning("index_upsert_error", batch_size=len(params), exc_info=True)
                raise QueryError(
                    f"Upsert of {len(params)} packages failed and was rolled back: {exc}",
                    recoverable=True,
                ) from exc

        log.info("index_upsert", packages=len(params))
        return len(params)

    async def clear(self) -> int:
        """Delete every package row. Metadata is kept."""
        async with self._lock:
            try:
                cursor = await self._db.execute("DELETE FROM packages")
                deleted = cursor.rowcount
                await self._db.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise QueryError(f"Clearing the package index failed: {exc}") from exc

        log.info("index_cleared", deleted=deleted)
        return deleted

    async def _increment_popularity(self, canonical_ids: Iterable[str]) -> None:
        ids = list(canonical_ids)
        async with self._lock:
            try:
                for start in range(0, len(ids), _MAX_IN_PARAMS):
                    chunk = ids[start : start + _MAX_IN_PARAMS]
                    placeholders = ",".join("?" * len(chunk))
                    await self._db.execute(
                        "UPDATE packages SET popularity = popularity + ? "
                        f"WHERE canonical_id IN ({placeholders})",
                        (self.promotion_step, *chunk),
                    )
                await self._db.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                log.warning("index_promotion_error", packages=len(ids), exc_info=True)
                raise QueryError(f"Updating search popularity failed: {exc}", recoverable=True) from exc

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_metadata(self, key: str) -> str | None:
        async with self._lock:
            try:
                cursor = await self._db.execute(
                    "SELECT value FROM metadata WHERE key = ?", (key,)
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as exc:
                raise QueryError(
                    f"Reading metadata {key!r} failed: {exc}", recoverable=True
                ) from exc
        return None if row is None else row[0]

    async def set_metadata(self, key: str, value: str) -> None:
        async with self._lock:
            try:
                await self._db.execute(
                    "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)", (key, value)
                )
                await self._db.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise QueryError(f"Writing metadata {key!r} failed: {exc}", recoverable=True) from exc

    async def _rollback(self) -> None:
        try:
            await self._db.rollback()
        except aiosqlite.Error:
            log.warning("index_rollback_error", exc_info=True)


@asynccontextmanager
async def open_index(db_path: str | Path, **kwargs: Any) -> AsyncIterator[PackageIndex]:
    """Open (creating if needed) the index database, initialise it, close on exit.

    Raises ``StorageUnavailableError`` if the file or its directory cannot be
    created or opened.
    """
    path = str(db_path)
    if path != ":memory:":
        resolved = Path(path).expanduser()
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailableError(
                f"Cannot create cache directory {resolved.parent}: {exc}",
                suggestion="Check permissions or set NIXCACHE__INDEX__DB_PATH to a writable location.",
            ) from exc
        path = str(resolved)

    try:
        db = await aiosqlite.connect(path)
    except (aiosqlite.Error, OSError) as exc:
        raise StorageUnavailableError(
            f"Cannot open package database {path}: {exc}",
            suggestion="Check permissions or set NIXCACHE__INDEX__DB_PATH to a writable location.",
        ) from exc

    try:
        index = PackageIndex(db, **kwargs)
        await index.initialize()
        log.debug("index_opened", path=path)
        yield index
    finally:
        await db.close()


def _row_to_record(row: Sequence[Any]) -> CachedRecord:
    return CachedRecord(
        canonical_id=row[0],
        name=row[1],
        version=row[2],
        description=row[3],
        last_updated=datetime.fromisoformat(row[4]),
        popularity=row[5],
    )


def _to_iso(value: datetime) -> str:
    # Fixed-width UTC text so MAX(last_updated) orders chronologically.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
