"""Interactive package search: result cache, then local index, then catalog."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from nixcache.errors import CatalogFetchError, SerializationError
from nixcache.models.catalog import CatalogRecord

if TYPE_CHECKING:
    from nixcache.models.index import PackageSummary
    from nixcache.state import AppState

log = structlog.get_logger()


async def search_packages(state: AppState, query: str, limit: int = 10) -> list[PackageSummary]:
    """Search for packages, answering from the fastest layer that has results.

    A result-cache hit returns immediately. Otherwise the persistent index is
    searched (promoting what it returns); if it has nothing, the catalog
    source is asked directly in a worker thread. The answer is cached for the
    result cache's TTL.
    """
    cached = state.result_cache.get(query, limit)
    if cached is not None:
        log.debug("package_search", query=query, limit=limit, source="result_cache")
        return cached

    records = await state.index.search(query, limit)
    if records:
        results = [record.to_summary() for record in records]
        source = "index"
    else:
        results = await _search_catalog(state, query, limit)
        source = "catalog"

    state.result_cache.put(query, limit, results)
    log.debug("package_search", query=query, limit=limit, source=source, results=len(results))
    return results


async def _search_catalog(state: AppState, query: str, limit: int) -> list[PackageSummary]:
    try:
        found = await asyncio.to_thread(state.catalog.find, query)
    except CatalogFetchError:
        raise
    except Exception as exc:
        raise CatalogFetchError(
            f"Catalog lookup for {query!r} failed: {exc}",
            suggestion="The local index has no match; retry once the catalog is reachable.",
        ) from exc

    results: list[PackageSummary] = []
    for item in found:
        if len(results) >= limit:
            break
        try:
            record = CatalogRecord.coerce(item)
        except SerializationError as exc:
            log.debug("package_search_record_skipped", query=query, reason=exc.message)
            continue
        results.append(record.to_summary())
    return results
