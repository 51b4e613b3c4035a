"""Integration test fixtures.

Provides a fully wired AppState over in-memory SQLite and an in-memory
catalog seeded with ``sample_records`` (see tests/conftest.py).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from nixcache.config import Settings
from nixcache.index import PackageIndex
from nixcache.result_cache import ResultCache
from nixcache.state import AppState
from nixcache.sync import BackgroundSync, CatalogSynchronizer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from nixcache.models.catalog import CatalogRecord


@pytest.fixture()
def catalog(catalog_factory, sample_records: list[CatalogRecord]):
    return catalog_factory(sample_records)


@pytest.fixture()
async def app_state(catalog) -> AsyncIterator[AppState]:
    """AppState with an empty index; tests populate it as they need."""
    async with aiosqlite.connect(":memory:") as db:
        index = PackageIndex(db)
        await index.initialize()
        synchronizer = CatalogSynchronizer(index, catalog, seed_popular=False)
        yield AppState(
            settings=Settings(sync={"mode": "off"}),
            index=index,
            result_cache=ResultCache(300),
            catalog=catalog,
            synchronizer=synchronizer,
            background=BackgroundSync(synchronizer),
        )
