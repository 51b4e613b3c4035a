from __future__ import annotations

from nixcache.models.catalog import CatalogRecord
from nixcache.models.index import CachedRecord, IndexStats, PackageSummary
from nixcache.models.sync import SyncPhase, SyncReport

__all__ = [
    # index
    "CachedRecord",
    "IndexStats",
    "PackageSummary",
    # catalog
    "CatalogRecord",
    # sync
    "SyncPhase",
    "SyncReport",
]
