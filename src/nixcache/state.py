"""Application state container.

AppState is created once by the lifespan context manager (see app.py) and
passed to every caller that needs the shared cache, index or synchronizer.
Nothing in nixcache keeps module-level singletons.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nixcache.config import Settings
    from nixcache.index import PackageIndex
    from nixcache.protocols import CatalogSource
    from nixcache.result_cache import ResultCache
    from nixcache.sync import BackgroundSync, CatalogSynchronizer


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    index: PackageIndex
    result_cache: ResultCache
    catalog: CatalogSource
    synchronizer: CatalogSynchronizer
    background: BackgroundSync
