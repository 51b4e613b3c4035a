"""Protocol interfaces for swappable components.

The synchronizer, lookup facade and AppState reference these protocols, not
concrete implementations. This allows:
- Tests to use lightweight in-memory catalog fakes
- Real sources (nix-env over WSL, a JSON dump, an HTTP mirror) to be swapped
  without touching the index or the synchronizer
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterator

    from nixcache.models.catalog import CatalogRecord


class CatalogSource(Protocol):
    """Interface for the upstream package catalog.

    Both calls are blocking and may take seconds to minutes. Callers inside
    nixcache always run them in a worker thread. Any exception (raised by the
    call itself or while iterating ``list_all``) is treated as one failure of
    the current attempt.
    """

    def list_all(self) -> Iterator[CatalogRecord]: ...

    def find(self, query: str) -> list[CatalogRecord]: ...
