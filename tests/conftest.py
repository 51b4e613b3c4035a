"""Shared test fixtures for the nixcache test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from nixcache.index import PackageIndex
from nixcache.models.catalog import CatalogRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator


class FakeCatalog:
    """In-memory CatalogSource.

    ``fail_after`` makes ``list_all`` raise after yielding that many records,
    mimicking a connection that drops mid-stream.
    """

    def __init__(
        self,
        records: list[CatalogRecord] | None = None,
        *,
        fail_after: int | None = None,
        list_error: Exception | None = None,
        find_error: Exception | None = None,
        find_results: dict[str, list] | None = None,
    ) -> None:
        self.records = records or []
        self.fail_after = fail_after
        self.list_error = list_error
        self.find_error = find_error
        self.find_results = find_results
        self.list_calls = 0
        self.find_calls: list[str] = []

    def list_all(self) -> Iterator[CatalogRecord]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return self._generate()

    def _generate(self) -> Iterator[CatalogRecord]:
        for i, record in enumerate(self.records):
            if self.fail_after is not None and i >= self.fail_after:
                raise ConnectionError("catalog connection dropped")
            yield record

    def find(self, query: str) -> list:
        self.find_calls.append(query)
        if self.find_error is not None:
            raise self.find_error
        if self.find_results is not None:
            return self.find_results.get(query, [])
        needle = query.lower()
        return [r for r in self.records if needle in r.name.lower()]


def make_records(count: int, prefix: str = "pkg") -> list[CatalogRecord]:
    return [
        CatalogRecord(
            canonical_id=f"nixpkgs.{prefix}{i:05d}",
            name=f"{prefix}{i:05d}",
            version="1.0",
            description=f"Generated test package number {i}",
        )
        for i in range(count)
    ]


@pytest.fixture()
def records_factory() -> Callable[..., list[CatalogRecord]]:
    return make_records


@pytest.fixture()
def catalog_factory() -> type[FakeCatalog]:
    return FakeCatalog


@pytest.fixture()
def sample_records() -> list[CatalogRecord]:
    """A handful of realistic nixpkgs entries."""
    return [
        CatalogRecord(
            canonical_id="nixpkgs.firefox",
            name="Firefox",
            version="131.0",
            description="A web browser built from Firefox source tree",
        ),
        CatalogRecord(
            canonical_id="nixpkgs.ripgrep",
            name="ripgrep",
            version="14.1.0",
            description="A utility that combines the usability of The Silver Searcher with grep",
        ),
        CatalogRecord(
            canonical_id="nixpkgs.neovim",
            name="neovim",
            version="0.10.1",
            description="Vim text editor fork focused on extensibility and agility",
        ),
        CatalogRecord(
            canonical_id="nixpkgs.vim",
            name="vim",
            version="9.1.0",
            description="The most popular clone of the VI editor",
        ),
    ]


@pytest.fixture()
async def index() -> AsyncIterator[PackageIndex]:
    """Initialised PackageIndex over an in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        package_index = PackageIndex(db)
        await package_index.initialize()
        yield package_index
