from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class PackageSummary(BaseModel):
    """Lightweight search hit held by the in-memory result cache."""

    name: str
    version: str
    description: str


class CachedRecord(BaseModel):
    """One row of the persistent package index."""

    canonical_id: str  # Nix attribute path, e.g. "nixpkgs.ripgrep" (primary key)
    name: str
    version: str
    description: str
    last_updated: datetime
    # Seed value on first insert only; an existing row keeps its own count.
    popularity: int = 0

    def to_summary(self) -> PackageSummary:
        return PackageSummary(name=self.name, version=self.version, description=self.description)


class IndexStats(BaseModel):
    total_count: int
    last_updated: datetime | None = None  # Most recent last_updated across all rows
