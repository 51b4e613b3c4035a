"""Catalog source backed by a captured ``nix-env -qaP --json`` dump.

The dump is an object keyed by attribute path::

    {"nixpkgs.ripgrep": {"pname": "ripgrep", "version": "14.1.0",
                         "meta": {"description": "..."}}, ...}

Producing the dump (running nix-env locally, through WSL, or downloading it)
is the caller's business; this class only reads and interprets the file.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog

from nixcache.errors import CatalogFetchError, SerializationError
from nixcache.models.catalog import CatalogRecord

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

log = structlog.get_logger()


def parse_nix_env_json(payload: str | bytes) -> dict[str, Any]:
    """Decode ``nix-env --json`` output into the raw attr-path mapping."""
    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise CatalogFetchError(f"Catalog dump is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CatalogFetchError(
            f"Catalog dump must be a JSON object keyed by attribute path, got {type(data).__name__}"
        )
    return data


def iter_catalog_records(raw: dict[str, Any]) -> Iterator[CatalogRecord]:
    """Convert raw entries in attr-path order, skipping ones that cannot be read."""
    for attr_path in sorted(raw):
        try:
            yield CatalogRecord.from_nix_json(attr_path, raw[attr_path])
        except SerializationError as exc:
            log.warning("catalog_record_skipped", attr_path=attr_path, reason=exc.message)


class NixEnvJsonCatalog:
    """CatalogSource reading a nix-env JSON dump from disk."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[str, Any]:
        try:
            payload = self.path.read_bytes()
        except OSError as exc:
            raise CatalogFetchError(
                f"Cannot read catalog dump {self.path}: {exc}",
                suggestion="Regenerate it with 'nix-env -qaP --json > dump.json'.",
            ) from exc
        data = parse_nix_env_json(payload)
        log.debug("catalog_dump_loaded", path=str(self.path), entries=len(data))
        return data

    def list_all(self) -> Iterator[CatalogRecord]:
        return iter_catalog_records(self._load())

    def find(self, query: str) -> list[CatalogRecord]:
        needle = query.lower()
        return [
            record
            for record in iter_catalog_records(self._load())
            if needle in record.name.lower() or needle in record.canonical_id.lower()
        ]
