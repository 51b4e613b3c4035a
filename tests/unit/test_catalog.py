"""Unit tests for catalog records and the nix-env JSON dump source."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from nixcache.catalog import NixEnvJsonCatalog, iter_catalog_records, parse_nix_env_json
from nixcache.errors import CatalogFetchError, SerializationError
from nixcache.models.catalog import CatalogRecord

if TYPE_CHECKING:
    from pathlib import Path

NIX_ENV_DUMP = {
    "nixpkgs.ripgrep": {
        "name": "ripgrep-14.1.0",
        "pname": "ripgrep",
        "version": "14.1.0",
        "system": "x86_64-linux",
        "meta": {"description": "A utility that combines the usability of ag with grep"},
    },
    "nixpkgs.hello": {
        "name": "hello-2.12.1",
        "pname": "hello",
        "version": "2.12.1",
        "meta": {"description": "A program that produces a familiar, friendly greeting"},
    },
    "nixpkgs.bare": {},
    "nixpkgs.broken": "not-an-object",
}


# ---------------------------------------------------------------------------
# CatalogRecord
# ---------------------------------------------------------------------------


class TestCatalogRecordDefaults:
    def test_missing_optional_fields_default(self) -> None:
        record = CatalogRecord(canonical_id="nixpkgs.foo")
        assert record.name == "nixpkgs.foo"
        assert record.version == "unknown"
        assert record.description == ""

    def test_none_values_default(self) -> None:
        record = CatalogRecord.model_validate(
            {"canonical_id": "nixpkgs.foo", "name": None, "version": None, "description": None}
        )
        assert record.name == "nixpkgs.foo"
        assert record.version == "unknown"
        assert record.description == ""

    def test_blank_canonical_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CatalogRecord(canonical_id="  ")

    def test_to_cached(self) -> None:
        now = datetime(2026, 10, 19, tzinfo=UTC)
        cached = CatalogRecord(canonical_id="nixpkgs.jq", name="jq").to_cached(now, popularity=100)
        assert cached.canonical_id == "nixpkgs.jq"
        assert cached.last_updated == now
        assert cached.popularity == 100
        assert cached.version == "unknown"


class TestFromNixJson:
    def test_full_entry(self) -> None:
        record = CatalogRecord.from_nix_json("nixpkgs.ripgrep", NIX_ENV_DUMP["nixpkgs.ripgrep"])
        assert record.canonical_id == "nixpkgs.ripgrep"
        assert record.name == "ripgrep"
        assert record.version == "14.1.0"
        assert record.description.startswith("A utility")

    def test_falls_back_to_name_then_attr_path(self) -> None:
        assert CatalogRecord.from_nix_json("nixpkgs.x", {"name": "x-1.0"}).name == "x-1.0"
        assert CatalogRecord.from_nix_json("nixpkgs.x", {}).name == "nixpkgs.x"

    def test_empty_entry_gets_defaults(self) -> None:
        record = CatalogRecord.from_nix_json("nixpkgs.bare", {})
        assert record.version == "unknown"
        assert record.description == ""

    def test_wrongly_typed_values_treated_as_missing(self) -> None:
        record = CatalogRecord.from_nix_json(
            "nixpkgs.odd", {"pname": 42, "version": ["1"], "meta": "nope"}
        )
        assert record.name == "nixpkgs.odd"
        assert record.version == "unknown"
        assert record.description == ""

    def test_non_mapping_payload_raises(self) -> None:
        with pytest.raises(SerializationError):
            CatalogRecord.from_nix_json("nixpkgs.broken", "not-an-object")

    def test_blank_attr_path_raises(self) -> None:
        with pytest.raises(SerializationError):
            CatalogRecord.from_nix_json("", {"pname": "x"})


class TestCoerce:
    def test_record_passes_through(self) -> None:
        record = CatalogRecord(canonical_id="nixpkgs.a")
        assert CatalogRecord.coerce(record) is record

    def test_mapping(self) -> None:
        record = CatalogRecord.coerce({"canonical_id": "nixpkgs.a", "name": "a"})
        assert record.version == "unknown"

    def test_nix_json_pair(self) -> None:
        record = CatalogRecord.coerce(("nixpkgs.hello", NIX_ENV_DUMP["nixpkgs.hello"]))
        assert record.name == "hello"

    def test_invalid_mapping_raises(self) -> None:
        with pytest.raises(SerializationError):
            CatalogRecord.coerce({"name": "no id"})

    def test_unsupported_type_raises(self) -> None:
        with pytest.raises(SerializationError):
            CatalogRecord.coerce(42)


# ---------------------------------------------------------------------------
# nix-env JSON dump
# ---------------------------------------------------------------------------


class TestParseNixEnvJson:
    def test_invalid_json_raises(self) -> None:
        with pytest.raises(CatalogFetchError):
            parse_nix_env_json("{not json")

    def test_non_object_raises(self) -> None:
        with pytest.raises(CatalogFetchError):
            parse_nix_env_json("[1, 2]")

    def test_iter_skips_unreadable_entries(self) -> None:
        records = list(iter_catalog_records(NIX_ENV_DUMP))
        assert [r.canonical_id for r in records] == [
            "nixpkgs.bare",
            "nixpkgs.hello",
            "nixpkgs.ripgrep",
        ]


class TestNixEnvJsonCatalog:
    @pytest.fixture()
    def dump_path(self, tmp_path: Path) -> Path:
        path = tmp_path / "nix-env.json"
        path.write_text(json.dumps(NIX_ENV_DUMP), encoding="utf-8")
        return path

    def test_list_all(self, dump_path: Path) -> None:
        catalog = NixEnvJsonCatalog(dump_path)
        assert len(list(catalog.list_all())) == 3

    def test_find_matches_name_and_attr_path(self, dump_path: Path) -> None:
        catalog = NixEnvJsonCatalog(dump_path)
        assert [r.name for r in catalog.find("RIP")] == ["ripgrep"]
        assert [r.canonical_id for r in catalog.find("bare")] == ["nixpkgs.bare"]
        assert catalog.find("missing") == []

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        catalog = NixEnvJsonCatalog(tmp_path / "absent.json")
        with pytest.raises(CatalogFetchError):
            catalog.list_all()
