from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from nixcache.errors import SerializationError
from nixcache.models.index import CachedRecord, PackageSummary

UNKNOWN_VERSION = "unknown"


class CatalogRecord(BaseModel):
    """Raw package record as handed over by a catalog source.

    Missing optional fields are defaulted here and nowhere else.
    """

    canonical_id: str
    name: str = ""
    version: str = UNKNOWN_VERSION
    description: str = ""

    @field_validator("canonical_id")
    @classmethod
    def validate_canonical_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("canonical_id must be a non-empty string")
        return v

    @field_validator("version", mode="before")
    @classmethod
    def default_version(cls, v: Any) -> Any:
        return UNKNOWN_VERSION if v is None else v

    @field_validator("name", "description", mode="before")
    @classmethod
    def default_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @model_validator(mode="after")
    def fill_name(self) -> CatalogRecord:
        if not self.name:
            self.name = self.canonical_id
        return self

    @classmethod
    def from_nix_json(cls, attr_path: str, payload: Any) -> CatalogRecord:
        """Convert one ``nix-env -qaP --json`` entry.

        Name comes from ``pname``, then ``name``, then the attribute path.
        Values of the wrong type are treated as missing.
        """
        if not isinstance(attr_path, str) or not attr_path.strip():
            raise SerializationError(f"Invalid attribute path: {attr_path!r}")
        if not isinstance(payload, Mapping):
            raise SerializationError(
                f"Catalog entry for {attr_path!r} is {type(payload).__name__}, expected an object"
            )

        meta = payload.get("meta")
        description = meta.get("description") if isinstance(meta, Mapping) else None

        return cls(
            canonical_id=attr_path,
            name=_text(payload.get("pname")) or _text(payload.get("name")) or attr_path,
            version=_text(payload.get("version")),
            description=_text(description),
        )

    @classmethod
    def coerce(cls, item: Any) -> CatalogRecord:
        """Accept anything a catalog source may yield.

        A ``CatalogRecord``, a mapping of its fields, or an
        ``(attr_path, nix_json)`` pair. Raises ``SerializationError`` otherwise.
        """
        if isinstance(item, cls):
            return item
        if isinstance(item, Mapping):
            try:
                return cls.model_validate(item)
            except ValidationError as exc:
                raise SerializationError(f"Malformed catalog record: {exc}") from exc
        if isinstance(item, tuple) and len(item) == 2:
            return cls.from_nix_json(*item)
        raise SerializationError(f"Unsupported catalog record type: {type(item).__name__}")

    def to_summary(self) -> PackageSummary:
        return PackageSummary(name=self.name, version=self.version, description=self.description)

    def to_cached(self, last_updated: datetime, popularity: int = 0) -> CachedRecord:
        return CachedRecord(
            canonical_id=self.canonical_id,
            name=self.name,
            version=self.version,
            description=self.description,
            last_updated=last_updated,
            popularity=popularity,
        )


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None
