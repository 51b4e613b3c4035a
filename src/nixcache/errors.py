from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    SCHEMA_ERROR = "SCHEMA_ERROR"
    QUERY_ERROR = "QUERY_ERROR"
    CATALOG_FETCH_FAILED = "CATALOG_FETCH_FAILED"
    SERIALIZATION_ERROR = "SERIALIZATION_ERROR"


class NixCacheError(Exception):
    """Base for every expected failure raised by nixcache.

    Carries a machine-readable code plus a human suggestion so callers
    (CLI, editor plugin) can render the failure without parsing messages.
    """

    code: ErrorCode = ErrorCode.QUERY_ERROR

    def __init__(
        self,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
        *,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class StorageUnavailableError(NixCacheError):
    """The package database could not be opened or created."""

    code = ErrorCode.STORAGE_UNAVAILABLE


class SchemaError(NixCacheError):
    """Schema creation failed during ``PackageIndex.initialize``."""

    code = ErrorCode.SCHEMA_ERROR


class QueryError(NixCacheError):
    """A statement against the package index failed.

    The index stays usable; only the failed call is affected.
    """

    code = ErrorCode.QUERY_ERROR


class CatalogFetchError(NixCacheError):
    """The catalog source failed. Aborts the current build attempt only."""

    code = ErrorCode.CATALOG_FETCH_FAILED

    def __init__(
        self,
        message: str,
        suggestion: str = "",
        recoverable: bool = True,
        *,
        records_committed: int = 0,
    ) -> None:
        super().__init__(message, suggestion, recoverable)
        self.records_committed = records_committed


class SerializationError(NixCacheError):
    """A raw catalog record could not be turned into a ``CatalogRecord``."""

    code = ErrorCode.SERIALIZATION_ERROR
