"""nixcache settings.

Four sections, one per moving part: ``index`` (where the package database
lives and how searches promote rows), ``result_cache`` (TTL and purge
cadence), ``sync`` (when and how the index is refilled from the catalog) and
``logging``.

A value set in code wins over ``NIXCACHE__<SECTION>__<FIELD>`` in the
environment, which wins over ``nixcache.yaml`` (working directory first, then
the user config directory). Anything left unset keeps its default, so the
file is optional.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_CACHE_DIR = platformdirs.user_cache_dir("nixcache")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_CACHE_DIR) / "packages.db")


def _find_config_file() -> str | None:
    """Return the path of the first nixcache.yaml found, or None."""
    candidates = [
        Path("nixcache.yaml"),
        Path(platformdirs.user_config_dir("nixcache")) / "nixcache.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class IndexSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    # Read-through promotion: every search bumps the popularity of what it returned.
    promote_on_search: bool = True
    promotion_step: int = Field(default=1, ge=0)


class ResultCacheSettings(BaseModel):
    ttl_seconds: float = Field(default=300.0, gt=0)
    cleanup_interval_minutes: int = Field(default=10, ge=1)


class SyncSettings(BaseModel):
    mode: Literal["off", "startup", "periodic"] = "startup"
    batch_size: int = Field(default=1000, ge=1)
    max_age_hours: float = 24
    poll_interval_hours: float = 24
    seed_popular: bool = True
    popular_score: int = 100


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: NIXCACHE__SYNC__BATCH_SIZE=500
        env_prefix="NIXCACHE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    index: IndexSettings = IndexSettings()
    result_cache: ResultCacheSettings = ResultCacheSettings()
    sync: SyncSettings = SyncSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # No .env or secrets-dir sources: nixcache has no credentials to load.
        return (init_settings, env_settings, YamlConfigSettingsSource(settings_cls))
