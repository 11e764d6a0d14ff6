"""Resolved runtime settings for logtail.

Values are merged from several layers; an earlier layer wins:

  1. keyword arguments given to ``Settings(...)`` (tests, embedding code)
  2. ``LOGTAIL_<SECTION>__<KEY>`` environment variables
  3. the TOML file named by LOGTAIL_CONFIG_FILE, else ``conf/settings.toml``
  4. field defaults below

For example::

  LOGTAIL_SOURCE__LOG_DIRECTORY=/var/log/app
  LOGTAIL_EXTRACTOR__REGEXP='^(\\w+)=(\\d+)$'
  LOGTAIL_PUBLISHER__MAX_BATCHES_PER_SECOND=10
"""

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# src/logtail/config.py sits three levels below the checkout.
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_DEFAULT_CONFIG = _PROJECT_ROOT / "conf" / "settings.toml"

# Sentinel for "no emission rate ceiling".
NO_LIMIT = -1

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _config_file() -> Path:
    """TOML file to read; an explicit LOGTAIL_CONFIG_FILE must exist."""
    override = os.environ.get("LOGTAIL_CONFIG_FILE")
    if not override:
        return _DEFAULT_CONFIG
    path = Path(override)
    if path.is_file():
        return path
    raise FileNotFoundError(f"LOGTAIL_CONFIG_FILE points at a missing file: {path}")


def _compile(value: str, what: str) -> str:
    try:
        re.compile(value)
    except re.error as exc:
        raise ValueError(f"invalid {what} {value!r}: {exc}") from exc
    return value


# One model per [section] of the TOML file.


class SourceSettings(BaseModel):
    """Where log lines come from: one file, or a directory of rotated files."""

    log_file: Path | None = None
    log_directory: Path | None = None
    # Matched against the whole file name, not the path.
    file_filter: str = r".*\.log"
    encoding: str = "utf-8"

    @field_validator("file_filter")
    @classmethod
    def _valid_filter(cls, v: str) -> str:
        return _compile(v, "file_filter")

    @model_validator(mode="after")
    def _single_location(self) -> "SourceSettings":
        if self.log_file is not None and self.log_directory is not None:
            raise ValueError("set either log_file or log_directory, not both")
        return self

    @property
    def location(self) -> Path | None:
        return self.log_directory if self.log_directory is not None else self.log_file


class ExtractorSettings(BaseModel):
    """Line pattern and the capture groups that become records."""

    regexp: str = r".+"
    # Empty list → the whole match is the record.
    regexp_groups: list[int] = []

    @field_validator("regexp")
    @classmethod
    def _valid_regexp(cls, v: str) -> str:
        return _compile(v, "regexp")

    @field_validator("regexp_groups")
    @classmethod
    def _non_negative(cls, v: list[int]) -> list[int]:
        if any(g < 0 for g in v):
            raise ValueError(f"regexp_groups must be non-negative, got {v}")
        return v

    @model_validator(mode="after")
    def _groups_exist(self) -> "ExtractorSettings":
        available = re.compile(self.regexp).groups
        missing = [g for g in self.regexp_groups if g > available]
        if missing:
            raise ValueError(
                f"regexp_groups {missing} exceed the {available} group(s) in regexp"
            )
        return self


class PublisherSettings(BaseModel):
    """Downstream sink, batching and rate ceiling."""

    sink: Literal["stdout", "jsonl", "duckdb"] = "stdout"
    # Defaults to the source file (or directory) name when unset.
    channel: str | None = None
    batch_size: int = 100
    max_batches_per_second: int = NO_LIMIT

    @field_validator("batch_size")
    @classmethod
    def _positive_batch(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"batch_size must be >= 1, got {v}")
        return v

    @field_validator("max_batches_per_second")
    @classmethod
    def _valid_rate(cls, v: int) -> int:
        if v == 0 or v < NO_LIMIT:
            raise ValueError(f"max_batches_per_second must be positive or {NO_LIMIT}, got {v}")
        return v


class PollSettings(BaseModel):
    """Polling loop timing."""

    # Wait between polls when no new data is available.
    idle_seconds: float = 5.0


class PathsSettings(BaseModel):
    """Managed output root: lock, probes, JSONL output and the warehouse."""

    data_root: Path = Path("/var/lib/logtail")


class LoggingSettings(BaseModel):
    """Minimum event level and renderer for structlog output."""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in _LEVELS:
            raise ValueError(f"level must be one of {', '.join(_LEVELS)}; got {v!r}")
        return level


class Settings(BaseSettings):
    """All logtail runtime settings, fully resolved and validated."""

    source: SourceSettings = SourceSettings()
    extractor: ExtractorSettings = ExtractorSettings()
    publisher: PublisherSettings = PublisherSettings()
    poll: PollSettings = PollSettings()
    paths: PathsSettings = PathsSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(
        env_prefix="LOGTAIL_",
        env_nested_delimiter="__",  # LOGTAIL_SOURCE__LOG_FILE → source.log_file
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # No .env or secrets-dir layers.
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=_config_file()),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, built on first use.

    Call ``get_settings.cache_clear()`` after changing the environment or the
    config file so the next call sees the change.
    """
    return Settings()
