"""Runtime configuration for pipeline runs."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from pipewright.cache.base import Cache
from pipewright.cache.local import LocalFileCache
from pipewright.cache.repository import RepositoryFileCache
from pipewright.cache.temporary import TemporaryFileCache
from pipewright.resources import DEFAULT_TEMPORARY_PREFIX

CACHE_LAYOUTS = ("flat", "repository", "temporary", "none")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class Settings:
    """Engine settings loaded from ``PIPEWRIGHT_*`` environment variables."""

    cache_dir: Path | None = None
    cache_layout: str = "flat"
    temporary_prefix: str = DEFAULT_TEMPORARY_PREFIX
    command_timeout_seconds: float = 300.0
    download_timeout_seconds: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        *,
        cache_dir: Path | None = None,
        cache_layout: str | None = None,
    ) -> Settings:
        """Load settings from environment; explicit arguments win over variables."""

        env_cache_dir = os.getenv("PIPEWRIGHT_CACHE_DIR", "").strip()
        return cls(
            cache_dir=cache_dir or (Path(env_cache_dir).expanduser() if env_cache_dir else None),
            cache_layout=(
                cache_layout or os.getenv("PIPEWRIGHT_CACHE_LAYOUT", "flat")
            ).strip().lower(),
            temporary_prefix=os.getenv("PIPEWRIGHT_TEMP_PREFIX", DEFAULT_TEMPORARY_PREFIX),
            command_timeout_seconds=float(
                os.getenv("PIPEWRIGHT_COMMAND_TIMEOUT_SECONDS", "300"),
            ),
            download_timeout_seconds=float(
                os.getenv("PIPEWRIGHT_DOWNLOAD_TIMEOUT_SECONDS", "30"),
            ),
            log_level=os.getenv("PIPEWRIGHT_LOG_LEVEL", "INFO").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error when a value is out of range."""

        if self.cache_layout not in CACHE_LAYOUTS:
            raise ValueError(
                f"PIPEWRIGHT_CACHE_LAYOUT must be one of {', '.join(CACHE_LAYOUTS)}: "
                f"{self.cache_layout!r}",
            )
        if not self.temporary_prefix:
            raise ValueError("PIPEWRIGHT_TEMP_PREFIX must not be empty.")
        if self.command_timeout_seconds <= 0:
            raise ValueError("PIPEWRIGHT_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.download_timeout_seconds <= 0:
            raise ValueError("PIPEWRIGHT_DOWNLOAD_TIMEOUT_SECONDS must be > 0.")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid PIPEWRIGHT_LOG_LEVEL: {self.log_level!r}")

    @property
    def logging_level(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level]

    def create_cache(self) -> Cache | None:
        """Build the configured cache backend, or ``None`` when caching is off."""

        if self.cache_layout == "none":
            return None
        if self.cache_layout == "temporary":
            return TemporaryFileCache(prefix=self.temporary_prefix)
        if self.cache_dir is None:
            return None
        if self.cache_layout == "repository":
            return RepositoryFileCache(self.cache_dir, temporary_prefix=self.temporary_prefix)
        return LocalFileCache(self.cache_dir)
