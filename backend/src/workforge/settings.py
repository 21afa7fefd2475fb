"""Process settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from workforge.metadata.loader import DEFAULT_METADATA_PATH
from workforge.persistence.config import DatabaseConfig
from workforge.services.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PaginationService

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class WorkforgeSettings:
    """Settings for one engine instance.

    Environment:
        DATABASE_URL / WORKFORGE_DB_PATH: see DatabaseConfig.from_env
        WORKFORGE_METADATA_PATH: directory containing entities/ (default: packaged)
        WORKFORGE_DEFAULT_PAGE_SIZE, WORKFORGE_MAX_PAGE_SIZE: pagination limits
        WORKFORGE_LOG_LEVEL: logging level name (default: INFO)
    """

    database: DatabaseConfig
    metadata_path: Path = DEFAULT_METADATA_PATH
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> WorkforgeSettings:
        metadata_path = os.environ.get("WORKFORGE_METADATA_PATH")
        return cls(
            database=DatabaseConfig.from_env(base_path),
            metadata_path=Path(metadata_path) if metadata_path else DEFAULT_METADATA_PATH,
            default_page_size=_env_int("WORKFORGE_DEFAULT_PAGE_SIZE", DEFAULT_PAGE_SIZE),
            max_page_size=_env_int("WORKFORGE_MAX_PAGE_SIZE", MAX_PAGE_SIZE),
            log_level=os.environ.get("WORKFORGE_LOG_LEVEL", "INFO").upper(),
        )

    def pagination(self) -> PaginationService:
        return PaginationService(
            default_limit=min(self.default_page_size, self.max_page_size),
            max_limit=self.max_page_size,
        )


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if parsed < 1:
        raise ValueError(f"{name} must be at least 1, got {parsed}")
    return parsed


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for CLI and scripts."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
