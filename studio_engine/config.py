"""
Engine settings read from ``STUDIO_*`` environment variables.

    STUDIO_DB_PATH       SQLite database file (default: studio.db)
    STUDIO_PER_PAGE      default page size (default: 15)
    STUDIO_MAX_PER_PAGE  hard cap on requested page size (default: 100)
    STUDIO_BULK_MAX_IDS  max ids per bulk request (default: 1000)
    STUDIO_LOG_LEVEL     logging level name (default: info)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


@dataclass
class Settings:
    db_path: str = 'studio.db'
    per_page: int = 15
    max_per_page: int = 100
    bulk_max_ids: int = 1000
    log_level: str = 'info'


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            "Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def load_settings() -> Settings:
    return Settings(
        db_path=os.environ.get('STUDIO_DB_PATH', 'studio.db'),
        per_page=_int_env('STUDIO_PER_PAGE', 15),
        max_per_page=_int_env('STUDIO_MAX_PER_PAGE', 100),
        bulk_max_ids=_int_env('STUDIO_BULK_MAX_IDS', 1000),
        log_level=os.environ.get('STUDIO_LOG_LEVEL', 'info'),
    )


settings = load_settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
