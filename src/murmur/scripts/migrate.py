# src/murmur/scripts/migrate.py
"""Apply Alembic migrations up to head."""
from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

from murmur.core.settings import settings

PROJECT_ROOT = Path(__file__).resolve().parents[3]

logger = logging.getLogger(__name__)


def alembic_config(database_url: str | None = None) -> Config:
    """Build an Alembic config pointing at the project's migrations folder."""
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url or settings.database_url_sync)
    return cfg


def run_upgrade_head(database_url: str | None = None) -> None:
    cfg = alembic_config(database_url)
    logger.info("Upgrading %s to head", cfg.get_main_option("sqlalchemy.url"))
    command.upgrade(cfg, "head")


if __name__ == "__main__":
    run_upgrade_head()
