from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger("app.migrate")

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def build_config(ini_path: Path = ALEMBIC_INI) -> Config:
    config = Config(str(ini_path))
    config.set_main_option("script_location", str(ini_path.parent / "infra" / "migrations"))
    return config


def run_upgrade_head() -> None:
    logger.info("migrations_upgrade_head", extra={"ini_path": str(ALEMBIC_INI)})
    command.upgrade(build_config(), "head")


if __name__ == "__main__":
    run_upgrade_head()
