#!/usr/bin/env python
"""
Schema migration helper for CMS Regen
Wraps the Alembic commands used in deploys and local setup
"""
import sys
import logging
from pathlib import Path

ROOT = Path(__file__).parent
sys.path.insert(0, str(ROOT / "src"))

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from cms_regen.config import config
from cms_regen.db import engine
from cms_regen.logging_config import setup_logging

logger = logging.getLogger("migrate_db")

USAGE = "Usage: python migrate_db.py [upgrade [revision] | downgrade [revision] | stamp [revision] | status]"


def _alembic_config() -> Config:
    return Config(str(ROOT / "alembic.ini"))


def upgrade(revision: str = "head"):
    logger.info(f"Upgrading schema to {revision}")
    command.upgrade(_alembic_config(), revision)


def downgrade(revision: str = "-1"):
    logger.info(f"Downgrading schema to {revision}")
    command.downgrade(_alembic_config(), revision)


def stamp(revision: str = "head"):
    """Mark a database created with init_db() as migrated"""
    logger.info(f"Stamping schema as {revision}")
    command.stamp(_alembic_config(), revision)


def status() -> bool:
    """Log current vs. head revision; True when the schema is up to date"""
    script = ScriptDirectory.from_config(_alembic_config())
    head = script.get_current_head()
    with engine.connect() as connection:
        current = MigrationContext.configure(connection).get_current_revision()

    if current is None:
        logger.warning(f"Database has no revision; head is {head}")
    elif current != head:
        logger.warning(f"Database at {current}, head is {head}")
    else:
        logger.info(f"Database is up to date at {head}")
    return current == head


if __name__ == "__main__":
    setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)

    commands = {"upgrade": upgrade, "downgrade": downgrade, "stamp": stamp}
    args = sys.argv[1:] or ["upgrade"]
    name, rest = args[0], args[1:]

    if name == "status":
        sys.exit(0 if status() else 1)
    if name not in commands or len(rest) > 1:
        print(USAGE, file=sys.stderr)
        sys.exit(2)
    commands[name](*rest)
