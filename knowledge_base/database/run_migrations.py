"""Run Alembic migrations programmatically.

Usage:
    python -m knowledge_base.database.run_migrations            # upgrade to head
    python -m knowledge_base.database.run_migrations downgrade  # one step back
    python -m knowledge_base.database.run_migrations --current  # show current revision
    python -m knowledge_base.database.run_migrations --history  # show migration history
"""

import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def get_alembic_config(ini_path: Path = PROJECT_ROOT / "alembic.ini") -> Config:
    """Load alembic.ini from the project root."""
    if not ini_path.exists():
        raise FileNotFoundError(f"alembic.ini not found at {ini_path}")
    config = Config(str(ini_path))
    config.set_main_option("script_location", str(ini_path.parent / "alembic"))
    return config


def upgrade(revision: str = "head") -> None:
    logger.info(f"Running migrations: upgrade to {revision}")
    command.upgrade(get_alembic_config(), revision)
    logger.info("Migrations completed successfully")


def downgrade(revision: str = "-1") -> None:
    logger.info(f"Running migrations: downgrade to {revision}")
    command.downgrade(get_alembic_config(), revision)
    logger.info("Downgrade completed successfully")


def main(args=None) -> None:
    """CLI entry point for running migrations."""
    args = sys.argv[1:] if args is None else args

    if not args or args[0] in ("upgrade", "--upgrade", "-u"):
        upgrade(args[1] if len(args) > 1 else "head")
    elif args[0] in ("downgrade", "--downgrade", "-d"):
        downgrade(args[1] if len(args) > 1 else "-1")
    elif args[0] in ("--current", "-c", "current"):
        command.current(get_alembic_config(), verbose=True)
    elif args[0] in ("--history", "-h", "history"):
        command.history(get_alembic_config(), verbose=True)
    else:
        print(f"Unknown argument: {args[0]}")
        print(__doc__)
        sys.exit(1)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
