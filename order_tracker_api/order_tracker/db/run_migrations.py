"""
Programmatic Alembic migration runner.

Runs migrations without an alembic.ini by pointing Alembic at this package's
migrations directory. Used at application startup and from the command line:

    python -m order_tracker.db.run_migrations upgrade head
    python -m order_tracker.db.run_migrations downgrade -1
    python -m order_tracker.db.run_migrations current
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List

from alembic import command
from alembic.config import Config

from order_tracker.db.config import get_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


# PUBLIC_INTERFACE
def build_config() -> Config:
    """Alembic Config for the order tracker schema."""
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # Offline mode reads this URL; env.py uses the async URL online.
    cfg.set_main_option("sqlalchemy.url", get_settings().sync_database_url.replace("%", "%%"))
    return cfg


def _upgrade(cfg: Config, args: List[str]) -> None:
    command.upgrade(cfg, args[0] if args else "head")


def _downgrade(cfg: Config, args: List[str]) -> None:
    command.downgrade(cfg, args[0] if args else "-1")


def _stamp(cfg: Config, args: List[str]) -> None:
    command.stamp(cfg, args[0] if args else "head")


COMMANDS: Dict[str, Callable[[Config, List[str]], None]] = {
    "upgrade": _upgrade,
    "downgrade": _downgrade,
    "stamp": _stamp,
    "current": lambda cfg, args: command.current(cfg),
    "heads": lambda cfg, args: command.heads(cfg),
    "history": lambda cfg, args: command.history(cfg),
}


# PUBLIC_INTERFACE
def main(argv: List[str] | None = None) -> None:
    """Run one Alembic command, e.g. main(["upgrade", "head"])."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print(f"Usage: run_migrations <{'|'.join(COMMANDS)}> [revision]")
        sys.exit(1)

    name, rest = args[0], args[1:]
    handler = COMMANDS.get(name)
    if handler is None:
        print(f"Unsupported Alembic command: {name}")
        sys.exit(2)

    logger.info("alembic %s %s", name, " ".join(rest))
    handler(build_config(), rest)


if __name__ == "__main__":
    main()
