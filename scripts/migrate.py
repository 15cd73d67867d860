"""Run or create database migrations.

Usage:
    python scripts/migrate.py                    upgrade to head
    python scripts/migrate.py downgrade <rev>    downgrade to a revision
    python scripts/migrate.py create <message>   autogenerate a revision
"""

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _config() -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    return config


def upgrade(revision: str = "head") -> None:
    """Upgrade the schema (patients, appointments, appointment history)."""
    print(f"Upgrading database to {revision}...")
    command.upgrade(_config(), revision)
    print("✓ Migrations completed successfully!")


def downgrade(revision: str) -> None:
    """Downgrade the schema to a revision."""
    print(f"Downgrading database to {revision}...")
    command.downgrade(_config(), revision)
    print("✓ Downgrade completed successfully!")


def create(message: str) -> None:
    """Autogenerate a revision from the table metadata."""
    print(f"Creating migration: {message}")
    command.revision(_config(), message=message, autogenerate=True)
    print("✓ Migration created successfully!")


def main(argv: list[str]) -> int:
    try:
        if not argv:
            upgrade()
        elif argv[0] == "downgrade" and len(argv) == 2:
            downgrade(argv[1])
        elif argv[0] == "create" and len(argv) > 1:
            create(" ".join(argv[1:]))
        else:
            print(__doc__)
            return 2
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
