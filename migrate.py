"""
Apply the result-store schema migrations without starting the web server.

Usage:
  python migrate.py            # upgrade to the latest revision
  python migrate.py <revision> # upgrade to a given revision
  python migrate.py base       # drop every table

Reads DATABASE_URL from the environment (or .env).
"""

import os
import sys
import logging

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def alembic_config():
    """Build the Alembic config rooted at this directory."""
    cfg = Config(os.path.join(BASE_DIR, 'alembic.ini'))
    cfg.set_main_option('script_location', os.path.join(BASE_DIR, 'migrations'))
    return cfg


def run(target='head'):
    """Move the schema to target. 'base' drops everything."""
    cfg = alembic_config()
    if target == 'base':
        command.downgrade(cfg, target)
    else:
        command.upgrade(cfg, target)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    target = argv[0] if argv else 'head'
    try:
        print(f"Applying database migrations ({target})...")
        run(target)
        print("Migrations completed successfully.")
    except Exception as e:
        logging.exception("Migration failed")
        print(f"Migration failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
