#!/usr/bin/env python3
"""
Apply pending schema migrations.

Usage:
  python scripts/migrate.py            # apply pending migrations
  python scripts/migrate.py --status   # list applied and pending versions
"""
import argparse
import os
import sys

# Add parent directory to path to import fieldops modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldops.config import settings
from fieldops.db import engine
from fieldops.logging import setup_logging
from fieldops.migrations import MIGRATIONS, applied_versions, run_migrations


def show_status():
    done = applied_versions(engine)
    for version, description, _ in MIGRATIONS:
        state = "applied" if version in done else "pending"
        print(f"  {version:>3}  {state:<8} {description}")


def main():
    parser = argparse.ArgumentParser(description="Apply work order schema migrations")
    parser.add_argument("--status", action="store_true", help="Only show which migrations are applied")
    args = parser.parse_args()

    setup_logging()
    url = settings.database_url
    print(f"Database: {url.split('@')[-1] if '@' in url else url}")
    if url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)

    if args.status:
        show_status()
        return

    applied = run_migrations(engine)
    if applied:
        print(f"Applied migrations: {', '.join(str(v) for v in applied)}")
    else:
        print("Database is up to date.")


if __name__ == "__main__":
    main()
