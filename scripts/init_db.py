#!/usr/bin/env python3
"""
Create the textbook kernel schema and seed the district/block hierarchy
from the active configuration set.

Seeding is idempotent: running the script twice leaves the same rows.
With --reset all tables are dropped first.

Usage:
    python3 scripts/init_db.py [--db-url URL] [--config PATH] [--reset]
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("DATABASE_URL", "sqlite:///textbook_kernel.db")


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create tables and seed reference data")
    p.add_argument("--db-url", default=DB_URL, help=f"Database URL (default: {DB_URL!r})")
    p.add_argument("--config", default=None, help="Configuration YAML (default: bundled Tripura set)")
    p.add_argument("--reset", action="store_true", help="Drop all tables before creating them")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from textbook_config import get_active_config
    from textbook_config.bridges import build_policy, hierarchy_seed
    from textbook_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        session_scope,
    )
    from textbook_kernel.exceptions import ConfigError
    from textbook_kernel.logging_config import configure_logging
    from textbook_kernel.services.reference_data_loader import ReferenceDataLoader

    configure_logging()

    print()
    print("  [1/3] Loading configuration...")
    try:
        config = get_active_config(args.config)
    except ConfigError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1
    policy = build_policy(config)

    print(f"  [2/3] Creating schema on {args.db_url}...")
    init_engine_from_url(args.db_url)
    if args.reset:
        drop_tables()
    create_tables()

    print("  [3/3] Seeding districts and blocks...")
    districts, blocks = hierarchy_seed(config)
    with session_scope() as session:
        district_count, block_count = ReferenceDataLoader(session, policy).load(districts, blocks)

    print(f"  Done: {district_count} districts, {block_count} blocks ({config.config_id} v{config.version})")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
