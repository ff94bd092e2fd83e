#!/usr/bin/env python3
"""CLI for setting up the knowledge database.

Usage:
  # Apply schema.sql to the Postgres database in DATABASE_URL (idempotent)
  python scripts/init_db.py apply --api-keys examples/stripe/api_keys.txt

  # Create the ORM tables on any SQLAlchemy URL (e.g. a local SQLite file)
  python scripts/init_db.py create --database-url sqlite:///knowledge.db

  # Print schema.sql, e.g. to paste into a hosted SQL editor
  python scripts/init_db.py sql > schema.sql

  # Print the MCP client configuration block for the database and scraping services
  python scripts/init_db.py integration --project-ref abcd1234
"""
import argparse
import json
from pathlib import Path

from api_knowledge.config import Settings, integration_config
from api_knowledge.db import apply_schema, create_tables, make_engine, read_schema_sql


def main() -> None:
    p = argparse.ArgumentParser(description="Set up the API knowledge database")
    sub = p.add_subparsers(dest="cmd", required=True)

    ap = sub.add_parser("apply", help="Run schema.sql against Postgres")
    ap.add_argument("--database-url", type=str, default=None)
    ap.add_argument("--api-keys", type=Path, default=None)

    cr = sub.add_parser("create", help="Create the tables through SQLAlchemy (no views or SQL functions)")
    cr.add_argument("--database-url", type=str, default=None)
    cr.add_argument("--api-keys", type=Path, default=None)

    sub.add_parser("sql", help="Print schema.sql")

    it = sub.add_parser("integration", help="Print the MCP client configuration block")
    it.add_argument("--api-keys", type=Path, default=None)
    it.add_argument("--project-ref", type=str, default=None)
    it.add_argument("--access-token", type=str, default=None)

    args = p.parse_args()

    if args.cmd == "sql":
        print(read_schema_sql())
        return

    settings = Settings.from_env_or_file(args.api_keys)
    if args.cmd == "integration":
        block = integration_config(
            settings, supabase_project_ref=args.project_ref, supabase_access_token=args.access_token
        )
        print(json.dumps(block, indent=2))
        return

    engine = make_engine(args.database_url or settings.require_database())
    if args.cmd == "apply":
        apply_schema(engine)
    elif args.cmd == "create":
        create_tables(engine)
        print(f"[store] Created tables on {engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    main()
