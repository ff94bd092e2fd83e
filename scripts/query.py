#!/usr/bin/env python3
"""CLI for reading the knowledge store.

Usage examples:
  python scripts/query.py summary
  python scripts/query.py expensive --limit 20
  python scripts/query.py critical-quirks
  python scripts/query.py quirks --api Stripe --severity high
  python scripts/query.py apis --category payment --free
  python scripts/query.py related --api Stripe
  python scripts/query.py costs --api Stripe
"""
import argparse
import json
from pathlib import Path

from api_knowledge.config import Settings
from api_knowledge.db import make_engine, make_session_factory, session_scope
from api_knowledge.store import (
    api_summary,
    cost_history,
    critical_quirks,
    expensive_endpoints,
    find_apis,
    get_api,
    list_quirks,
    related_apis,
)


def _print_rows(rows) -> None:
    for row in rows:
        print(json.dumps(row, default=str))


def main() -> None:
    p = argparse.ArgumentParser(description="Query the API knowledge store")
    p.add_argument("--database-url", type=str, default=None)
    p.add_argument("--api-keys", type=Path, default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("summary", help="One row per API with endpoint and quirk counts")
    ex = sub.add_parser("expensive", help="Priced endpoints, most expensive first")
    ex.add_argument("--limit", type=int, default=100)
    sub.add_parser("critical-quirks", help="High and critical quirks across all APIs")

    qk = sub.add_parser("quirks", help="Quirks of one API")
    qk.add_argument("--api", type=str, required=True)
    qk.add_argument("--version", type=str, default=None)
    qk.add_argument("--severity", type=str, default=None)

    ap = sub.add_parser("apis", help="Filter APIs")
    ap.add_argument("--category", type=str, default=None)
    ap.add_argument("--provider", type=str, default=None)
    ap.add_argument("--free", action="store_true", help="Only free APIs")

    rl = sub.add_parser("related", help="APIs related to one API")
    rl.add_argument("--api", type=str, required=True)

    cs = sub.add_parser("costs", help="Tracked daily costs of one API")
    cs.add_argument("--api", type=str, required=True)

    args = p.parse_args()
    settings = Settings.from_env_or_file(args.api_keys)
    factory = make_session_factory(make_engine(args.database_url or settings.require_database()))

    with session_scope(factory) as session:
        if args.cmd == "summary":
            _print_rows(api_summary(session))
        elif args.cmd == "expensive":
            _print_rows(expensive_endpoints(session, limit=args.limit))
        elif args.cmd == "critical-quirks":
            _print_rows(critical_quirks(session))
        elif args.cmd == "apis":
            apis = find_apis(
                session, category=args.category, provider=args.provider, is_free=True if args.free else None
            )
            _print_rows({"name": a.name, "version": a.version, "base_url": a.base_url} for a in apis)
        else:
            api = get_api(session, args.api, getattr(args, "version", None))
            if api is None:
                raise SystemExit(f"[query] Unknown API: {args.api}")
            if args.cmd == "quirks":
                _print_rows(
                    {
                        "quirk_type": q.quirk_type,
                        "severity": q.severity,
                        "field_name": q.field_name,
                        "description": q.description,
                        "is_verified": q.is_verified,
                    }
                    for q in list_quirks(session, api.id, severity=args.severity)
                )
            elif args.cmd == "related":
                _print_rows(related_apis(session, api.id))
            elif args.cmd == "costs":
                _print_rows(
                    {"date": c.tracked_date, "calls": c.total_calls, "cost": c.total_cost, "currency": c.cost_currency}
                    for c in cost_history(session, api.id)
                )


if __name__ == "__main__":
    main()
