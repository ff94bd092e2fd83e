#!/usr/bin/env python3
"""CLI for workflow planning: compare alternative plans, save them, and price saved ones.

Usage examples:
  # Rank the plans in a YAML/JSON file by projected monthly cost
  python scripts/workflow.py compare --plans examples/stripe/workflows.yaml --executions 10000

  # Check monthly volumes against the endpoints' rate limits
  python scripts/workflow.py headroom --plans examples/stripe/workflows.yaml --executions 10000

  # Save every plan in the file (links the APIs, counts API pairings)
  python scripts/workflow.py save --plans examples/stripe/workflows.yaml --executions 10000 --created-by ops

  # Cost of a saved workflow, as computed by calculate_workflow_cost()
  python scripts/workflow.py cost --id 6f1c...
"""
import argparse
import uuid
from pathlib import Path

from api_knowledge.config import Settings
from api_knowledge.db import make_engine, make_session_factory, session_scope
from api_knowledge.store import calculate_workflow_cost, price_lookup, rate_limit_lookup, record_execution, save_workflow
from api_knowledge.workflows import compare_plans, load_plans, rate_limit_headroom


def main() -> None:
    p = argparse.ArgumentParser(description="Plan and compare API workflows")
    p.add_argument("--database-url", type=str, default=None)
    p.add_argument("--api-keys", type=Path, default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    cp = sub.add_parser("compare", help="Rank plans cheapest first")
    cp.add_argument("--plans", type=Path, required=True)
    cp.add_argument("--executions", type=int, required=True, help="Executions per month")

    hr = sub.add_parser("headroom", help="Compare monthly call volume with rate limits")
    hr.add_argument("--plans", type=Path, required=True)
    hr.add_argument("--executions", type=int, required=True)

    sv = sub.add_parser("save", help="Store the plans as workflows")
    sv.add_argument("--plans", type=Path, required=True)
    sv.add_argument("--executions", type=int, default=None)
    sv.add_argument("--created-by", type=str, default=None)

    co = sub.add_parser("cost", help="calculate_workflow_cost for a saved workflow")
    co.add_argument("--id", type=uuid.UUID, required=True)

    rc = sub.add_parser("record", help="Record one execution of a saved workflow")
    rc.add_argument("--id", type=uuid.UUID, required=True)
    rc.add_argument("--duration-ms", type=int, required=True)

    args = p.parse_args()
    settings = Settings.from_env_or_file(args.api_keys)
    factory = make_session_factory(make_engine(args.database_url or settings.require_database()))

    with session_scope(factory) as session:
        if args.cmd == "compare":
            rows = compare_plans(load_plans(args.plans), price_lookup(session), args.executions)
            for r in rows:
                print(
                    f"{r.name}: {r.cost_per_execution:.4f}/execution, {r.monthly_cost:.2f}/month "
                    f"({r.step_count} steps, saves {r.savings_vs_most_expensive:.2f})"
                )
                for missing in r.unpriced:
                    print(f"  unpriced: {missing}")
        elif args.cmd == "headroom":
            lookup = rate_limit_lookup(session)
            for plan in load_plans(args.plans):
                print(plan.name)
                for h in rate_limit_headroom(plan, lookup, args.executions):
                    limit = "no limit recorded" if h.limit_per_month is None else f"limit {h.limit_per_month}/month"
                    flag = "ok" if h.fits else "EXCEEDS"
                    print(f"  {h.api} {h.method} {h.path}: {h.calls_per_month}/month, {limit} [{flag}]")
        elif args.cmd == "save":
            for plan in load_plans(args.plans):
                wf = save_workflow(
                    session, plan, created_by=args.created_by, executions_per_month=args.executions
                )
                print(f"[store] Saved workflow {wf.name} ({wf.id}), {wf.cost_per_execution}/execution")
        elif args.cmd == "cost":
            print(calculate_workflow_cost(session, args.id))
        elif args.cmd == "record":
            wf = record_execution(session, args.id, args.duration_ms)
            print(f"[store] {wf.name}: {wf.execution_count} executions, avg {wf.average_duration_ms} ms")


if __name__ == "__main__":
    main()
