#!/usr/bin/env python3
"""CLI for generating example client code for a stored endpoint.

Usage:
  python scripts/codegen.py --api Stripe --method POST --path /v1/customers --language python
  python scripts/codegen.py --doc examples/stripe/results/Stripe.json --method GET --path /v1/customers/{id} --language curl
"""
import argparse
from pathlib import Path

from api_knowledge.codegen import LANGUAGES, generate_client
from api_knowledge.config import Settings
from api_knowledge.db import make_engine, make_session_factory, session_scope
from api_knowledge.extract import load_api_doc
from api_knowledge.store import find_endpoint, get_api


def main() -> None:
    p = argparse.ArgumentParser(description="Generate example client code for an endpoint")
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument("--api", type=str, help="API name in the knowledge store")
    src.add_argument("--doc", type=Path, help="Extracted ApiDoc JSON instead of the store")
    p.add_argument("--version", type=str, default=None)
    p.add_argument("--method", type=str, required=True)
    p.add_argument("--path", type=str, required=True)
    p.add_argument("--language", type=str, choices=LANGUAGES, default="python")
    p.add_argument("--database-url", type=str, default=None)
    p.add_argument("--api-keys", type=Path, default=None)
    args = p.parse_args()

    if args.doc is not None:
        doc = load_api_doc(args.doc)
        endpoint = next(
            (e for e in doc.endpoints if e.method == args.method.upper() and e.path == args.path), None
        )
        if endpoint is None:
            raise SystemExit(f"[codegen] {args.method} {args.path} not found in {args.doc}")
        print(generate_client(doc, endpoint, args.language))
        return

    settings = Settings.from_env_or_file(args.api_keys)
    factory = make_session_factory(make_engine(args.database_url or settings.require_database()))
    with session_scope(factory) as session:
        api = get_api(session, args.api, args.version)
        if api is None:
            raise SystemExit(f"[codegen] Unknown API: {args.api}")
        endpoint = find_endpoint(session, api.id, args.method, args.path)
        if endpoint is None:
            raise SystemExit(f"[codegen] {args.method} {args.path} not found for {args.api}")
        print(generate_client(api, endpoint, args.language))


if __name__ == "__main__":
    main()
