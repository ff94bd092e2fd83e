#!/usr/bin/env python3
"""CLI for config-driven ingestion of an API's documentation.

Usage:
  # investigate -> report -> extract -> verify -> store, all from one params file
  python scripts/ingest.py run --params-file examples/stripe/ingest_params.yaml

  Optional overrides:
    --url, --search, --pages-dir, --results-dir, --max-pages, --provider, --model, --prompt-key, --api-keys-file

  # Re-check a previously extracted ApiDoc JSON against the scraped pages
  python scripts/ingest.py verify --doc examples/stripe/results/Stripe.json --pages-dir examples/stripe/pages

  # Store a previously extracted ApiDoc JSON (verified first when --pages-dir is given)
  python scripts/ingest.py store --doc examples/stripe/results/Stripe.json --pages-dir examples/stripe/pages
"""
import argparse
import json
from pathlib import Path

from api_knowledge.config import Settings
from api_knowledge.db import make_engine, make_session_factory
from api_knowledge.extract import load_api_doc
from api_knowledge.ingest import ingest_from_params, store_doc_file, verify
from api_knowledge.scrape import load_pages


def main() -> None:
    p = argparse.ArgumentParser(description="Ingest API documentation into the knowledge store")
    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Run all phases from a params file")
    run.add_argument("--params-file", type=Path, required=True)
    run.add_argument("--url", type=str, default=None)
    run.add_argument("--search", type=str, default=None)
    run.add_argument("--pages-dir", type=Path, default=None)
    run.add_argument("--results-dir", type=Path, default=None)
    run.add_argument("--max-pages", type=int, default=None)
    run.add_argument("--provider", type=str, default=None)
    run.add_argument("--model", type=str, default=None)
    run.add_argument("--prompt-key", type=str, default=None, help="Prompt key in the prompt file (e.g. extract_strict)")
    run.add_argument("--api-keys-file", type=Path, default=None)

    ver = sub.add_parser("verify", help="Check an extracted ApiDoc JSON against scraped pages")
    ver.add_argument("--doc", type=Path, required=True)
    ver.add_argument("--pages-dir", type=Path, required=True)

    st = sub.add_parser("store", help="Store an extracted ApiDoc JSON")
    st.add_argument("--doc", type=Path, required=True)
    st.add_argument("--pages-dir", type=Path, default=None, help="Verify against these pages first")
    st.add_argument("--database-url", type=str, default=None)
    st.add_argument("--api-keys", type=Path, default=None)

    args = p.parse_args()

    if args.cmd == "run":
        overrides = {
            "url": args.url,
            "search": args.search,
            "pages_dir": str(args.pages_dir) if args.pages_dir is not None else None,
            "results_dir": str(args.results_dir) if args.results_dir is not None else None,
            "max_pages": args.max_pages,
            "provider": args.provider,
            "model": args.model,
            "prompt_key": args.prompt_key,
            "api_keys_file": str(args.api_keys_file) if args.api_keys_file is not None else None,
        }
        stats = ingest_from_params(args.params_file, overrides={k: v for k, v in overrides.items() if v is not None})
        print(f"[ingest] Done. Stats: {stats}")
    elif args.cmd == "verify":
        doc = load_api_doc(args.doc)
        text = "\n\n".join(page.markdown for page in load_pages(args.pages_dir))
        result = verify(doc, text)
        print(json.dumps({"ok": result.ok, "issues": [i.__dict__ for i in result.issues]}, indent=2))
        if not result.ok:
            raise SystemExit(1)
    elif args.cmd == "store":
        settings = Settings.from_env_or_file(args.api_keys)
        factory = make_session_factory(make_engine(args.database_url or settings.require_database()))
        out = store_doc_file(args.doc, factory, text_dir=args.pages_dir)
        print(f"[store] {out}")
        if out.get("verified") is False:
            raise SystemExit(1)


if __name__ == "__main__":
    main()
