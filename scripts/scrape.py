#!/usr/bin/env python3
"""CLI for fetching API documentation through the hosted scraping API.

Usage examples:
  # List the URLs of a documentation site (optionally filtered by keyword)
  python scripts/scrape.py map --url https://docs.stripe.com/api --search customers --limit 100

  # Scrape pages to Markdown files
  python scripts/scrape.py pages \
  --url https://docs.stripe.com/api/customers \
  --url https://docs.stripe.com/rate-limits \
  --out examples/stripe/pages \
  --api-keys examples/stripe/api_keys.txt

  # Map a site and scrape the most useful pages (auth, limits, pricing, reference first)
  python scripts/scrape.py investigate --url https://docs.stripe.com/api --max-pages 15 --out examples/stripe/pages
"""
import argparse
from pathlib import Path

from api_knowledge.config import Settings
from api_knowledge.errors import RateLimitError, ScrapeError
from api_knowledge.ingest import investigate, report
from api_knowledge.scrape import ScrapeClient, save_pages


def main() -> None:
    p = argparse.ArgumentParser(description="Fetch API documentation via the scraping API")
    p.add_argument("--api-keys", type=Path, default=None, help="KEY=VALUE/JSON/YAML file with FIRECRAWL_API_KEY")
    p.add_argument("--tries", type=int, default=3)
    sub = p.add_subparsers(dest="cmd", required=True)

    mp = sub.add_parser("map", help="Print the URLs discovered on a documentation site")
    mp.add_argument("--url", type=str, required=True)
    mp.add_argument("--search", type=str, default=None)
    mp.add_argument("--limit", type=int, default=200)

    pg = sub.add_parser("pages", help="Scrape the given URLs to Markdown files")
    pg.add_argument("--url", type=str, action="append", required=True, help="Repeat for several pages")
    pg.add_argument("--out", type=Path, required=True)
    pg.add_argument("--sleep", type=float, default=0.0)

    inv = sub.add_parser("investigate", help="Map a site, scrape the most informative pages and write report.md")
    inv.add_argument("--url", type=str, required=True)
    inv.add_argument("--out", type=Path, required=True)
    inv.add_argument("--search", type=str, default=None)
    inv.add_argument("--max-pages", type=int, default=20)
    inv.add_argument("--sleep", type=float, default=0.0)
    inv.add_argument("--report", type=Path, default=None, help="Defaults to report.md next to the pages directory")

    args = p.parse_args()
    client = ScrapeClient.from_settings(Settings.from_env_or_file(args.api_keys), tries=args.tries)

    try:
        if args.cmd == "map":
            for u in client.map_site(args.url, search=args.search, limit=args.limit):
                print(u)
        elif args.cmd == "pages":
            pages = []
            for u in args.url:
                try:
                    pages.append(client.scrape(u))
                except RateLimitError:
                    raise
                except ScrapeError as e:
                    print(f"[scrape] Skipping {u}: {e}")
            save_pages(pages, args.out)
        elif args.cmd == "investigate":
            result = investigate(client, args.url, max_pages=args.max_pages, search=args.search, sleep_s=args.sleep)
            save_pages(result.pages, args.out)
            report_path = args.report or args.out.parent / "report.md"
            report_path.write_text(report(result), encoding="utf-8")
            print(f"[investigate] Report written to {report_path}")
    except RateLimitError as e:
        raise SystemExit(f"[scrape] {e}")


if __name__ == "__main__":
    main()
