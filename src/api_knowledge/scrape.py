"""
Client for the hosted scraping API (Firecrawl v1) used to fetch API documentation.

- ScrapeClient.scrape(url): one page rendered to Markdown
- ScrapeClient.map_site(url): URLs discovered on a documentation site
- save_pages: write scraped pages as Markdown files for the extract phase

Retries: connection errors are retried `tries` times with a short sleep. HTTP 429
waits for Retry-After (capped at `max_wait_s`) and raises RateLimitError once the
attempts are used up.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests

from .config import Settings
from .errors import RateLimitError, ScrapeError


@dataclass
class ScrapedPage:
    url: str
    markdown: str
    title: Optional[str] = None
    status_code: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _retry_after_seconds(resp: requests.Response, default: float) -> float:
    value = resp.headers.get("Retry-After")
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


class ScrapeClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.firecrawl.dev",
        *,
        tries: int = 3,
        timeout: int = 60,
        retry_sleep_s: float = 2.0,
        max_wait_s: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.tries = tries
        self.timeout = timeout
        self.retry_sleep_s = retry_sleep_s
        self.max_wait_s = max_wait_s
        self.http = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ScrapeClient":
        return cls(settings.require_firecrawl(), settings.firecrawl_api_url, **kwargs)

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        target = payload.get("url")
        for attempt in range(self.tries):
            try:
                resp = self.http.post(url, json=payload, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                print(f"[scrape] Connection error: {e}. Retrying ({attempt + 1}/{self.tries})...")
                time.sleep(self.retry_sleep_s)
                continue
            if resp.status_code == 429:
                wait = min(_retry_after_seconds(resp, self.retry_sleep_s), self.max_wait_s)
                if attempt + 1 >= self.tries:
                    raise RateLimitError(
                        f"Rate limit exceeded for {target}; wait {wait:.0f}s or upgrade the plan",
                        url=target,
                        retry_after=wait,
                    )
                print(f"[scrape] Rate limited; sleeping {wait:.0f}s ({attempt + 1}/{self.tries})")
                time.sleep(wait)
                continue
            if resp.status_code in (401, 403):
                raise ScrapeError("Scraping API rejected the API key", url=target, status_code=resp.status_code)
            if resp.status_code >= 500:
                print(f"[scrape] Server error {resp.status_code}. Retrying ({attempt + 1}/{self.tries})...")
                time.sleep(self.retry_sleep_s)
                continue
            try:
                data = resp.json()
            except ValueError as e:
                raise ScrapeError(f"Non-JSON response from {endpoint}", url=target, status_code=resp.status_code) from e
            if resp.status_code >= 400 or not data.get("success", False):
                raise ScrapeError(
                    f"{endpoint} failed: {data.get('error') or resp.status_code}",
                    url=target,
                    status_code=resp.status_code,
                )
            return data
        raise ScrapeError(f"Giving up on {endpoint} after {self.tries} attempts", url=target)

    def scrape(self, url: str, *, only_main_content: bool = True) -> ScrapedPage:
        data = self._post(
            "/v1/scrape",
            {"url": url, "formats": ["markdown"], "onlyMainContent": only_main_content},
        )
        body = data.get("data") or {}
        meta = body.get("metadata") or {}
        return ScrapedPage(
            url=meta.get("sourceURL") or url,
            markdown=body.get("markdown") or "",
            title=meta.get("title"),
            status_code=meta.get("statusCode"),
            metadata=meta,
        )

    def map_site(self, url: str, *, search: Optional[str] = None, limit: int = 200) -> List[str]:
        payload: Dict[str, Any] = {"url": url, "limit": int(limit)}
        if search:
            payload["search"] = search
        data = self._post("/v1/map", payload)
        links = data.get("links") or []
        # v1 returns strings; some deployments return {"url": ...} objects
        out: List[str] = []
        for link in links:
            u = link.get("url") if isinstance(link, dict) else link
            if isinstance(u, str) and u not in out:
                out.append(u)
        return out


def _slug(url: str) -> str:
    s = re.sub(r"^https?://", "", url).strip("/")
    s = re.sub(r"[^A-Za-z0-9._-]+", "_", s)
    return s[:150] or "index"


def save_pages(pages: Iterable[ScrapedPage], out_dir: Path) -> List[Path]:
    """Write each page to <out_dir>/<slug>.md with a small front-matter header."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for page in pages:
        path = out_dir / f"{_slug(page.url)}.md"
        header = f"---\nsource_url: {page.url}\ntitle: {page.title or ''}\n---\n\n"
        path.write_text(header + page.markdown, encoding="utf-8")
        written.append(path)
    print(f"[scrape] Wrote {len(written)} pages to {out_dir}")
    return written


def load_pages(in_dir: Path, pattern: str = "*.md") -> List[ScrapedPage]:
    """Read pages written by save_pages back (the front-matter header is optional)."""
    pages: List[ScrapedPage] = []
    for path in sorted(Path(in_dir).glob(pattern)):
        text = path.read_text(encoding="utf-8")
        url, title = str(path), None
        m = re.match(r"---\n(.*?)\n---\n\n?", text, flags=re.DOTALL)
        if m:
            for line in m.group(1).splitlines():
                k, _, v = line.partition(":")
                if k.strip() == "source_url":
                    url = v.strip()
                elif k.strip() == "title":
                    title = v.strip() or None
            text = text[m.end():]
        pages.append(ScrapedPage(url=url, markdown=text, title=title))
    return pages
