"""
Documentation ingestion in four phases.

- investigate: map the documentation site, classify pages by topic, scrape the most useful ones
- report: summarize what was found (topics, base URLs, auth, endpoints, limits, quirks) before spending LLM calls
- extract: LLM extraction into ApiDoc (see extract.py)
- verify: deterministic checks of the extracted ApiDoc against the scraped pages

ingest_from_params runs all four and stores the result when a database is configured.
"""
from __future__ import annotations

import json
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .config import Settings
from .db import make_engine, make_session_factory, session_scope
from .errors import ConfigError, RateLimitError, ScrapeError
from .extract import Params, extract_api_doc, load_api_doc, load_params
from .models import ApiDoc, QuirkDoc
from .quirks import detect_in_text, detect_quirks, parse_rate_limit
from .scrape import ScrapeClient, ScrapedPage, load_pages, save_pages
from .store import upsert_api

# Checked in order; the first topic whose keyword appears in the URL path wins.
TOPIC_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("authentication", ("authentication", "auth", "oauth", "api-keys", "api_keys", "apikey")),
    ("rate_limits", ("rate-limit", "rate_limit", "ratelimit", "throttl", "limits")),
    ("pricing", ("pricing", "billing", "cost")),
    ("errors", ("errors", "error-codes", "status-codes")),
    ("pagination", ("paginat",)),
    ("webhooks", ("webhook",)),
    ("changelog", ("changelog", "release-notes", "versioning", "upgrades")),
    ("reference", ("reference", "/api/", "endpoints", "resources")),
]
# Scraping order: one page per topic first, then reference pages, then the rest.
TOPIC_PRIORITY = ["authentication", "rate_limits", "pricing", "errors", "pagination", "reference", "webhooks", "guide", "changelog"]

ENDPOINT_RE = re.compile(r"\b(GET|POST|PUT|PATCH|DELETE)\s+`?((?:https?://[\w.-]+)?/[\w{}\-/.:<>]*)`?")
BASE_URL_RE = re.compile(r"https?://(?:api[\w-]*\.[\w.-]+|[\w.-]+/api)(?:/v\d+(?:\.\d+)?)?", re.IGNORECASE)


def classify_url(url: str) -> str:
    path = urlparse(url).path.lower() + "/"
    for topic, keywords in TOPIC_KEYWORDS:
        if any(k in path for k in keywords):
            return topic
    return "guide"


def select_urls(root_url: str, topics: Dict[str, List[str]], max_pages: int) -> List[str]:
    selected: List[str] = [root_url]
    for topic in TOPIC_PRIORITY:
        for url in topics.get(topic, [])[:1]:
            if url not in selected:
                selected.append(url)
    for topic in TOPIC_PRIORITY:
        for url in topics.get(topic, []):
            if url not in selected:
                selected.append(url)
    return selected[:max_pages]


@dataclass
class Investigation:
    root_url: str
    discovered: List[str] = field(default_factory=list)
    topics: Dict[str, List[str]] = field(default_factory=dict)
    pages: List[ScrapedPage] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n\n".join(p.markdown for p in self.pages)


def investigate(
    client: ScrapeClient,
    url: str,
    *,
    max_pages: int = 20,
    search: Optional[str] = None,
    map_limit: int = 200,
    sleep_s: float = 0.0,
) -> Investigation:
    """Map the docs site and scrape up to max_pages pages, most informative topics first.

    Individual page failures are recorded and skipped; a persistent rate limit
    stops the investigation.
    """
    inv = Investigation(root_url=url)
    inv.discovered = client.map_site(url, search=search, limit=map_limit)
    for u in inv.discovered:
        inv.topics.setdefault(classify_url(u), []).append(u)
    print(
        f"[investigate] {len(inv.discovered)} URLs on {url}: "
        + ", ".join(f"{t}={len(us)}" for t, us in sorted(inv.topics.items()))
    )
    for target in select_urls(url, inv.topics, max_pages):
        try:
            inv.pages.append(client.scrape(target))
        except RateLimitError:
            raise
        except ScrapeError as e:
            print(f"[investigate] Skipping {target}: {e}")
            inv.failed.append(target)
        if sleep_s and sleep_s > 0:
            time.sleep(sleep_s)
    print(f"[investigate] Scraped {len(inv.pages)} pages ({len(inv.failed)} failed)")
    return inv


def find_endpoints(text: str) -> List[Tuple[str, str]]:
    """Method/path pairs written as e.g. `GET /v1/customers/{id}`, in order of appearance."""
    seen: List[Tuple[str, str]] = []
    for m in ENDPOINT_RE.finditer(text):
        path = m.group(2)
        if path.startswith("http"):
            path = urlparse(path).path or "/"
        path = path.rstrip(".:") or "/"
        key = (m.group(1).upper(), path)
        if key not in seen:
            seen.append(key)
    return seen


def find_base_urls(text: str) -> List[str]:
    counts = Counter(m.group(0).rstrip("/") for m in BASE_URL_RE.finditer(text))
    return [u for u, _ in counts.most_common()]


def guess_auth_type(text: str) -> Optional[str]:
    lowered = text.lower()
    if "oauth" in lowered:
        return "oauth"
    if re.search(r"authorization:\s*bearer|bearer\s+token", lowered):
        return "bearer"
    if re.search(r"basic\s+auth|http\s+basic", lowered):
        return "basic"
    if re.search(r"api[\s_-]?key", lowered):
        return "api_key"
    return None


def summarize(inv: Investigation) -> Dict[str, Any]:
    text = inv.text
    return {
        "root_url": inv.root_url,
        "discovered": len(inv.discovered),
        "scraped": len(inv.pages),
        "failed": len(inv.failed),
        "topics": {t: len(us) for t, us in sorted(inv.topics.items())},
        "base_urls": find_base_urls(text)[:5],
        "auth_type": guess_auth_type(text),
        "endpoints": find_endpoints(text),
        "rate_limit": parse_rate_limit(text),
        "quirks": detect_in_text(text),
    }


def report(inv: Investigation) -> str:
    """Markdown report of an investigation."""
    s = summarize(inv)
    lines = [
        f"# Investigation report: {s['root_url']}",
        "",
        f"- URLs discovered: {s['discovered']}",
        f"- Pages scraped: {s['scraped']} (failed: {s['failed']})",
        f"- Likely auth type: {s['auth_type'] or 'unknown'}",
    ]
    if s["rate_limit"]:
        lines.append(f"- Rate limit: {s['rate_limit'][0]} requests per {s['rate_limit'][1]}")
    lines += ["", "## Topics", "", "| topic | pages |", "|---|---|"]
    lines += [f"| {t} | {n} |" for t, n in s["topics"].items()]
    lines += ["", "## Base URLs", ""]
    lines += [f"- {u}" for u in s["base_urls"]] or ["- none found"]
    lines += ["", f"## Endpoints mentioned ({len(s['endpoints'])})", ""]
    lines += [f"- `{m} {p}`" for m, p in s["endpoints"]] or ["- none found"]
    lines += ["", f"## Possible quirks ({len(s['quirks'])})", ""]
    lines += [
        f"- **{q.severity}** {q.quirk_type}{f' (`{q.field_name}`)' if q.field_name else ''}: {q.description}"
        for q in s["quirks"]
    ] or ["- none found"]
    if inv.failed:
        lines += ["", "## Failed pages", ""] + [f"- {u}" for u in inv.failed]
    return "\n".join(lines) + "\n"


# ---- verify ----

@dataclass
class Issue:
    level: str  # error | warning
    message: str
    endpoint: Optional[str] = None


@dataclass
class Verification:
    issues: List[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(i.level == "error" for i in self.issues)

    @property
    def errors(self) -> List[Issue]:
        return [i for i in self.issues if i.level == "error"]

    @property
    def warnings(self) -> List[Issue]:
        return [i for i in self.issues if i.level == "warning"]


PLACEHOLDER_RE = re.compile(r"^(?:\{[^}]+\}|:\w+|<[^>]+>)$")


def path_params(path: str) -> List[str]:
    names = []
    for seg in path.strip("/").split("/"):
        if PLACEHOLDER_RE.match(seg):
            names.append(seg.strip("{}<>:"))
    return names


def path_pattern(path: str) -> re.Pattern:
    """Regex matching the path as written in docs, whatever placeholder style they use."""
    parts = []
    for seg in path.strip("/").split("/"):
        if PLACEHOLDER_RE.match(seg):
            parts.append(r"(?:\{[^}/]+\}|:\w+|<[^>/]+>|[\w.~-]+)")
        else:
            parts.append(re.escape(seg))
    return re.compile("/" + "/".join(parts) + r"(?![\w-])")


def verify(doc: ApiDoc, source_text: str) -> Verification:
    """Check an extracted ApiDoc against the text it was extracted from."""
    v = Verification()
    parsed = urlparse(doc.base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        v.issues.append(Issue("error", f"base_url is not an absolute http(s) URL: {doc.base_url!r}"))
    if not doc.endpoints:
        v.issues.append(Issue("error", "No endpoints were extracted"))

    seen = set()
    for ep in doc.endpoints:
        label = f"{ep.method} {ep.path}"
        if (ep.method, ep.path) in seen:
            v.issues.append(Issue("error", "Duplicate endpoint", label))
        seen.add((ep.method, ep.path))

        if not path_pattern(ep.path).search(source_text):
            v.issues.append(Issue("error", "Path does not appear in the documentation pages", label))

        declared = {p.name for p in ep.parameters if p.param_type == "path"}
        for name in path_params(ep.path):
            if name not in declared:
                v.issues.append(Issue("error", f"Path placeholder '{name}' has no path parameter", label))
        for name in declared - set(path_params(ep.path)):
            v.issues.append(Issue("warning", f"Path parameter '{name}' is not in the path", label))

        if ep.cost_per_call is not None and ep.cost_per_call < 0:
            v.issues.append(Issue("error", "Negative cost_per_call", label))
        if ep.rate_limit is not None and ep.rate_limit <= 0:
            v.issues.append(Issue("error", "rate_limit must be positive", label))
        if ep.rate_limit is not None and ep.rate_limit_period is None:
            v.issues.append(Issue("warning", "rate_limit has no period", label))

    for q in doc.quirks:
        if q.field_name and q.field_name not in source_text:
            v.issues.append(Issue("warning", f"Quirk field '{q.field_name}' does not appear in the documentation"))
    return v


# ---- end-to-end ----

def _add_detected_quirks(doc: ApiDoc, text: str) -> int:
    existing = {(q.quirk_type, q.field_name) for q in doc.quirks}
    added = 0
    for dq in detect_quirks(text, doc):
        if (dq.quirk_type, dq.field_name) in existing:
            continue
        existing.add((dq.quirk_type, dq.field_name))
        doc.quirks.append(
            QuirkDoc(
                quirk_type=dq.quirk_type,
                severity=dq.severity,
                field_name=dq.field_name,
                description=dq.description,
                conversion_function=dq.conversion_function,
                conversion_language=dq.conversion_language,
                example_input=dq.example_input,
                example_output=dq.example_output,
                discovered_by="auto",
            )
        )
        added += 1
    return added


def ingest_from_params(
    params_file: Path,
    overrides: Optional[Dict[str, Any]] = None,
    *,
    scrape_client: Optional[ScrapeClient] = None,
    llm_client: Any = None,
    session_factory: Any = None,
) -> Dict[str, Any]:
    """Run investigate -> report -> extract -> verify (-> store) from a params file."""
    params: Params = load_params(Path(params_file), overrides)
    settings = Settings.from_env_or_file(Path(params.api_keys_file) if params.api_keys_file else None)
    results = Path(params.results_dir)
    results.mkdir(parents=True, exist_ok=True)
    pages_dir = Path(params.source.pages_dir)

    if params.source.reuse_pages and pages_dir.is_dir() and any(pages_dir.glob("*.md")):
        pages = load_pages(pages_dir)
        inv = Investigation(root_url=params.source.url or str(pages_dir), pages=pages)
        print(f"[ingest] Reusing {len(pages)} pages from {pages_dir}")
    else:
        if not params.source.url:
            raise ConfigError("source.url is required when no scraped pages are available")
        client = scrape_client or ScrapeClient.from_settings(settings)
        inv = investigate(
            client,
            params.source.url,
            max_pages=params.source.max_pages,
            search=params.source.search,
            map_limit=params.source.map_limit,
            sleep_s=params.run.sleep_s,
        )
        save_pages(inv.pages, pages_dir)

    report_path = results / "report.md"
    report_path.write_text(report(inv), encoding="utf-8")
    print(f"[ingest] Report written to {report_path}")

    doc, stats = extract_api_doc(inv.pages, params, client=llm_client, out_dir=results)
    if params.run.detect_quirks:
        stats["auto_quirks"] = _add_detected_quirks(doc, inv.text)

    verification = verify(doc, inv.text)
    (results / "verification.json").write_text(
        json.dumps(
            {"ok": verification.ok, "issues": [i.__dict__ for i in verification.issues]},
            indent=2,
        ),
        encoding="utf-8",
    )
    stats["verified"] = verification.ok
    stats["errors"] = len(verification.errors)
    stats["warnings"] = len(verification.warnings)
    for issue in verification.issues:
        print(f"[verify] {issue.level}: {issue.message}{f' ({issue.endpoint})' if issue.endpoint else ''}")

    stats["stored"] = False
    if params.run.store and (verification.ok or params.run.store_unverified):
        if session_factory is None and settings.database_url:
            session_factory = make_session_factory(make_engine(settings.database_url))
        if session_factory is not None:
            with session_scope(session_factory) as session:
                api = upsert_api(session, doc)
                stats["api_id"] = str(api.id)
            stats["stored"] = True
        else:
            print("[ingest] No DATABASE_URL configured; skipping store")
    elif params.run.store:
        print("[ingest] Verification failed; not storing (set run.store_unverified to override)")
    return stats


def store_doc_file(doc_path: Path, session_factory: Any, *, text_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Verify (when pages are given) and store a previously extracted ApiDoc JSON file."""
    doc = load_api_doc(doc_path)
    out: Dict[str, Any] = {"name": doc.name, "endpoints": len(doc.endpoints)}
    if text_dir is not None:
        pages: Sequence[ScrapedPage] = load_pages(text_dir)
        v = verify(doc, "\n\n".join(p.markdown for p in pages))
        out["verified"] = v.ok
        if not v.ok:
            out["errors"] = [f"{i.message} ({i.endpoint})" if i.endpoint else i.message for i in v.errors]
            return out
    with session_scope(session_factory) as session:
        api = upsert_api(session, doc)
        out["api_id"] = str(api.id)
    return out
