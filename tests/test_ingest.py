import json

import pytest
from sqlalchemy import select

from api_knowledge.errors import ConfigError, RateLimitError, ScrapeError
from api_knowledge.ingest import (
    Investigation,
    classify_url,
    find_base_urls,
    find_endpoints,
    guess_auth_type,
    ingest_from_params,
    investigate,
    path_params,
    report,
    select_urls,
    store_doc_file,
    verify,
)
from api_knowledge.models import ApiDoc, EndpointDoc, ParameterDoc, QuirkDoc
from api_knowledge.scrape import ScrapedPage, save_pages
from api_knowledge.store import get_api
from api_knowledge.tables import Api

from conftest import fake_llm

DOCS = """
# Customers API

Base URL: https://api.shop.test/v1

Authenticate with `Authorization: Bearer <token>`.

GET /v1/customers/:id retrieves a customer.
POST https://api.shop.test/v1/customers creates one.

All `amount` values are in cents.
Up to 25 requests per second.
"""


def test_classify_url():
    assert classify_url("https://docs.shop.test/api/authentication") == "authentication"
    assert classify_url("https://docs.shop.test/rate-limits") == "rate_limits"
    assert classify_url("https://docs.shop.test/pricing") == "pricing"
    assert classify_url("https://docs.shop.test/api/customers") == "reference"
    assert classify_url("https://docs.shop.test/guides/quickstart") == "guide"


def test_select_urls_takes_one_page_per_topic_first():
    topics = {
        "reference": ["r1", "r2", "r3"],
        "authentication": ["a1"],
        "guide": ["g1"],
        "pricing": ["p1", "p2"],
    }
    assert select_urls("root", topics, 5) == ["root", "a1", "p1", "r1", "g1"]
    assert select_urls("root", topics, 100)[5:] == ["p2", "r2", "r3"]


def test_text_scanners():
    assert find_endpoints(DOCS) == [("GET", "/v1/customers/:id"), ("POST", "/v1/customers")]
    assert find_base_urls(DOCS)[0] == "https://api.shop.test/v1"
    assert guess_auth_type(DOCS) == "bearer"
    assert guess_auth_type("Pass your API key in the X-Api-Key header") == "api_key"
    assert guess_auth_type("nothing") is None
    assert path_params("/v1/{customer}/sources/:source_id/<fmt>") == ["customer", "source_id", "fmt"]


class FakeScrapeClient:
    def __init__(self, links, pages, failing=()):
        self.links = links
        self.pages = pages
        self.failing = set(failing)
        self.scraped = []

    def map_site(self, url, search=None, limit=200):
        return self.links

    def scrape(self, url):
        self.scraped.append(url)
        if url in self.failing:
            raise ScrapeError("boom", url=url, status_code=500)
        return ScrapedPage(url=url, markdown=self.pages.get(url, ""), title=url.rsplit("/", 1)[-1])


def test_investigate_scrapes_priority_pages_and_skips_failures():
    client = FakeScrapeClient(
        links=["https://d.test/guides/intro", "https://d.test/api/customers", "https://d.test/authentication"],
        pages={"https://d.test": "home", "https://d.test/authentication": DOCS},
        failing={"https://d.test/guides/intro"},
    )
    inv = investigate(client, "https://d.test", max_pages=4)
    assert client.scraped == [
        "https://d.test",
        "https://d.test/authentication",
        "https://d.test/api/customers",
        "https://d.test/guides/intro",
    ]
    assert inv.failed == ["https://d.test/guides/intro"]
    assert len(inv.pages) == 3
    assert inv.topics["reference"] == ["https://d.test/api/customers"]


class RateLimitedScrapeClient(FakeScrapeClient):
    def scrape(self, url):
        self.scraped.append(url)
        if len(self.scraped) > 1:
            raise RateLimitError("429 Too Many Requests", url=url, retry_after=60)
        return ScrapedPage(url=url, markdown=self.pages.get(url, ""))


def test_investigate_stops_on_rate_limit():
    client = RateLimitedScrapeClient(
        links=["https://d.test/authentication", "https://d.test/api/customers", "https://d.test/guides/intro"],
        pages={"https://d.test": "home"},
    )
    with pytest.raises(RateLimitError):
        investigate(client, "https://d.test", max_pages=4)
    assert client.scraped == ["https://d.test", "https://d.test/authentication"]


def test_report_lists_findings():
    inv = Investigation(root_url="https://d.test", pages=[ScrapedPage(url="u", markdown=DOCS)], failed=["x"])
    text = report(inv)
    assert text.startswith("# Investigation report: https://d.test")
    assert "- Likely auth type: bearer" in text
    assert "- Rate limit: 25 requests per second" in text
    assert "`GET /v1/customers/:id`" in text
    assert "currency (`amount`)" in text
    assert "## Failed pages" in text


def _doc(**kwargs):
    data = dict(
        name="Shop",
        base_url="https://api.shop.test/v1",
        auth_type="bearer",
        endpoints=[
            EndpointDoc(
                method="GET",
                path="/v1/customers/{id}",
                parameters=[ParameterDoc(name="id", param_type="path", required=True)],
            ),
            EndpointDoc(method="POST", path="/v1/customers", rate_limit=25, rate_limit_period="second"),
        ],
    )
    data.update(kwargs)
    return ApiDoc(**data)


def test_verify_accepts_doc_matching_the_pages():
    result = verify(_doc(), DOCS)
    assert result.ok, result.issues
    assert result.warnings == []


def test_verify_flags_invented_and_inconsistent_endpoints():
    doc = _doc(
        base_url="api.shop.test",
        endpoints=[
            EndpointDoc(method="GET", path="/v1/invoices"),
            EndpointDoc(method="GET", path="/v1/customers/{id}"),
            EndpointDoc(method="GET", path="/v1/customers/{id}"),
            EndpointDoc(method="POST", path="/v1/customers", cost_per_call=-1, rate_limit=10),
        ],
        quirks=[QuirkDoc(quirk_type="time", field_name="created_ts", description="epoch")],
    )
    result = verify(doc, DOCS)
    messages = [i.message for i in result.errors]
    assert not result.ok
    assert any("base_url" in m for m in messages)
    assert "Path does not appear in the documentation pages" in messages
    assert "Duplicate endpoint" in messages
    assert "Path placeholder 'id' has no path parameter" in messages
    assert "Negative cost_per_call" in messages
    assert {i.message for i in result.warnings} == {
        "rate_limit has no period",
        "Quirk field 'created_ts' does not appear in the documentation",
    }


def test_verify_requires_endpoints():
    assert [i.message for i in verify(_doc(endpoints=[]), DOCS).errors] == ["No endpoints were extracted"]


def _write_params(tmp_path, **run):
    run_lines = "".join(f"  {k}: {str(v).lower() if isinstance(v, bool) else v}\n" for k, v in run.items())
    path = tmp_path / "params.yaml"
    path.write_text(
        "results_dir: results\n"
        "source:\n"
        "  url: https://d.test\n"
        "  pages_dir: pages\n"
        "run:\n" + (run_lines or "  store: true\n"),
        encoding="utf-8",
    )
    return path


def test_ingest_from_params_reuses_pages_and_stores(tmp_path, session_factory):
    save_pages([ScrapedPage(url="https://d.test/authentication", markdown=DOCS)], tmp_path / "pages")
    stats = ingest_from_params(
        _write_params(tmp_path),
        llm_client=fake_llm([_doc()]),
        session_factory=session_factory,
    )

    assert stats["verified"] is True
    assert stats["stored"] is True
    assert stats["auto_quirks"] >= 2
    assert (tmp_path / "results" / "report.md").exists()
    verification = json.loads((tmp_path / "results" / "verification.json").read_text(encoding="utf-8"))
    assert verification["ok"] is True

    with session_factory() as session:
        api = get_api(session, "Shop")
        assert api is not None
        assert {q.quirk_type for q in api.quirks} >= {"currency", "rate_limit"}


def test_ingest_from_params_scrapes_when_no_pages(tmp_path, session_factory):
    client = FakeScrapeClient(links=["https://d.test/api/customers"], pages={"https://d.test/api/customers": DOCS})
    stats = ingest_from_params(
        _write_params(tmp_path, detect_quirks=False),
        scrape_client=client,
        llm_client=fake_llm([_doc()]),
        session_factory=session_factory,
    )
    assert client.scraped == ["https://d.test", "https://d.test/api/customers"]
    assert len(list((tmp_path / "pages").glob("*.md"))) == 2
    assert "auto_quirks" not in stats
    assert stats["stored"] is True


def test_ingest_does_not_store_unverified_docs(tmp_path, session_factory):
    save_pages([ScrapedPage(url="https://d.test/a", markdown=DOCS)], tmp_path / "pages")
    invented = _doc(endpoints=[EndpointDoc(method="GET", path="/v1/made-up")])
    stats = ingest_from_params(
        _write_params(tmp_path), llm_client=fake_llm([invented]), session_factory=session_factory
    )
    assert stats["verified"] is False
    assert stats["stored"] is False
    with session_factory() as session:
        assert session.scalars(select(Api)).first() is None

    stats = ingest_from_params(
        _write_params(tmp_path, store_unverified=True),
        llm_client=fake_llm([invented]),
        session_factory=session_factory,
    )
    assert stats["stored"] is True


def test_store_doc_file_verifies_first(tmp_path, session_factory):
    pages_dir = tmp_path / "pages"
    save_pages([ScrapedPage(url="https://d.test/a", markdown=DOCS)], pages_dir)
    bad = tmp_path / "bad.json"
    bad.write_text(_doc(endpoints=[EndpointDoc(method="GET", path="/nope")]).model_dump_json(), encoding="utf-8")
    out = store_doc_file(bad, session_factory, text_dir=pages_dir)
    assert out["verified"] is False
    assert "api_id" not in out

    good = tmp_path / "good.json"
    good.write_text(_doc().model_dump_json(), encoding="utf-8")
    out = store_doc_file(good, session_factory, text_dir=pages_dir)
    assert out["verified"] is True
    assert out["api_id"]


def test_ingest_without_pages_or_url_is_a_config_error(tmp_path):
    with pytest.raises(ConfigError):
        ingest_from_params(_write_params(tmp_path), {"url": ""}, llm_client=fake_llm([]))
