import pytest
import requests

from api_knowledge.errors import RateLimitError, ScrapeError
from api_knowledge.scrape import ScrapeClient, ScrapedPage, load_pages, save_pages


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records each request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(*responses, tries=3):
    return ScrapeClient("fc-key", "https://scrape.test/", tries=tries, retry_sleep_s=0, max_wait_s=0,
                        session=FakeSession(*responses))


def test_scrape_returns_markdown_page():
    client = _client(
        FakeResponse(payload={
            "success": True,
            "data": {
                "markdown": "# Customers",
                "metadata": {"title": "Customers", "sourceURL": "https://docs.test/customers", "statusCode": 200},
            },
        })
    )
    page = client.scrape("https://docs.test/customers")
    assert page.markdown == "# Customers"
    assert page.title == "Customers"
    assert page.status_code == 200

    sent = client.http.requests[0]
    assert sent["url"] == "https://scrape.test/v1/scrape"
    assert sent["json"] == {"url": "https://docs.test/customers", "formats": ["markdown"], "onlyMainContent": True}
    assert sent["headers"]["Authorization"] == "Bearer fc-key"


def test_map_site_accepts_strings_and_objects():
    client = _client(
        FakeResponse(payload={"success": True, "links": ["https://d.test/a", {"url": "https://d.test/b"}, "https://d.test/a"]})
    )
    assert client.map_site("https://d.test", search="auth", limit=5) == ["https://d.test/a", "https://d.test/b"]
    assert client.http.requests[0]["json"] == {"url": "https://d.test", "limit": 5, "search": "auth"}


def test_connection_errors_and_server_errors_are_retried():
    ok = FakeResponse(payload={"success": True, "links": []})
    client = _client(requests.exceptions.ConnectionError("boom"), FakeResponse(status_code=502), ok)
    assert client.map_site("https://d.test") == []
    assert len(client.http.requests) == 3


def test_rate_limit_raises_after_last_attempt():
    client = _client(
        FakeResponse(status_code=429, headers={"Retry-After": "7"}),
        FakeResponse(status_code=429, headers={"Retry-After": "7"}),
        tries=2,
    )
    with pytest.raises(RateLimitError) as exc:
        client.scrape("https://d.test/x")
    assert exc.value.status_code == 429
    assert exc.value.url == "https://d.test/x"
    # the wait is capped at max_wait_s
    assert exc.value.retry_after == 0


def test_rate_limit_then_success():
    ok = FakeResponse(payload={"success": True, "data": {"markdown": "ok", "metadata": {}}})
    client = _client(FakeResponse(status_code=429), ok)
    assert client.scrape("https://d.test/x").markdown == "ok"


def test_auth_failure_is_not_retried():
    client = _client(FakeResponse(status_code=401, payload={"success": False}))
    with pytest.raises(ScrapeError) as exc:
        client.scrape("https://d.test/x")
    assert exc.value.status_code == 401
    assert len(client.http.requests) == 1


def test_unsuccessful_payload_raises():
    client = _client(FakeResponse(status_code=200, payload={"success": False, "error": "blocked"}))
    with pytest.raises(ScrapeError, match="blocked"):
        client.scrape("https://d.test/x")


def test_giving_up_after_all_attempts():
    client = _client(FakeResponse(status_code=500), FakeResponse(status_code=503), tries=2)
    with pytest.raises(ScrapeError, match="Giving up"):
        client.map_site("https://d.test")


def test_saved_pages_load_back(tmp_path):
    pages = [
        ScrapedPage(url="https://docs.test/api/customers", markdown="# Customers\n\nGET /v1/customers", title="Customers"),
        ScrapedPage(url="https://docs.test/", markdown="Welcome"),
    ]
    written = save_pages(pages, tmp_path / "pages")
    assert [p.name for p in written] == ["docs.test_api_customers.md", "docs.test.md"]

    loaded = {p.url: p for p in load_pages(tmp_path / "pages")}
    assert loaded["https://docs.test/api/customers"].markdown == "# Customers\n\nGET /v1/customers"
    assert loaded["https://docs.test/api/customers"].title == "Customers"
    assert loaded["https://docs.test/"].title is None


def test_load_pages_without_front_matter(tmp_path):
    (tmp_path / "plain.md").write_text("just text", encoding="utf-8")
    (page,) = load_pages(tmp_path)
    assert page.markdown == "just text"
    assert page.url.endswith("plain.md")
