from pathlib import Path

import pytest

from api_knowledge.errors import ConfigError, ExtractionError
from api_knowledge.extract import (
    PromptConfig,
    chunk_pages,
    extract_api_doc,
    load_api_doc,
    load_params,
    load_prompts,
    merge_docs,
)
from api_knowledge.models import ApiDoc, EndpointDoc, ParameterDoc, QuirkDoc
from api_knowledge.scrape import ScrapedPage

from conftest import fake_llm

PARAMS_YAML = """
results_dir: out
api_keys_file: keys.txt
source:
  url: https://docs.test/api
  max_pages: 5
  pages_dir: pages
llm:
  provider: anthropic
  model: claude-sonnet-4-0
prompt:
  user_key: extract_strict
run:
  max_chars: 150
  on_parse_error: skip
"""


def _params_file(tmp_path, text=PARAMS_YAML, name="params.yaml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_load_params_resolves_paths_against_params_file(tmp_path):
    params = load_params(_params_file(tmp_path))
    assert Path(params.results_dir) == (tmp_path / "out").resolve()
    assert Path(params.source.pages_dir) == (tmp_path / "pages").resolve()
    assert Path(params.api_keys_file) == (tmp_path / "keys.txt").resolve()
    assert params.source.max_pages == 5
    assert params.llm.litellm_model == "anthropic/claude-sonnet-4-0"
    assert params.run.on_parse_error == "skip"
    assert params.prompt.file is None


def test_load_params_overrides(tmp_path):
    params = load_params(
        _params_file(tmp_path),
        overrides={"model": "openai/gpt-4o-mini", "max_pages": "9", "prompt_key": "extract", "url": None},
    )
    assert params.llm.litellm_model == "openai/gpt-4o-mini"
    assert params.source.max_pages == 9
    assert params.prompt.user_key == "extract"
    assert params.source.url == "https://docs.test/api"

    with pytest.raises(ConfigError):
        load_params(_params_file(tmp_path), overrides={"colour": "blue"})


def test_load_params_json_and_bad_policy(tmp_path):
    params = load_params(_params_file(tmp_path, '{"source": {"url": "https://x.test"}}', "p.json"))
    assert params.llm.litellm_model == "openai/gpt-4.1"
    assert params.run.on_parse_error == "save_raw"

    with pytest.raises(ConfigError):
        load_params(_params_file(tmp_path, '{"run": {"on_parse_error": "explode"}}', "bad.json"))


def test_load_prompts_bundled_and_custom(tmp_path):
    system_text, user_text = load_prompts(PromptConfig(user_key="extract_strict"))
    assert "documentation" in system_text
    assert "verbatim" in user_text

    custom = tmp_path / "prompts.yaml"
    custom.write_text("system: be brief\nmine: list endpoints\n", encoding="utf-8")
    assert load_prompts(PromptConfig(file=str(custom), user_key="mine")) == ("be brief", "list endpoints")

    custom.write_text("other: x\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_prompts(PromptConfig(file=str(custom)))


def test_chunk_pages_groups_and_splits():
    pages = [ScrapedPage(url=f"u{i}", markdown="x" * 100, title="A") for i in range(3)]
    chunks = chunk_pages(pages, 150)
    assert len(chunks) == 3
    assert all(len(c) <= 150 for c in chunks)

    assert len(chunk_pages(pages, 10000)) == 1

    chunks = chunk_pages([ScrapedPage(url="u", markdown="y" * 500)], 200)
    assert all(len(c) <= 200 for c in chunks)
    assert "".join(chunks).count("y") == 500


def test_chunk_pages_keeps_the_tail_of_a_long_page():
    lines = [f"GET /v1/item_{i:02d} returns one item." for i in range(10)] + ["GET /v1/zzz_tail returns the rest."]
    chunks = chunk_pages([ScrapedPage(url="https://docs.test/ref", markdown="\n".join(lines))], 100)
    assert len(chunks) > 1
    assert all(len(c) <= 100 for c in chunks)
    assert "GET /v1/zzz_tail" in chunks[-1]
    # split on line boundaries
    assert all(any(c.startswith(line) for line in lines) for c in chunks[1:])


def test_merge_docs_unions_endpoints_and_fills_gaps():
    a = ApiDoc(
        name="Shop",
        base_url="https://api.shop.test/",
        endpoints=[EndpointDoc(method="get", path="orders")],
        quirks=[QuirkDoc(quirk_type="currency", description="cents")],
    )
    b = ApiDoc(
        name="Shop",
        base_url="https://api.shop.test",
        version="2",
        auth_type="api_key",
        endpoints=[
            EndpointDoc(
                method="GET",
                path="/orders",
                rate_limit=10,
                parameters=[ParameterDoc(name="limit", param_type="query", data_type="integer")],
            ),
            EndpointDoc(method="POST", path="/orders"),
        ],
        quirks=[QuirkDoc(quirk_type="currency", description="cents")],
    )
    merged = merge_docs([a, b])
    assert merged.base_url == "https://api.shop.test"
    assert merged.version == "2"
    assert merged.auth_type == "api_key"
    assert [(e.method, e.path) for e in merged.endpoints] == [("GET", "/orders"), ("POST", "/orders")]
    assert merged.endpoints[0].rate_limit == 10
    assert [p.name for p in merged.endpoints[0].parameters] == ["limit"]
    assert len(merged.quirks) == 1

    with pytest.raises(ExtractionError):
        merge_docs([])


def _pages():
    return [ScrapedPage(url=f"https://docs.test/{i}", markdown="GET /orders " + "x" * 80, title=str(i)) for i in range(2)]


def test_extract_api_doc_merges_chunks_and_writes_json(tmp_path):
    params = load_params(_params_file(tmp_path))
    docs = [
        ApiDoc(name="Shop API", base_url="https://api.shop.test", endpoints=[EndpointDoc(method="GET", path="/orders")]),
        ApiDoc(name="Shop API", base_url="https://api.shop.test", endpoints=[EndpointDoc(method="POST", path="/orders")]),
    ]
    client = fake_llm(docs)
    doc, stats = extract_api_doc(_pages(), params, client=client, out_dir=tmp_path / "results")

    assert stats["chunks"] == 2
    assert stats["processed"] == 2
    assert stats["endpoints"] == 2
    assert stats["model"] == "anthropic/claude-sonnet-4-0"
    call = client.chat.completions.calls[0]
    assert call["response_model"] is ApiDoc
    assert call["messages"][0]["role"] == "system"
    assert "GET /orders" in call["messages"][-1]["content"]

    saved = load_api_doc(Path(stats["output"]))
    assert saved.name == "Shop API"
    assert Path(stats["output"]).name == "Shop_API.json"


def test_extract_api_doc_failure_policies(tmp_path):
    params = load_params(_params_file(tmp_path))
    good = ApiDoc(name="Shop", base_url="https://api.shop.test")

    params.run.on_parse_error = "save_raw"
    _, stats = extract_api_doc(_pages(), params, client=fake_llm([RuntimeError("bad json"), good]), out_dir=tmp_path)
    assert stats["failed"] == 1
    assert (tmp_path / "chunk_001.error.txt").read_text(encoding="utf-8").startswith("Error: bad json")

    params.run.on_parse_error = "retry"
    _, stats = extract_api_doc(
        _pages(), params, client=fake_llm([RuntimeError("bad"), good, good]), out_dir=tmp_path
    )
    assert stats["processed"] == 2
    assert stats["failed"] == 0

    params.run.on_parse_error = "skip"
    with pytest.raises(ExtractionError):
        extract_api_doc(_pages(), params, client=fake_llm([RuntimeError("a"), RuntimeError("b")]), out_dir=tmp_path)


def test_extract_api_doc_requires_pages(tmp_path):
    params = load_params(_params_file(tmp_path))
    with pytest.raises(ExtractionError):
        extract_api_doc([], params, client=fake_llm([]))
