"""
Config-driven extraction that runs an LLM over scraped documentation pages and
returns a validated `ApiDoc` (instructor MD_JSON mode over litellm).

Key features
- Run parameters loaded from a YAML/JSON params file; relative paths resolve
  against the params file, CLI overrides are applied on top
- Prompts loaded from a YAML/JSON file (the bundled prompts.yaml by default)
- LLM provider/model routed by litellm; instructor enforces the schema
- Long documentation is split into chunks of at most `run.max_chars`; each chunk
  is extracted separately and the partial results are merged

Configure providers via environment variables per litellm (OPENAI_API_KEY,
ANTHROPIC_API_KEY, ...) or via the api_keys_file.
"""
from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from .config import load_json_or_yaml
from .errors import ConfigError, ExtractionError
from .models import ApiDoc, EndpointDoc
from .scrape import ScrapedPage


@dataclass
class SourceConfig:
    url: Optional[str] = None
    search: Optional[str] = None  # optional keyword filter for site mapping
    max_pages: int = 20
    map_limit: int = 200
    pages_dir: str = "pages"
    reuse_pages: bool = True  # skip scraping when pages_dir already holds .md files


@dataclass
class LLMConfig:
    provider: str = "openai"
    model: str = "gpt-4.1"
    temperature: float = 0.0
    max_retries: int = 2
    timeout_s: int = 120

    @property
    def litellm_model(self) -> str:
        return self.model if "/" in self.model else f"{self.provider}/{self.model}"


@dataclass
class PromptConfig:
    file: Optional[str] = None  # None: bundled prompts.yaml
    system_key: str = "system"
    user_key: str = "extract"


@dataclass
class RunConfig:
    max_chars: int = 60000
    sleep_s: float = 0.0
    on_parse_error: str = "save_raw"  # save_raw | skip | retry
    detect_quirks: bool = True
    store: bool = True
    store_unverified: bool = False


@dataclass
class Params:
    results_dir: str = "results"
    api_keys_file: Optional[str] = None
    source: SourceConfig = field(default_factory=SourceConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    prompt: PromptConfig = field(default_factory=PromptConfig)
    run: RunConfig = field(default_factory=RunConfig)


def _resolve(base_dir: Path, value: Optional[str]) -> Optional[str]:
    if not value or os.path.isabs(value):
        return value
    return str((base_dir / value).resolve())


def load_params(params_path: Path, overrides: Optional[Dict[str, Any]] = None) -> Params:
    """Load run parameters, apply overrides, resolve relative paths against the params file."""
    params_path = Path(params_path)
    data = load_json_or_yaml(params_path)
    source = data.get("source", {})
    llm = data.get("llm", {})
    prompt = data.get("prompt", {})
    run = data.get("run", {})
    params = Params(
        results_dir=data.get("results_dir", "results"),
        api_keys_file=data.get("api_keys_file"),
        source=SourceConfig(
            url=source.get("url"),
            search=source.get("search"),
            max_pages=int(source.get("max_pages", 20)),
            map_limit=int(source.get("map_limit", 200)),
            pages_dir=source.get("pages_dir", "pages"),
            reuse_pages=bool(source.get("reuse_pages", True)),
        ),
        llm=LLMConfig(
            provider=llm.get("provider", "openai"),
            model=llm.get("model", "gpt-4.1"),
            temperature=float(llm.get("temperature", 0.0)),
            max_retries=int(llm.get("max_retries", 2)),
            timeout_s=int(llm.get("timeout_s", 120)),
        ),
        prompt=PromptConfig(
            file=prompt.get("file"),
            system_key=prompt.get("system_key", "system"),
            user_key=prompt.get("user_key", "extract"),
        ),
        run=RunConfig(
            max_chars=int(run.get("max_chars", 60000)),
            sleep_s=float(run.get("sleep_s", 0.0)),
            on_parse_error=run.get("on_parse_error", "save_raw"),
            detect_quirks=bool(run.get("detect_quirks", True)),
            store=bool(run.get("store", True)),
            store_unverified=bool(run.get("store_unverified", False)),
        ),
    )
    if params.run.on_parse_error not in {"save_raw", "skip", "retry"}:
        raise ConfigError(f"run.on_parse_error must be save_raw, skip or retry (got {params.run.on_parse_error!r})")

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key in {"results_dir", "api_keys_file"}:
            setattr(params, key, str(value))
        elif key in {"url", "search", "pages_dir"}:
            setattr(params.source, key, str(value))
        elif key == "max_pages":
            params.source.max_pages = int(value)
        elif key in {"provider", "model"}:
            setattr(params.llm, key, str(value))
        elif key == "prompt_key":
            params.prompt.user_key = str(value)
        else:
            raise ConfigError(f"Unknown override: {key}")

    base_dir = params_path.parent
    params.results_dir = _resolve(base_dir, params.results_dir) or params.results_dir
    params.api_keys_file = _resolve(base_dir, params.api_keys_file)
    params.source.pages_dir = _resolve(base_dir, params.source.pages_dir) or params.source.pages_dir
    params.prompt.file = _resolve(base_dir, params.prompt.file)
    return params


def load_prompts(prompt_cfg: PromptConfig) -> Tuple[str, str]:
    if prompt_cfg.file:
        path = Path(prompt_cfg.file)
        data = load_json_or_yaml(path)
    else:
        path = Path("prompts.yaml")
        text = resources.files("api_knowledge").joinpath("prompts.yaml").read_text(encoding="utf-8")
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ConfigError(f"Prompt file did not parse as a mapping: {path}")

    system_text = data.get(prompt_cfg.system_key) or data.get("system", "")
    user_text = data.get(prompt_cfg.user_key) or data.get("extract", "")
    if not system_text or not user_text:
        raise ConfigError(
            f"Prompt keys not found in {path}: system='{prompt_cfg.system_key}' user='{prompt_cfg.user_key}'. "
            f"Available keys: {sorted(data.keys())}"
        )
    return str(system_text), str(user_text)


def _split_block(block: str, max_chars: int) -> List[str]:
    """Split an oversized page on line boundaries; a single overlong line is cut into slices."""
    pieces: List[str] = []
    current = ""
    for line in block.splitlines(keepends=True):
        while len(line) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(line[:max_chars])
            line = line[max_chars:]
        if len(current) + len(line) > max_chars:
            pieces.append(current)
            current = ""
        current += line
    if current:
        pieces.append(current)
    return pieces


def chunk_pages(pages: Sequence[ScrapedPage], max_chars: int) -> List[str]:
    """Group pages into documents of at most max_chars each; an oversized page spans several chunks."""
    chunks: List[str] = []
    current: List[str] = []
    size = 0
    for page in pages:
        block = f"## Page: {page.title or page.url}\nSource: {page.url}\n\n{page.markdown.strip()}\n"
        for piece in _split_block(block, max_chars):
            # +1 for the newline the pieces are joined with
            if current and size + 1 + len(piece) > max_chars:
                chunks.append("\n".join(current))
                current, size = [], 0
            size += len(piece) + (1 if current else 0)
            current.append(piece)
    if current:
        chunks.append("\n".join(current))
    return chunks


def _richer(a: EndpointDoc, b: EndpointDoc) -> EndpointDoc:
    """Keep the endpoint with more parameters and fill its gaps from the other."""
    keep, other = (a, b) if len(a.parameters) >= len(b.parameters) else (b, a)
    filled = keep.model_copy()
    for name in ("description", "rate_limit", "rate_limit_period", "cost_per_call", "pagination_type"):
        if getattr(filled, name) is None and getattr(other, name) is not None:
            setattr(filled, name, getattr(other, name))
    return filled


def merge_docs(docs: Sequence[ApiDoc]) -> ApiDoc:
    """Merge partial extractions: first non-empty scalar wins, endpoints/quirks are unioned."""
    if not docs:
        raise ExtractionError("Nothing to merge: every chunk failed")
    merged = docs[0].model_copy(deep=True)
    endpoints = {(e.method, e.path): e for e in merged.endpoints}
    quirks = {(q.quirk_type, q.field_name, q.description): q for q in merged.quirks}
    for doc in docs[1:]:
        for name in ("version", "auth_type", "documentation_url", "description", "provider", "category"):
            if getattr(merged, name) is None and getattr(doc, name) is not None:
                setattr(merged, name, getattr(doc, name))
        merged.is_free = merged.is_free or doc.is_free
        merged.requires_approval = merged.requires_approval or doc.requires_approval
        for ep in doc.endpoints:
            key = (ep.method, ep.path)
            endpoints[key] = _richer(endpoints[key], ep) if key in endpoints else ep
        for q in doc.quirks:
            quirks.setdefault((q.quirk_type, q.field_name, q.description), q)
    merged.endpoints = list(endpoints.values())
    merged.quirks = list(quirks.values())
    return merged


def make_client() -> Any:
    import instructor
    from litellm import completion

    return instructor.from_litellm(completion, mode=instructor.Mode.MD_JSON)


def _sanitize(s: str) -> str:
    return s.replace("/", "_").replace(" ", "_")


def extract_api_doc(
    pages: Sequence[ScrapedPage],
    params: Params,
    *,
    client: Any = None,
    out_dir: Optional[Path] = None,
) -> Tuple[ApiDoc, Dict[str, Any]]:
    """Run the extraction over all pages and return (merged ApiDoc, stats)."""
    if not pages:
        raise ExtractionError("No documentation pages to extract from")
    system_text, user_text = load_prompts(params.prompt)
    client = client or make_client()
    out_root = Path(out_dir or params.results_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    chunks = chunk_pages(pages, params.run.max_chars)
    docs: List[ApiDoc] = []
    failed = 0
    skipped = 0

    def _call(document: str, retries: int) -> ApiDoc:
        return client.chat.completions.create(
            model=params.llm.litellm_model,
            messages=[
                {"role": "system", "content": system_text},
                {"role": "user", "content": user_text},
                {"role": "user", "content": document},
            ],
            temperature=params.llm.temperature,
            max_retries=retries,
            timeout=params.llm.timeout_s,
            response_model=ApiDoc,
        )

    for i, document in enumerate(chunks, start=1):
        print(f"[extract] Chunk {i}/{len(chunks)} ({len(document)} chars) with {params.llm.litellm_model}")
        try:
            docs.append(_call(document, params.llm.max_retries))
        except Exception as e:
            policy = params.run.on_parse_error
            if policy == "retry":
                try:
                    docs.append(_call(document, max(1, params.llm.max_retries)))
                    print(f"[extract] Chunk {i} succeeded on retry")
                    continue
                except Exception as e2:
                    e = e2
            failed += 1
            if policy == "save_raw":
                err_path = out_root / f"chunk_{i:03d}.error.txt"
                err_path.write_text(f"Error: {e}\nModel: {params.llm.litellm_model}\n\n{document}", encoding="utf-8")
                print(f"[extract] Chunk {i} failed: {e} (saved to {err_path.name})")
            else:
                skipped += 1
                print(f"[extract] Chunk {i} failed: {e} (skipped)")
        if params.run.sleep_s and params.run.sleep_s > 0:
            time.sleep(params.run.sleep_s)

    doc = merge_docs(docs)
    out_file = out_root / f"{_sanitize(doc.name)}.json"
    out_file.write_text(json.dumps(doc.model_dump(), indent=2), encoding="utf-8")
    stats = {
        "chunks": len(chunks),
        "processed": len(docs),
        "failed": failed,
        "skipped": skipped,
        "endpoints": len(doc.endpoints),
        "quirks": len(doc.quirks),
        "output": str(out_file),
        "model": params.llm.litellm_model,
    }
    return doc, stats


def load_api_doc(path: Path) -> ApiDoc:
    return ApiDoc.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))
