"""
Example client code for a stored (or freshly extracted) endpoint.

generate_client(api, endpoint, language) works on ORM rows (tables.Api /
tables.Endpoint) and on the pydantic models (models.ApiDoc / models.EndpointDoc)
alike; only attribute access is used. Supported languages: python (requests),
javascript (fetch), curl.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

LANGUAGES = ("python", "javascript", "curl")

PLACEHOLDER_RE = re.compile(r"\{([^}/]+)\}|:(\w+)|<([^>/]+)>")
SAMPLE_VALUES = {
    "string": "example",
    "integer": 1,
    "number": 1.0,
    "boolean": True,
    "array": [],
    "object": {},
}


def _env_name(api_name: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", api_name).strip("_").upper() + "_API_KEY"


def _sample(param: Any) -> Any:
    """Value for a parameter: its example, its default, its first enum value, or a typed placeholder."""
    raw = param.example if param.example not in (None, "") else param.default_value
    if raw in (None, "") and param.enum_values:
        raw = param.enum_values[0]
    data_type = param.data_type or "string"
    if raw in (None, ""):
        return SAMPLE_VALUES.get(data_type, "example")
    if data_type == "integer":
        try:
            return int(raw)
        except (TypeError, ValueError):
            return raw
    if data_type == "number":
        try:
            return float(raw)
        except (TypeError, ValueError):
            return raw
    if data_type == "boolean":
        return str(raw).strip().lower() in {"true", "1", "yes"}
    return raw


def _params(endpoint: Any, kind: str, required_only: bool = True) -> Dict[str, Any]:
    return {
        p.name: _sample(p)
        for p in endpoint.parameters
        if p.param_type == kind and (p.required or not required_only)
    }


def fill_path(endpoint: Any) -> str:
    """Substitute {id} / :id / <id> placeholders with sample values from the path parameters."""
    values = {name: str(v) for name, v in _params(endpoint, "path", required_only=False).items()}

    def _sub(m: re.Match) -> str:
        name = next(g for g in m.groups() if g)
        return values.get(name, name.upper())

    return PLACEHOLDER_RE.sub(_sub, endpoint.path)


def is_form_encoded(quirks: Iterable[Any]) -> bool:
    return any(
        q.quirk_type == "encoding" and "form" in (q.description or "").lower() for q in quirks
    )


def auth_headers(api: Any) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
    """Headers for the API's auth_type, plus (user, password) when basic auth is used.

    Secrets are rendered as references to an environment variable named after the API.
    """
    env = _env_name(api.name)
    auth_type = api.auth_type or "none"
    if auth_type in ("bearer", "oauth"):
        return {"Authorization": f"Bearer ${env}"}, None
    if auth_type == "api_key":
        return {"X-API-Key": f"${env}"}, None
    if auth_type == "basic":
        return {}, (f"${env}", "")
    return {}, None


def _helpers(quirks: Iterable[Any], language: str) -> List[str]:
    out = []
    for q in quirks:
        if not q.conversion_function:
            continue
        if (q.conversion_language or "python") != language:
            continue
        label = f"{q.quirk_type}" + (f" ({q.field_name})" if q.field_name else "")
        out.append(f"# Quirk: {label}: {q.description}\n{q.conversion_function.rstrip()}\n")
    return out


def _python(api: Any, endpoint: Any, quirks: List[Any]) -> str:
    env = _env_name(api.name)
    headers, basic = auth_headers(api)
    query = _params(endpoint, "query")
    body = _params(endpoint, "body")
    header_params = _params(endpoint, "header")
    form = is_form_encoded(quirks)

    lines = ["import os", "", "import requests", ""]
    lines += _helpers(quirks, "python")
    lines.append(f'BASE_URL = "{api.base_url}"')
    lines.append(f'API_KEY = os.environ["{env}"]')
    lines.append("")
    fname = re.sub(r"\W+", "_", f"{endpoint.method.lower()}_{endpoint.path}").strip("_").lower()
    lines.append(f"def {fname}():")
    if endpoint.description:
        doc = endpoint.description.strip().replace("\\", "\\\\").replace('"', '\\"')
        lines.append(f'    """{doc}"""')
    lines.append(f'    url = BASE_URL + "{fill_path(endpoint)}"')
    py_headers = {k: v.replace(f"${env}", "{API_KEY}") for k, v in headers.items()}
    py_headers.update({k: str(v) for k, v in header_params.items()})
    if py_headers:
        rendered = ", ".join(
            f'"{k}": f"{v}"' if "{API_KEY}" in v else f'"{k}": "{v}"' for k, v in py_headers.items()
        )
        lines.append(f"    headers = {{{rendered}}}")
    else:
        lines.append("    headers = {}")
    args = ["url", "headers=headers"]
    if query:
        lines.append(f"    params = {query!r}")
        args.append("params=params")
    if body and endpoint.method not in ("GET", "HEAD", "DELETE"):
        lines.append(f"    payload = {body!r}")
        args.append("data=payload" if form else "json=payload")
    if basic:
        args.append('auth=(API_KEY, "")')
    args.append("timeout=30")
    lines.append(f"    resp = requests.request(\"{endpoint.method}\", {', '.join(args)})")
    lines.append("    resp.raise_for_status()")
    lines.append("    return resp.json()" if (endpoint.response_format or "json") == "json" else "    return resp.text")
    return "\n".join(lines) + "\n"


def _javascript(api: Any, endpoint: Any, quirks: List[Any]) -> str:
    env = _env_name(api.name)
    headers, basic = auth_headers(api)
    headers = {k: v.replace(f"${env}", "${API_KEY}") for k, v in headers.items()}
    headers.update({k: str(v) for k, v in _params(endpoint, "header").items()})
    query = _params(endpoint, "query")
    body = _params(endpoint, "body")
    form = is_form_encoded(quirks)

    lines = [f'const BASE_URL = "{api.base_url}";', f"const API_KEY = process.env.{env};", ""]
    for q in quirks:
        lines.append(f"// Quirk: {q.quirk_type}" + (f" ({q.field_name})" if q.field_name else "") + f": {q.description}")
    if quirks:
        lines.append("")
    url = f"`${{BASE_URL}}{fill_path(endpoint)}`"
    if query:
        lines.append(f"const params = new URLSearchParams({json.dumps({k: str(v) for k, v in query.items()})});")
        url = f"`${{BASE_URL}}{fill_path(endpoint)}?${{params}}`"
    if basic:
        headers["Authorization"] = "Basic ${Buffer.from(`${API_KEY}:`).toString('base64')}"
    send_body = body and endpoint.method not in ("GET", "HEAD", "DELETE")
    if send_body:
        headers["Content-Type"] = "application/x-www-form-urlencoded" if form else "application/json"
    rendered = ",\n".join(f'    "{k}": `{v}`' for k, v in headers.items())
    lines.append(f"const response = await fetch({url}, {{")
    lines.append(f'  method: "{endpoint.method}",')
    lines.append("  headers: {\n" + rendered + "\n  }," if headers else "  headers: {},")
    if send_body:
        encoded = json.dumps(body)
        lines.append(
            f"  body: new URLSearchParams({encoded}).toString()," if form else f"  body: JSON.stringify({encoded}),"
        )
    lines.append("});")
    lines.append("if (!response.ok) throw new Error(`HTTP ${response.status}`);")
    lines.append(
        "const data = await response.json();" if (endpoint.response_format or "json") == "json"
        else "const data = await response.text();"
    )
    return "\n".join(lines) + "\n"


def _curl(api: Any, endpoint: Any, quirks: List[Any]) -> str:
    headers, basic = auth_headers(api)
    headers.update({k: str(v) for k, v in _params(endpoint, "header").items()})
    query = _params(endpoint, "query")
    body = _params(endpoint, "body")
    form = is_form_encoded(quirks)

    url = f"{api.base_url}{fill_path(endpoint)}"
    if query:
        url += "?" + "&".join(f"{k}={v}" for k, v in query.items())
    lines = [f"# {q.quirk_type}: {q.description}" for q in quirks]
    parts = [f'curl -X {endpoint.method} "{url}"']
    if basic:
        parts.append(f'-u "{basic[0]}:"')
    parts += [f'-H "{k}: {v}"' for k, v in headers.items()]
    if body and endpoint.method not in ("GET", "HEAD", "DELETE"):
        if form:
            parts += [f'-d "{k}={v}"' for k, v in body.items()]
        else:
            parts.append('-H "Content-Type: application/json"')
            parts.append(f"-d '{json.dumps(body)}'")
    lines.append(" \\\n  ".join(parts))
    return "\n".join(lines) + "\n"


RENDERERS = {"python": _python, "javascript": _javascript, "curl": _curl}


def generate_client(api: Any, endpoint: Any, language: str = "python", quirks: Optional[Iterable[Any]] = None) -> str:
    """Render a minimal call of `endpoint` in `language`.

    quirks defaults to the API's stored quirks; their conversion helpers are
    included for Python and listed as comments otherwise.
    """
    language = language.lower()
    if language not in RENDERERS:
        raise ValueError(f"Unsupported language {language!r}; choose from {', '.join(LANGUAGES)}")
    quirk_list = list(quirks if quirks is not None else (getattr(api, "quirks", None) or []))
    return RENDERERS[language](api, endpoint, quirk_list)
