"""
Settings for the external services this package talks to.

Values come from environment variables; optionally they are loaded from a keys
file for convenience (e.g., `examples/stripe/api_keys.txt`). Supported formats:
- .json: {"FIRECRAWL_API_KEY": "...", "DATABASE_URL": "..."}
- .yaml/.yml: same mapping as JSON
- other: simple KEY=VALUE lines, ignoring blanks and lines starting with '#'

Supported keys:
- DATABASE_URL (or SUPABASE_DB_URL): SQLAlchemy URL of the hosted Postgres database
- FIRECRAWL_API_KEY: key for the hosted scraping API
- FIRECRAWL_API_URL: override of the scraping API base URL
- anything else (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...) is exported to the
  environment so litellm can pick it up
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, cast

import yaml

from .errors import ConfigError

DEFAULT_FIRECRAWL_URL = "https://api.firecrawl.dev"


def load_json_or_yaml(path: Path) -> Dict[str, Any]:
    path = Path(path)
    if path.suffix.lower() in {".yaml", ".yml"}:
        return cast(Dict[str, Any], yaml.safe_load(path.read_text(encoding="utf-8")) or {})
    return cast(Dict[str, Any], json.loads(path.read_text(encoding="utf-8")))


def read_keys_file(path: Optional[Path]) -> Dict[str, str]:
    if not path or not Path(path).exists():
        return {}
    path = Path(path)
    if path.suffix.lower() in {".json", ".yaml", ".yml"}:
        data = load_json_or_yaml(path)
        if not isinstance(data, dict):
            raise ConfigError(f"Keys file did not parse as a mapping: {path}")
        return {k: str(v) for k, v in data.items() if isinstance(k, str) and isinstance(v, (str, int))}
    out: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" in line:
            k, v = line.split("=", 1)
            k = k.strip()
            if k:
                out[k] = v.strip().strip('"').strip("'")
    return out


@dataclass
class Settings:
    database_url: Optional[str] = None
    firecrawl_api_key: Optional[str] = None
    firecrawl_api_url: str = DEFAULT_FIRECRAWL_URL

    @classmethod
    def from_env_or_file(cls, keys_file: Optional[Path] = None, export: bool = True) -> "Settings":
        """Build settings; values in `keys_file` win over the environment.

        With `export=True` every key from the file is also written to os.environ,
        which is how LLM provider keys reach litellm.
        """
        d = read_keys_file(keys_file)
        if export:
            for k, v in d.items():
                os.environ[k] = v
        database_url = d.get("DATABASE_URL") or d.get("SUPABASE_DB_URL")
        if not database_url:
            database_url = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL")
        return cls(
            database_url=database_url,
            firecrawl_api_key=d.get("FIRECRAWL_API_KEY", os.getenv("FIRECRAWL_API_KEY")),
            firecrawl_api_url=(
                d.get("FIRECRAWL_API_URL") or os.getenv("FIRECRAWL_API_URL") or DEFAULT_FIRECRAWL_URL
            ).rstrip("/"),
        )

    def require_database(self) -> str:
        if not self.database_url:
            raise ConfigError("DATABASE_URL is not set (env or keys file)")
        return self.database_url

    def require_firecrawl(self) -> str:
        if not self.firecrawl_api_key:
            raise ConfigError("FIRECRAWL_API_KEY is not set (env or keys file)")
        return self.firecrawl_api_key


def integration_config(settings: Settings, *, supabase_project_ref: Optional[str] = None,
                       supabase_access_token: Optional[str] = None) -> Dict[str, Any]:
    """Return the JSON block that wires the database and scraping services into an MCP client.

    Missing credentials are rendered as placeholders so the block can be pasted
    into the client configuration and filled in by hand.
    """
    servers: Dict[str, Any] = {
        "firecrawl": {
            "command": "npx",
            "args": ["-y", "firecrawl-mcp"],
            "env": {"FIRECRAWL_API_KEY": settings.firecrawl_api_key or "<FIRECRAWL_API_KEY>"},
        },
        "supabase": {
            "command": "npx",
            "args": [
                "-y",
                "@supabase/mcp-server-supabase@latest",
                f"--project-ref={supabase_project_ref or '<PROJECT_REF>'}",
            ],
            "env": {"SUPABASE_ACCESS_TOKEN": supabase_access_token or "<SUPABASE_ACCESS_TOKEN>"},
        },
    }
    if settings.firecrawl_api_url != DEFAULT_FIRECRAWL_URL:
        servers["firecrawl"]["env"]["FIRECRAWL_API_URL"] = settings.firecrawl_api_url
    return {"mcpServers": servers}
