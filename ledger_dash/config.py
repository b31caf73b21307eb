"""Application configuration utilities for the ledger_dash backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load any variables defined in a local .env file before reading them.
load_dotenv()


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project.
        supabase_url: Base URL of the hosted Supabase project, e.g.
            ``https://xyz.supabase.co``. Rows, rules and users live there.
        supabase_anon_key: Public anon key sent as the ``apikey`` header on
            every request. Row-level security is enforced with the user's
            bearer token, not with this key.
        currency: ISO code stamped on every imported transaction.
        request_timeout: Timeout in seconds for calls to Supabase.
        month_limit: Maximum number of rows fetched for a single month scope.
        all_limit: Maximum number of rows fetched for the "all" scope.
        preview_rows: Number of source rows echoed back by the import preview.
        log_level: Root logging level name.
        cors_origins: Origins allowed by the CORS middleware.
        rule_cache_size: Number of users whose rule lists are kept in memory;
            the least recently used one is dropped beyond it.
    """

    project_root: Path
    supabase_url: str
    supabase_anon_key: Optional[str]
    currency: str
    request_timeout: float
    month_limit: int
    all_limit: int
    preview_rows: int
    log_level: str
    cors_origins: tuple[str, ...]
    rule_cache_size: int = 256

    @property
    def rest_endpoint(self) -> str:
        """Return the PostgREST base URL of the Supabase project."""

        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def auth_endpoint(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/auth/v1"


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values, allowing users to
    customise the runtime without touching the source code.
    """

    project_root = Path(__file__).resolve().parent.parent
    origins = getenv_with_default("LEDGER_DASH_CORS_ORIGINS", "*") or "*"

    return AppConfig(
        project_root=project_root,
        supabase_url=getenv_with_default("LEDGER_DASH_SUPABASE_URL", "http://localhost:54321") or "",
        supabase_anon_key=getenv_with_default("LEDGER_DASH_SUPABASE_ANON_KEY"),
        currency=(getenv_with_default("LEDGER_DASH_CURRENCY", "EUR") or "EUR").upper(),
        request_timeout=float(getenv_with_default("LEDGER_DASH_REQUEST_TIMEOUT", "30") or 30),
        month_limit=int(getenv_with_default("LEDGER_DASH_MONTH_LIMIT", "5000") or 5000),
        all_limit=int(getenv_with_default("LEDGER_DASH_ALL_LIMIT", "10000") or 10000),
        preview_rows=int(getenv_with_default("LEDGER_DASH_PREVIEW_ROWS", "20") or 20),
        log_level=(getenv_with_default("LEDGER_DASH_LOG_LEVEL", "INFO") or "INFO").upper(),
        cors_origins=tuple(origin.strip() for origin in origins.split(",") if origin.strip()),
        rule_cache_size=int(getenv_with_default("LEDGER_DASH_RULE_CACHE_SIZE", "256") or 256),
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings, keeping the
    return type uniform.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)
