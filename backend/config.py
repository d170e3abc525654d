"""Application configuration helpers."""
from __future__ import annotations

import os
from functools import lru_cache
from urllib.parse import quote, urlparse, urlunparse

from dotenv import load_dotenv

# Load variables from .env into process environment as early as possible.
load_dotenv()

DEFAULT_REASONING_MODEL = "gpt-4o"
DEFAULT_REASONING_TIMEOUT = 60.0


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Environment variable {name} must be set")
    return value


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    return value or None


def _encode_pg_password(conn_str: str) -> str:
    """Encode password in PostgreSQL connection URI if needed."""
    # If it's a keyword=value style connection string, return as-is
    if not conn_str.startswith(("postgres://", "postgresql://")):
        return conn_str

    try:
        parsed = urlparse(conn_str)
        if parsed.password:
            username = quote(parsed.username, safe="")
            password = quote(parsed.password, safe="")

            if parsed.port:
                netloc = f"{username}:{password}@{parsed.hostname}:{parsed.port}"
            else:
                netloc = f"{username}:{password}@{parsed.hostname}"

            return urlunparse(parsed._replace(netloc=netloc))

        return conn_str
    except ValueError:
        # Unparseable URI: hand it to asyncpg untouched
        return conn_str


@lru_cache(maxsize=None)
def get_pg_conn_str() -> str:
    """Return the Postgres connection string with properly encoded password."""
    conn_str = _require_env("PG_CONN_STR")
    return _encode_pg_password(conn_str)


@lru_cache(maxsize=None)
def get_openai_api_key() -> str:
    """Ensure the OpenAI API key is configured and return it."""
    return _require_env("OPENAI_API_KEY")


@lru_cache(maxsize=None)
def get_reasoning_model() -> str:
    """Return the chat model used by every pipeline stage."""
    return _optional_env("REASONING_MODEL") or DEFAULT_REASONING_MODEL


@lru_cache(maxsize=None)
def get_reasoning_timeout() -> float:
    """Return the per-call timeout (seconds) for reasoning service requests."""

    value = _optional_env("REASONING_TIMEOUT_SECONDS")
    if value is None:
        return DEFAULT_REASONING_TIMEOUT
    try:
        timeout = float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid REASONING_TIMEOUT_SECONDS: {value!r}") from exc
    if timeout <= 0:
        raise ValueError("REASONING_TIMEOUT_SECONDS must be positive")
    return timeout


@lru_cache(maxsize=None)
def use_in_memory_store() -> bool:
    """Return True when decisions should be kept in process memory instead of Postgres."""

    flag = os.getenv("USE_IN_MEMORY_STORE", "0").lower()
    return flag in {"1", "true", "yes", "on"}


@lru_cache(maxsize=None)
def get_cors_origins() -> list[str]:
    """Return allowed CORS origins from FRONTEND_URL (comma separated)."""
    value = _optional_env("FRONTEND_URL")
    if not value:
        return ["*"]
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@lru_cache(maxsize=None)
def get_log_level() -> str:
    return (_optional_env("LOG_LEVEL") or "INFO").upper()
