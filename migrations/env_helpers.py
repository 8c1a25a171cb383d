"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be imported (and tested) without an
active alembic context. The service itself hands DATABASE_URL straight to
psycopg2; SQLAlchemy needs a URL, so libpq key=value DSNs are converted here.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlsplit, urlunsplit

SQLALCHEMY_SCHEME = "postgresql+psycopg2"

_DSN_PAIR = re.compile(r"(\w+)\s*=\s*('(?:[^'\\]|\\.)*'|\S*)")
_ESCAPE = re.compile(r"\\(.)")


def _parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN; single-quoted values may hold spaces."""
    tokens: dict[str, str] = {}
    for match in _DSN_PAIR.finditer(dsn):
        key, value = match.group(1), match.group(2)
        if value.startswith("'"):
            value = _ESCAPE.sub(r"\1", value[1:-1])
        tokens[key] = value
    return tokens


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A socket host (path starting with /) goes into the query string:
        host=/var/run/postgresql -> postgresql+psycopg2://U:P@/DB?host=%2Fvar%2Frun%2Fpostgresql
    A TCP host keeps the usual netloc form, port defaulting to 5432.
    """
    tokens = _parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = f"{quote_plus(tokens.get('user', ''))}:{quote_plus(password)}"
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"{SQLALCHEMY_SCHEME}://{credentials}@/{dbname}?host={quote_plus(host)}"

    port = tokens.get("port", "5432")
    return f"{SQLALCHEMY_SCHEME}://{credentials}@{host}:{port}/{dbname}"


def _normalise_url(url: str) -> str:
    """Force the psycopg2 driver and fill in DB_PASSWORD when the URL has none."""
    scheme, rest = url.split("://", 1)
    if scheme in ("postgres", "postgresql"):
        scheme = SQLALCHEMY_SCHEME
    parts = urlsplit(f"{scheme}://{rest}")

    db_password = os.environ.get("DB_PASSWORD", "")
    if db_password and not parts.password:
        netloc = f"{quote_plus(parts.username or '')}:{quote_plus(db_password)}@{parts.hostname}"
        if parts.port:
            netloc += f":{parts.port}"
        parts = parts._replace(netloc=netloc)

    return urlunsplit(parts)


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" in url:
        return _normalise_url(url)
    return _libpq_dsn_to_url(url)
