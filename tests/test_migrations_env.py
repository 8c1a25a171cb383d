"""Tests for the Alembic DATABASE_URL conversion helpers."""

from __future__ import annotations

import os
import sys
from unittest.mock import patch

import pytest

# Make migrations.env_helpers importable without an alembic context
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from migrations.env_helpers import _get_database_url, _libpq_dsn_to_url, _parse_libpq_dsn


class TestParseLibpqDsn:
    def test_plain_pairs(self):
        assert _parse_libpq_dsn("dbname=campstay user=app host=db") == {
            "dbname": "campstay",
            "user": "app",
            "host": "db",
        }

    def test_quoted_value_with_spaces_and_escape(self):
        tokens = _parse_libpq_dsn(r"user=app password='it\'s a secret' host=db")
        assert tokens["password"] == "it's a secret"
        assert tokens["host"] == "db"


class TestLibpqDsnToUrl:
    def test_socket_host(self):
        dsn = "dbname=campstay user=app password=s3cret host=/var/run/postgresql"
        assert _libpq_dsn_to_url(dsn) == (
            "postgresql+psycopg2://app:s3cret@/campstay?host=%2Fvar%2Frun%2Fpostgresql"
        )

    def test_tcp_host_default_port(self):
        dsn = "dbname=campstay user=app password=pw host=db"
        assert _libpq_dsn_to_url(dsn) == "postgresql+psycopg2://app:pw@db:5432/campstay"

    def test_tcp_host_custom_port(self):
        dsn = "dbname=campstay user=app password=pw host=10.0.0.1 port=5433"
        assert _libpq_dsn_to_url(dsn) == "postgresql+psycopg2://app:pw@10.0.0.1:5433/campstay"

    def test_special_chars_encoded(self):
        dsn = "dbname=db user=u@domain password=p@ss=word host=h port=5432"
        result = _libpq_dsn_to_url(dsn)
        assert "u%40domain" in result
        assert "p%40ss%3Dword" in result

    def test_db_password_env_fallback(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        result = _libpq_dsn_to_url("dbname=db user=u host=h")
        assert ":from-env@" in result

    def test_dsn_password_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        result = _libpq_dsn_to_url("dbname=db user=u password=from-dsn host=h")
        assert "from-dsn" in result
        assert "from-env" not in result


class TestGetDatabaseUrl:
    def test_driver_url_passthrough(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgresql+psycopg2://u:p@h/db"}, clear=True):
            assert _get_database_url() == "postgresql+psycopg2://u:p@h/db"

    @pytest.mark.parametrize("scheme", ["postgres", "postgresql"])
    def test_scheme_gets_driver(self, scheme):
        with patch.dict(os.environ, {"DATABASE_URL": f"{scheme}://u:p@h/db"}, clear=True):
            assert _get_database_url() == "postgresql+psycopg2://u:p@h/db"

    def test_url_db_password_fallback_keeps_port(self):
        env = {"DATABASE_URL": "postgresql://u@h:6543/db", "DB_PASSWORD": "secret"}
        with patch.dict(os.environ, env, clear=True):
            assert _get_database_url() == "postgresql+psycopg2://u:secret@h:6543/db"

    def test_dsn_converted(self):
        dsn = "dbname=campstay user=app password=pw host=db"
        with patch.dict(os.environ, {"DATABASE_URL": dsn}, clear=True):
            assert _get_database_url() == "postgresql+psycopg2://app:pw@db:5432/campstay"

    def test_missing_raises(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL is required"):
                _get_database_url()


class TestSchemaFiles:
    SQL_DIR = os.path.join(os.path.dirname(__file__), "..", "migrations", "sql")

    def test_schema_needs_no_extensions(self):
        for name in sorted(os.listdir(self.SQL_DIR)):
            with open(os.path.join(self.SQL_DIR, name), encoding="utf-8") as f:
                assert "CREATE EXTENSION" not in f.read().upper(), name
