"""Shared pytest fixtures for campstay tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _fixed_timezone(monkeypatch):
    """Pin APP_TIMEZONE so local_today() does not depend on the host."""
    monkeypatch.setenv("APP_TIMEZONE", "UTC")


@pytest.fixture
def mock_cursor():
    from unittest.mock import MagicMock

    return MagicMock()
