"""Shared fixtures for the client test suite."""

import os

import pytest

from erlc.core.config import ClientOptions

BASE_URL = "https://api.test.local/v1"


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep ERLC_* variables from the host environment out of the tests."""
    for name in list(os.environ):
        if name.startswith("ERLC_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def base_url():
    return BASE_URL


@pytest.fixture
def make_options():
    """Factory for ClientOptions pointed at the mocked API."""

    def factory(**overrides) -> ClientOptions:
        overrides.setdefault("base_url", BASE_URL)
        overrides.setdefault("api_key", "test-key")
        return ClientOptions(_env_file=None, **overrides)

    return factory
