from __future__ import annotations

import pytest

from fakes import FakeBackend, FakeConnector
from marketlink.config import ENV_OVERRIDES


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def connector():
    return FakeConnector()
