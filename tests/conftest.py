"""Pytest fixtures: in-memory DuckDB and a ProviderPool backed by fake chain clients."""

from __future__ import annotations

import pytest

from builders import FakeFactory
from chainsentry.chain.pool import ProviderPool
from chainsentry.chain.registry import CHAINS
from chainsentry.storage.database import get_connection


@pytest.fixture
def conn():
    connection = get_connection(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def make_pool():
    def _make(behaviors: dict | None = None, health_timeout: float = 0.5) -> ProviderPool:
        return ProviderPool(configs=dict(CHAINS), client_factory=FakeFactory(behaviors), health_timeout=health_timeout)

    return _make
