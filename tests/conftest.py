"""Shared pytest fixtures for shieldQL unit and integration tests."""
from __future__ import annotations

import pytest

from shieldql.policy.engine import PolicyEngine
from shieldql.schema.catalog import TableCatalog
from shieldql.schema.config import EngineConfig
from tests.fixtures import load_catalog, load_engine_config


@pytest.fixture(scope="session")
def config() -> EngineConfig:
    """Canonical engine configuration shared across all tests."""
    return load_engine_config()


@pytest.fixture(scope="session")
def catalog() -> TableCatalog:
    return load_catalog()


@pytest.fixture()
def engine(config: EngineConfig, catalog: TableCatalog) -> PolicyEngine:
    """Fresh engine per test so cache and stats start from zero."""
    return PolicyEngine(config, catalog=catalog)
