"""Test fixtures: sample engine configuration, table catalog and DDL."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from shieldql.config import load_config
from shieldql.schema.catalog import TableCatalog
from shieldql.schema.config import EngineConfig

_FIXTURES_DIR = Path(__file__).parent

CONFIG_PATH = _FIXTURES_DIR / "config.json"

CATALOG_COLUMNS = {
    "users": [
        "id", "first_name", "last_name", "email", "phone", "salary",
        "ssn", "password", "department", "status", "created_at",
    ],
    "orders": ["id", "user_id", "total", "status", "created_at"],
    "audit_log": ["id", "user_id", "action", "created_at"],
}


def load_config_data() -> dict[str, Any]:
    """Return the raw sample configuration as parsed JSON."""
    return json.loads(CONFIG_PATH.read_text())


def load_engine_config() -> EngineConfig:
    """Load and validate the canonical sample configuration from config.json."""
    return load_config(load_config_data())


def load_catalog() -> TableCatalog:
    """Return the catalog matching the tables in the sample DDL."""
    return TableCatalog.from_columns(CATALOG_COLUMNS)


def load_ddl(target: Literal["sqlite", "postgres"] = "sqlite") -> str:
    """Return the sample DDL SQL string for the given backend.

    Args:
        target: ``'sqlite'`` (default) or ``'postgres'``.

    Returns:
        DDL string ready to execute against the target backend.
    """
    return (_FIXTURES_DIR / f"ddl_{target}.sql").read_text()
