"""shieldQL schema models: engine configuration and table catalog."""
from shieldql.schema.catalog import ColumnInfo, TableCatalog, TableInfo
from shieldql.schema.config import (
    EngineConfig,
    EngineConfigBuilder,
    FieldPolicy,
    PerformanceSettings,
    Role,
    SecuritySettings,
    TablePolicy,
)

__all__ = [
    "ColumnInfo",
    "TableCatalog",
    "TableInfo",
    "EngineConfig",
    "EngineConfigBuilder",
    "FieldPolicy",
    "PerformanceSettings",
    "Role",
    "SecuritySettings",
    "TablePolicy",
]
