"""shieldQL – field-level, role-based access control for data and SQL.

One policy, enforced twice: on the data you return and on the SQL you build.

Public API
----------
``create_engine``
    Validate a configuration and return a :class:`PolicyEngine`.

``PolicyEngine``
    Field access decisions (``has_field_access``, ``check_access``) and
    recursive filtering of nested data (``filter``).

``QueryBuilder``
    Parameterized SELECT / INSERT / UPDATE / DELETE for PostgreSQL, MySQL
    and SQLite, with denied fields dropped for the acting role.  Usually
    obtained via :meth:`PolicyEngine.query`.

Re-exported types
-----------------
Configuration models, pattern / role / identifier utilities, compiled SQL
and all error classes.

Extensibility
-------------
New dialect compilers can be registered via::

    from shieldql.compile.registry import CompilerFactory

    @CompilerFactory.register("mssql")
    class MSSQLCompiler(SQLCompiler):
        ...

After registration, ``engine.query(role, dialect="mssql")`` picks it up.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from shieldql.compile.base import CompiledSQL, SQLCompiler
from shieldql.compile.builder import QueryBuilder
from shieldql.compile.mysql import MySQLCompiler
from shieldql.compile.postgres import PostgresCompiler
from shieldql.compile.registry import CompilerFactory
from shieldql.compile.sqlite import SQLiteCompiler
from shieldql.config import (
    analyze_config,
    config_from_env,
    default_config,
    load_config,
    load_config_file,
    merge_configs,
    validate_config,
)
from shieldql.errors import (
    AccessDeniedError,
    CompilationError,
    ConfigurationError,
    IdentifierRejectedError,
    ShieldQLError,
    TableAccessDeniedError,
    ValidationError,
)
from shieldql.match.patterns import (
    PatternKind,
    PatternMatcher,
    enumerate_field_paths,
    matches,
    validate_pattern_syntax,
)
from shieldql.policy.decision import (
    AccessDecision,
    AccessReason,
    EngineStats,
    FilteredField,
    FilterReport,
    FilterResult,
)
from shieldql.policy.engine import PolicyEngine
from shieldql.roles.graph import FlattenedRole, HierarchyReport, RoleGraph
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
from shieldql.schema.converters import catalog_from_sqlalchemy
from shieldql.validate.identifiers import IdentifierValidator, is_valid_field_name

# ---------------------------------------------------------------------------
# Register built-in compilers with CompilerFactory
# ---------------------------------------------------------------------------

CompilerFactory.register_class("postgres", PostgresCompiler, aliases=("postgresql", "pg"))
CompilerFactory.register_class("mysql", MySQLCompiler, aliases=("mariadb",))
CompilerFactory.register_class("sqlite", SQLiteCompiler, aliases=("sqlite3",))

__all__ = [
    # Entry points
    "create_engine",
    "PolicyEngine",
    "QueryBuilder",
    # Configuration
    "EngineConfig",
    "EngineConfigBuilder",
    "FieldPolicy",
    "PerformanceSettings",
    "Role",
    "SecuritySettings",
    "TablePolicy",
    "analyze_config",
    "config_from_env",
    "default_config",
    "load_config",
    "load_config_file",
    "merge_configs",
    "validate_config",
    # Catalog
    "ColumnInfo",
    "TableCatalog",
    "TableInfo",
    "catalog_from_sqlalchemy",
    # Decisions
    "AccessDecision",
    "AccessReason",
    "EngineStats",
    "FilteredField",
    "FilterReport",
    "FilterResult",
    # Patterns, roles, identifiers
    "PatternKind",
    "PatternMatcher",
    "enumerate_field_paths",
    "matches",
    "validate_pattern_syntax",
    "FlattenedRole",
    "HierarchyReport",
    "RoleGraph",
    "IdentifierValidator",
    "is_valid_field_name",
    # Compilation
    "CompiledSQL",
    "CompilerFactory",
    "SQLCompiler",
    "MySQLCompiler",
    "PostgresCompiler",
    "SQLiteCompiler",
    # Errors
    "AccessDeniedError",
    "CompilationError",
    "ConfigurationError",
    "IdentifierRejectedError",
    "ShieldQLError",
    "TableAccessDeniedError",
    "ValidationError",
]


def create_engine(
    config: EngineConfig | Mapping[str, Any],
    catalog: TableCatalog | None = None,
) -> PolicyEngine:
    """Validate ``config`` and return a ready :class:`PolicyEngine`.

    Args:
        config: An :class:`EngineConfig` or a plain mapping (e.g. parsed
            JSON) with ``roles``, ``fields``, ``tables``, ``security`` and
            ``performance`` keys.
        catalog: Optional table catalog used to auto-populate projections.

    Returns:
        A :class:`PolicyEngine`, safe to share across threads.

    Raises:
        ConfigurationError: Listing every problem in the configuration.

    Example::

        engine = shieldql.create_engine({
            "roles": {"user": {"level": 10}, "admin": {"level": 100}},
            "fields": {"salary": {"min_role": "admin"}},
        })
        engine.filter({"name": "Ada", "salary": 1}, role="user")
        # {'name': 'Ada'}
    """
    return PolicyEngine(config, catalog=catalog)
