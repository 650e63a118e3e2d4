"""Loading, validating and composing engine configurations.

``load_config``
    Turn a plain mapping (e.g. parsed JSON) into a validated
    :class:`~shieldql.schema.config.EngineConfig`.  Model errors and semantic
    problems (dangling role references, cycles, undefined ``min_role``, bad
    pattern syntax) are collected and raised together as one
    :class:`~shieldql.errors.ConfigurationError`.

``config_from_env``
    Overlay ``SHIELDQL_*`` environment variables onto a base config.

``default_config``
    A ready-to-use sample hierarchy and policy set.
"""
from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pydantic

from shieldql.errors import ConfigurationError
from shieldql.match.patterns import validate_pattern_syntax
from shieldql.roles.graph import RoleGraph
from shieldql.schema.config import EngineConfig, EngineConfigBuilder

__all__ = [
    "ConfigAnalysis",
    "EngineConfigBuilder",
    "analyze_config",
    "config_from_env",
    "default_config",
    "load_config",
    "load_config_file",
    "merge_configs",
    "validate_config",
]

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_config(config: EngineConfig) -> list[str]:
    """Return every semantic problem in ``config`` (empty when it is sound).

    Inheriting a higher-level role is only reported when
    ``security.strict_hierarchy`` is set.
    """
    errors: list[str] = []
    report = RoleGraph(config.roles).validate_hierarchy()
    errors.extend(report.errors)
    if config.security.strict_hierarchy:
        errors.extend(report.warnings)

    for pattern, policy in config.policies.items():
        result = validate_pattern_syntax(pattern)
        errors.extend(f"fields[{pattern!r}]: {message}" for message in result.errors)
        if policy.min_role is not None and policy.min_role not in config.roles:
            errors.append(f"fields[{pattern!r}].min_role: Role '{policy.min_role}' not defined")

    for table, table_policy in config.tables.items():
        if table_policy.min_role is not None and table_policy.min_role not in config.roles:
            errors.append(
                f"tables[{table!r}].min_role: Role '{table_policy.min_role}' not defined"
            )
    return errors


def _format_pydantic_errors(exc: pydantic.ValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        messages.append(f"{location}: {err['msg']}" if location else err["msg"])
    return messages


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(source: Mapping[str, Any] | EngineConfig) -> EngineConfig:
    """Validate ``source`` and return an :class:`EngineConfig`.

    Args:
        source: A mapping with ``roles``, ``fields``, ``tables``,
            ``security`` and ``performance`` keys (all optional), or an
            already-built :class:`EngineConfig` to re-check.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    if isinstance(source, EngineConfig):
        config = source
    else:
        try:
            config = EngineConfig.model_validate(dict(source))
        except pydantic.ValidationError as exc:
            raise ConfigurationError(
                "Configuration validation failed", _format_pydantic_errors(exc)
            ) from exc

    errors = validate_config(config)
    if errors:
        raise ConfigurationError("Configuration validation failed", errors)
    return config


def load_config_file(path: str | Path) -> EngineConfig:
    """Read a JSON configuration file and validate it with :func:`load_config`."""
    with open(path, encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"Configuration file '{path}' is not valid JSON", [str(exc)]
            ) from exc
    return load_config(data)


def merge_configs(base: EngineConfig, override: Mapping[str, Any]) -> EngineConfig:
    """Overlay ``override`` onto ``base`` section by section.

    ``roles``, ``fields`` and ``tables`` are merged key by key (override
    entries replace base entries of the same name; new entries are appended
    after the base ones).  ``security`` and ``performance`` are merged
    setting by setting.
    """
    data = base.model_dump(by_alias=False)
    merged: dict[str, Any] = {
        "roles": {**data["roles"], **override.get("roles", {})},
        "fields": {**data["policies"], **override.get("fields", {})},
        "tables": {**data["tables"], **override.get("tables", {})},
        "security": {**data["security"], **override.get("security", {})},
        "performance": {**data["performance"], **override.get("performance", {})},
    }
    return load_config(merged)


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(
        "Invalid environment configuration", [f"{name}: expected a boolean, got {raw!r}"]
    )


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(
            "Invalid environment configuration", [f"{name}: expected an integer, got {raw!r}"]
        ) from exc


def config_from_env(
    base: EngineConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """Return ``base`` with ``SHIELDQL_*`` environment overrides applied.

    Recognised variables:

    * ``SHIELDQL_BATCH_SIZE`` – ``performance.batch_size``
    * ``SHIELDQL_CACHE_ENABLED`` – ``performance.cache_enabled``
    * ``SHIELDQL_CACHE_CAPACITY`` – ``performance.cache_capacity``
    * ``SHIELDQL_ALLOW_UNKNOWN_FIELDS`` – ``security.allow_unknown_fields``

    Args:
        base: Configuration to extend; defaults to an empty config.
        environ: Variable source; defaults to :data:`os.environ`.

    Raises:
        ConfigurationError: If a variable cannot be parsed or the resulting
            settings are out of range.
    """
    env = os.environ if environ is None else environ
    base = base or EngineConfig()

    performance: dict[str, Any] = {}
    security: dict[str, Any] = {}
    if "SHIELDQL_BATCH_SIZE" in env:
        performance["batch_size"] = _parse_int("SHIELDQL_BATCH_SIZE", env["SHIELDQL_BATCH_SIZE"])
    if "SHIELDQL_CACHE_ENABLED" in env:
        performance["cache_enabled"] = _parse_bool(
            "SHIELDQL_CACHE_ENABLED", env["SHIELDQL_CACHE_ENABLED"]
        )
    if "SHIELDQL_CACHE_CAPACITY" in env:
        performance["cache_capacity"] = _parse_int(
            "SHIELDQL_CACHE_CAPACITY", env["SHIELDQL_CACHE_CAPACITY"]
        )
    if "SHIELDQL_ALLOW_UNKNOWN_FIELDS" in env:
        security["allow_unknown_fields"] = _parse_bool(
            "SHIELDQL_ALLOW_UNKNOWN_FIELDS", env["SHIELDQL_ALLOW_UNKNOWN_FIELDS"]
        )

    if not performance and not security:
        return base
    return merge_configs(base, {"performance": performance, "security": security})


def default_config() -> EngineConfig:
    """Return a sample four-level hierarchy with typical field policies."""
    return load_config(
        {
            "roles": {
                "admin": {"level": 100, "description": "Full system access", "inherits": ["manager"]},
                "manager": {"level": 50, "description": "Management access", "inherits": ["user"]},
                "user": {"level": 10, "description": "Basic user access", "inherits": ["guest"]},
                "guest": {"level": 0, "description": "Anonymous access"},
            },
            "fields": {
                "*.password": {"deny": True},
                "*.secret": {"deny": True},
                "*.token": {"deny": True},
                "password": {"deny": True},
                "email": {"min_role": "user", "category": "personal"},
                "phone": {"min_role": "user", "category": "personal"},
                "salary": {"min_role": "admin", "category": "financial"},
                "revenue": {"min_role": "admin", "category": "financial"},
                "profit": {"min_role": "admin", "category": "financial"},
                "department": {"min_role": "manager", "category": "organizational"},
                "team_size": {"min_role": "manager", "category": "organizational"},
            },
        }
    )


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


@dataclass
class ConfigAnalysis:
    """Advisory findings from :func:`analyze_config`; none of them are errors."""

    recommendations: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    security_issues: list[str] = field(default_factory=list)
    performance: list[str] = field(default_factory=list)
    total_roles: int = 0
    total_field_patterns: int = 0

    @property
    def security_level(self) -> str:
        return "good" if not self.security_issues else "needs_attention"


def analyze_config(config: EngineConfig) -> ConfigAnalysis:
    """Review ``config`` for weak spots and return advisory findings."""
    analysis = ConfigAnalysis(
        total_roles=len(config.roles),
        total_field_patterns=len(config.policies),
    )

    if len(config.roles) < 2:
        analysis.warnings.append("Consider defining multiple roles for better access control")
    if len(config.roles) > 10:
        analysis.performance.append(
            "Large number of roles may impact performance; consider consolidating roles"
        )
    if not config.policies:
        analysis.warnings.append("No field policies defined; every field is accessible")

    analysis.warnings.extend(RoleGraph(config.roles).validate_hierarchy().warnings)

    for pattern, policy in config.policies.items():
        if pattern in ("*", "**") and not policy.deny and policy.min_role is None:
            analysis.security_issues.append(
                f"Pattern '{pattern}' without a role restriction is overly permissive"
            )

    if config.security.allow_unknown_fields:
        analysis.recommendations.append(
            "Consider setting allow_unknown_fields to False for stricter security"
        )
    if config.performance.batch_size > 5000:
        analysis.performance.append("Large batch size may cause memory pressure on big datasets")
    if not config.performance.cache_enabled:
        analysis.performance.append("Consider enabling the decision cache")
    return analysis
