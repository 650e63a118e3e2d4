"""Pydantic models for the engine configuration.

An :class:`EngineConfig` declares the role hierarchy, the per-field access
policies, optional per-table policies, and security / performance settings.
It is loaded once and never mutated afterwards; every model is frozen.

Keys are accepted in ``snake_case`` or ``camelCase`` (``min_role`` and
``minRole`` are equivalent), so configurations written for JSON front-ends
load unchanged.

Build one in code with the fluent builder::

    from shieldql import EngineConfig

    config = (
        EngineConfig.builder()
        .role("guest", level=0)
        .role("user", level=10, inherits=["guest"])
        .role("admin", level=100, inherits=["user"])
        .field("email", min_role="user", category="personal")
        .field("*.password", deny=True)
        .build()
    )

or from a plain mapping via :func:`shieldql.config.load_config`.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator, model_validator
from pydantic.alias_generators import to_camel

#: ``condition(field, value, role, context) -> bool``.  ``value`` is always
#: ``None`` when called from the policy engine; ``context`` is whatever the
#: caller passed to the access check.
FieldCondition = Callable[[str, Any, str, Any], bool]

#: Statement types a :class:`TablePolicy` can allow.
Operation = Literal["SELECT", "INSERT", "UPDATE", "DELETE"]

DEFAULT_ALWAYS_ALLOWED_FIELDS: tuple[str, ...] = (
    "id",
    "uuid",
    "createdAt",
    "updatedAt",
    "created_at",
    "updated_at",
    "name",
    "status",
    "type",
)

DEFAULT_FALLBACK_COLUMNS: tuple[str, ...] = ("id", "created_at", "updated_at")

_MODEL_CONFIG = ConfigDict(
    extra="forbid",
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
)


class Role(BaseModel):
    """A named role in the hierarchy.

    Attributes:
        name: Role name; equals its key in :attr:`EngineConfig.roles`.
        level: Non-negative rank.  Higher levels satisfy lower ones.
        inherits: Names of roles whose grants this role also receives.
        permissions: Free-form permission tags, unioned along inheritance.
        description: Human-readable description.
    """

    model_config = _MODEL_CONFIG

    name: str
    level: StrictInt = Field(ge=0)
    inherits: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
    description: str | None = None


class FieldPolicy(BaseModel):
    """Access rule for every field matched by one pattern.

    Attributes:
        deny: Hide the field from every role.  Takes precedence over any
            other directive that could apply to the same field.
        min_role: Lowest role (by hierarchy) that may see the field.
        condition: Predicate consulted when neither ``deny`` nor
            ``min_role`` decide.
        category: Free-form grouping (``"personal"``, ``"financial"``, …).
        description: Human-readable description.
    """

    model_config = _MODEL_CONFIG

    deny: bool = False
    min_role: str | None = None
    condition: FieldCondition | None = None
    category: str | None = None
    description: str | None = None


class TablePolicy(BaseModel):
    """Access rule for a whole table, enforced by the query builder.

    Attributes:
        min_role: Lowest role that may reference the table at all.
        operations: Statement types allowed on the table; ``None`` allows
            all four.
    """

    model_config = _MODEL_CONFIG

    min_role: str | None = None
    operations: list[Operation] | None = None

    def allows(self, operation: str) -> bool:
        return self.operations is None or operation.upper() in self.operations


class SecuritySettings(BaseModel):
    """Security knobs.

    Attributes:
        allow_unknown_fields: Verdict for fields no policy matches.
        always_allowed_fields: Keys kept by non-strict filtering even when a
            policy would hide them.
        deny_unknown_tables: Reject tables that have no :class:`TablePolicy`.
        strict_hierarchy: Treat inheriting a higher-level role as a
            configuration error instead of a warning.
        fallback_columns: Projection used by the query builder when neither
            the catalog nor the policies name any column for a table.
    """

    model_config = _MODEL_CONFIG

    allow_unknown_fields: bool = True
    always_allowed_fields: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALWAYS_ALLOWED_FIELDS)
    )
    deny_unknown_tables: bool = False
    strict_hierarchy: bool = False
    fallback_columns: list[str] = Field(default_factory=lambda: list(DEFAULT_FALLBACK_COLUMNS))


class PerformanceSettings(BaseModel):
    """Performance knobs.

    Attributes:
        batch_size: Number of top-level sequence items filtered per batch.
        cache_enabled: Memoize access decisions.
        cache_capacity: Decision cache size before it is cut in half.
    """

    model_config = _MODEL_CONFIG

    batch_size: int = Field(default=1000, ge=1)
    cache_enabled: bool = True
    cache_capacity: int = Field(default=10_000, ge=2)


class EngineConfig(BaseModel):
    """Complete engine configuration.

    Attributes:
        roles: Role definitions keyed by name.  A mapping value may omit
            ``name``; it is taken from the key.
        policies: Field policies keyed by pattern, in precedence order.
            Loaded from the ``fields`` key.
        tables: Table policies keyed by table name.
        security: Security settings.
        performance: Performance settings.
    """

    model_config = _MODEL_CONFIG

    roles: dict[str, Role] = Field(default_factory=dict)
    policies: dict[str, FieldPolicy] = Field(default_factory=dict, alias="fields")
    tables: dict[str, TablePolicy] = Field(default_factory=dict)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)

    @field_validator("roles", mode="before")
    @classmethod
    def _inject_role_names(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        named: dict[str, Any] = {}
        for key, role in value.items():
            if isinstance(role, Mapping) and "name" not in role:
                role = {**role, "name": key}
            named[key] = role
        return named

    @model_validator(mode="after")
    def _check_role_keys(self) -> EngineConfig:
        for key, role in self.roles.items():
            if role.name != key:
                raise ValueError(f"Role key '{key}' does not match role name '{role.name}'")
        return self

    @classmethod
    def builder(cls) -> EngineConfigBuilder:
        """Return an :class:`EngineConfigBuilder` for composing a config in code."""
        return EngineConfigBuilder()


class EngineConfigBuilder:
    """Fluent builder for :class:`EngineConfig`.

    Always obtained via :meth:`EngineConfig.builder`.  Policies keep the order
    in which :meth:`field` is called, which is their precedence order.
    """

    def __init__(self) -> None:
        self._roles: dict[str, dict[str, Any]] = {}
        self._fields: dict[str, dict[str, Any]] = {}
        self._tables: dict[str, dict[str, Any]] = {}
        self._security: dict[str, Any] = {}
        self._performance: dict[str, Any] = {}

    def role(
        self,
        name: str,
        level: int,
        inherits: list[str] | None = None,
        permissions: list[str] | None = None,
        description: str | None = None,
    ) -> EngineConfigBuilder:
        self._roles[name] = {
            "name": name,
            "level": level,
            "inherits": list(inherits or []),
            "permissions": list(permissions or []),
            "description": description,
        }
        return self

    def field(self, pattern: str, **policy: Any) -> EngineConfigBuilder:
        """Add a field policy; keyword arguments are :class:`FieldPolicy` fields."""
        self._fields[pattern] = policy
        return self

    def table(
        self,
        name: str,
        min_role: str | None = None,
        operations: list[str] | None = None,
    ) -> EngineConfigBuilder:
        self._tables[name] = {"min_role": min_role, "operations": operations}
        return self

    def security(self, **settings: Any) -> EngineConfigBuilder:
        self._security.update(settings)
        return self

    def performance(self, **settings: Any) -> EngineConfigBuilder:
        self._performance.update(settings)
        return self

    def build(self) -> EngineConfig:
        """Validate and return the :class:`EngineConfig`.

        Raises:
            ConfigurationError: When the model fails validation or the role
                hierarchy / policies are inconsistent.
        """
        from shieldql.config import load_config

        return load_config(
            {
                "roles": self._roles,
                "fields": self._fields,
                "tables": self._tables,
                "security": self._security,
                "performance": self._performance,
            }
        )
