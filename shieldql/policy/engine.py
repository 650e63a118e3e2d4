"""Field-level access decisions and recursive data filtering.

``PolicyEngine`` owns the field-policy table.  For a ``(field, role)`` pair it:

1. resolves the governing policy – a matching ``deny`` policy (exact or
   pattern) always wins; otherwise the exact key; otherwise the first
   matching pattern in declared order;
2. evaluates it – ``deny`` hides the field, ``min_role`` defers to the
   :class:`~shieldql.roles.graph.RoleGraph`, a ``condition`` callback decides
   otherwise, and a policy with none of these allows;
3. falls back to ``security.allow_unknown_fields`` when nothing matches.

Verdicts are memoized in a bounded :class:`~shieldql.policy.cache.DecisionCache`.
Verdicts produced by a ``condition`` are never cached because they depend on
the caller's context.

:meth:`PolicyEngine.filter` walks arbitrary nested data with the same
decisions::

    engine = PolicyEngine(config)
    visible = engine.filter(records, role="user")

    result = engine.filter(record, role="user", include_metadata=True)
    for removed in result.report.filtered_fields:
        print(removed.field, removed.reason.value)
"""
from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from shieldql.config import load_config
from shieldql.errors import AccessDeniedError, TableAccessDeniedError, ValidationError
from shieldql.match.patterns import PatternKind, PatternMatcher, classify_pattern, is_sequence
from shieldql.policy.cache import DecisionCache
from shieldql.policy.decision import (
    AccessDecision,
    AccessReason,
    EngineStats,
    FilteredField,
    FilterReport,
    FilterResult,
)
from shieldql.roles.graph import RoleGraph
from shieldql.schema.catalog import TableCatalog
from shieldql.schema.config import EngineConfig, FieldPolicy

if TYPE_CHECKING:
    from shieldql.compile.base import SQLCompiler
    from shieldql.compile.builder import QueryBuilder
    from shieldql.validate.identifiers import IdentifierValidator

logger = logging.getLogger(__name__)

_MISSING = object()

# A dot-separated segment made only of digits, i.e. a sequence index.
_INDEX_SEGMENT_RE = re.compile(r"(?<![^.])[0-9]+(?![^.])")


def _is_index_sensitive(pattern: str) -> bool:
    # regexes and digit literals may single out particular indices
    return classify_pattern(pattern) is PatternKind.REGEX or any(ch.isdigit() for ch in pattern)


# ---------------------------------------------------------------------------
# Per-call filter state
# ---------------------------------------------------------------------------


@dataclass
class _FilterState:
    role: str
    strict: bool
    preserve_structure: bool
    context: Any
    track: bool
    removed: int = 0
    seen: dict[str, bool] = field(default_factory=dict)
    dropped: dict[str, FilteredField] = field(default_factory=dict)

    def record(self, shown: str, kept: bool, decision: AccessDecision) -> None:
        if not kept:
            self.removed += 1
        if not self.track:
            return
        self.seen[shown] = self.seen.get(shown, False) or kept
        if not kept and shown not in self.dropped:
            self.dropped[shown] = FilteredField(
                field=shown,
                reason=decision.reason,
                required_role=decision.required_role,
                required_level=decision.required_level,
                user_level=decision.user_level,
            )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PolicyEngine:
    """Answers "may role R see field F?" and filters data accordingly.

    Construction validates the configuration (every problem is reported in a
    single :class:`~shieldql.errors.ConfigurationError`), builds the role
    graph and precompiles every policy pattern.

    The engine is safe to share between threads: the decision caches and
    the statistics counters are lock-guarded and everything else is
    read-only after construction.

    Args:
        config: An :class:`EngineConfig` or a mapping accepted by
            :func:`~shieldql.config.load_config`.
        catalog: Known columns per table, used by the query builder to
            auto-populate projections.
    """

    def __init__(
        self,
        config: EngineConfig | Mapping[str, Any],
        catalog: TableCatalog | None = None,
    ) -> None:
        self._config = load_config(config)
        self._catalog = catalog
        self._graph = RoleGraph(self._config.roles)
        for warning in self._graph.validate_hierarchy().warnings:
            logger.warning(warning)

        self._policies: dict[str, FieldPolicy] = dict(self._config.policies)
        self._patterns = PatternMatcher(
            key for key in self._policies if classify_pattern(key) is not PatternKind.EXACT
        )
        self._deny_patterns = PatternMatcher(
            key for key, policy in self._policies.items() if policy.deny
        )
        self._always_allowed = frozenset(self._config.security.always_allowed_fields)
        self._index_sensitive = any(_is_index_sensitive(key) for key in self._policies)

        performance = self._config.performance
        self._decisions = DecisionCache(performance.cache_capacity, performance.cache_enabled)
        self._resolved = DecisionCache(performance.cache_capacity, performance.cache_enabled)

        self._stats_lock = threading.Lock()
        self._checks = 0
        self._filters = 0
        self._items_filtered = 0
        self._fields_removed = 0

        logger.debug(
            "PolicyEngine ready: %d roles, %d field policies (%d patterns), %d table policies",
            len(self._config.roles),
            len(self._policies),
            len(self._patterns),
            len(self._config.tables),
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def roles(self) -> RoleGraph:
        return self._graph

    @property
    def catalog(self) -> TableCatalog | None:
        return self._catalog

    # ------------------------------------------------------------------
    # Field decisions
    # ------------------------------------------------------------------

    def resolve_policy(self, field_path: str) -> tuple[str, FieldPolicy] | None:
        """Return ``(pattern, policy)`` governing ``field_path``, or ``None``."""
        cached = self._resolved.get(field_path, _MISSING)
        if cached is not _MISSING:
            return cached

        key = self._deny_patterns.first_match(field_path)
        if key is None and field_path in self._policies:
            key = field_path
        if key is None:
            key = self._patterns.first_match(field_path)
        resolved = (key, self._policies[key]) if key is not None else None
        self._resolved.put(field_path, resolved)
        return resolved

    def check_access(self, field_path: str, role: str, context: Any = None) -> AccessDecision:
        """Return the full :class:`AccessDecision` for ``field_path`` and ``role``.

        Always agrees with :meth:`has_field_access` for identical inputs.

        Args:
            field_path: Dotted field path.
            role: Acting role.
            context: Opaque value handed to ``condition`` callbacks.
        """
        with self._stats_lock:
            self._checks += 1
        key = (field_path, role)
        cached = self._decisions.get(key)
        if cached is not None:
            return cached
        decision, cacheable = self._evaluate(field_path, role, context)
        if cacheable:
            self._decisions.put(key, decision)
        return decision

    def has_field_access(self, field_path: str, role: str, context: Any = None) -> bool:
        """Return ``True`` if ``role`` may see ``field_path``."""
        return self.check_access(field_path, role, context).allowed

    def require_access(self, field_path: str, role: str, context: Any = None) -> AccessDecision:
        """Like :meth:`check_access` but raise when access is denied.

        Raises:
            AccessDeniedError: If the decision denies access.
        """
        decision = self.check_access(field_path, role, context)
        if not decision.allowed:
            raise AccessDeniedError(
                field_path,
                role,
                required_role=decision.required_role,
                reason=decision.reason.value,
            )
        return decision

    def _evaluate(self, field_path: str, role: str, context: Any) -> tuple[AccessDecision, bool]:
        user_level = self._graph.level(role)
        resolved = self.resolve_policy(field_path)
        if resolved is None:
            allowed = self._config.security.allow_unknown_fields
            return (
                AccessDecision(
                    field=field_path,
                    role=role,
                    allowed=allowed,
                    reason=AccessReason.NO_CONFIGURATION,
                    user_level=user_level,
                ),
                True,
            )

        pattern, policy = resolved
        if policy.deny:
            return (
                AccessDecision(
                    field=field_path,
                    role=role,
                    allowed=False,
                    reason=AccessReason.EXPLICITLY_DENIED,
                    policy_pattern=pattern,
                    user_level=user_level,
                ),
                True,
            )

        if policy.min_role is not None:
            allowed = self._graph.has_permission(role, policy.min_role)
            return (
                AccessDecision(
                    field=field_path,
                    role=role,
                    allowed=allowed,
                    reason=AccessReason.SUFFICIENT_ROLE if allowed else AccessReason.INSUFFICIENT_ROLE,
                    policy_pattern=pattern,
                    required_role=policy.min_role,
                    user_level=user_level,
                    required_level=self._graph.level(policy.min_role),
                ),
                True,
            )

        if policy.condition is not None:
            allowed = bool(policy.condition(field_path, None, role, context))
            return (
                AccessDecision(
                    field=field_path,
                    role=role,
                    allowed=allowed,
                    reason=AccessReason.CONDITION_PASSED if allowed else AccessReason.CONDITION_FAILED,
                    policy_pattern=pattern,
                    user_level=user_level,
                ),
                False,
            )

        return (
            AccessDecision(
                field=field_path,
                role=role,
                allowed=True,
                reason=AccessReason.NO_RESTRICTIONS,
                policy_pattern=pattern,
                user_level=user_level,
            ),
            True,
        )

    # ------------------------------------------------------------------
    # Policy listings
    # ------------------------------------------------------------------

    def allowed_fields(self, role: str, category: str | None = None) -> list[str]:
        """Return the policy patterns ``role`` may see, in declared order.

        Denied policies are skipped; a policy with no ``min_role`` counts as
        visible.

        Args:
            role: Acting role.
            category: Only consider policies in this category.
        """
        visible = []
        for pattern, policy in self._policies.items():
            if category is not None and policy.category != category:
                continue
            if policy.deny:
                continue
            if policy.min_role is None or self._graph.has_permission(role, policy.min_role):
                visible.append(pattern)
        return visible

    def fields_by_category(self, category: str) -> list[str]:
        """Return every policy pattern tagged with ``category``."""
        return [p for p, policy in self._policies.items() if policy.category == category]

    # ------------------------------------------------------------------
    # Tables and columns
    # ------------------------------------------------------------------

    def check_column_access(
        self,
        table: str,
        column: str,
        role: str,
        context: Any = None,
    ) -> AccessDecision:
        """Decide access to ``column`` of ``table``.

        A policy on the qualified name ``table.column`` is used when one
        resolves; otherwise the bare column name decides.
        """
        qualified = f"{table}.{column}"
        if self.resolve_policy(qualified) is not None:
            return self.check_access(qualified, role, context)
        return self.check_access(column, role, context)

    def allowed_columns(
        self,
        table: str,
        role: str,
        candidates: Iterable[str] | None = None,
    ) -> list[str]:
        """Return the columns of ``table`` that ``role`` may read.

        Args:
            table: Table name.
            role: Acting role.
            candidates: Column names to filter.  When omitted, columns are
                derived from exact policy keys (``table.column`` entries and
                bare undotted names), falling back to
                ``security.fallback_columns`` if none are visible.
        """
        if candidates is not None:
            return [c for c in candidates if self.check_column_access(table, c, role).allowed]

        columns: list[str] = []
        prefix = f"{table}."
        for key in self._policies:
            if classify_pattern(key) is not PatternKind.EXACT:
                continue
            if key.startswith(prefix) and "." not in key[len(prefix) :]:
                column = key[len(prefix) :]
            elif "." not in key:
                column = key
            else:
                continue
            if column and column not in columns and self.check_column_access(table, column, role).allowed:
                columns.append(column)
        return columns or list(self._config.security.fallback_columns)

    def check_table_access(self, table: str, role: str, operation: str = "SELECT") -> None:
        """Enforce the :class:`~shieldql.schema.config.TablePolicy` for ``table``.

        Raises:
            TableAccessDeniedError: If ``role`` may not run ``operation`` on
                ``table``, or the table has no policy and
                ``security.deny_unknown_tables`` is set.
        """
        operation = operation.upper()
        policy = self._config.tables.get(table)
        if policy is None:
            if self._config.security.deny_unknown_tables:
                raise TableAccessDeniedError(table, role, operation)
            return
        if policy.min_role is not None and not self._graph.has_permission(role, policy.min_role):
            raise TableAccessDeniedError(table, role, operation, required_role=policy.min_role)
        if not policy.allows(operation):
            raise TableAccessDeniedError(
                table,
                role,
                operation,
                allowed_operations=list(policy.operations or []),
            )

    def has_table_access(self, table: str, role: str, operation: str = "SELECT") -> bool:
        try:
            self.check_table_access(table, role, operation)
        except TableAccessDeniedError:
            return False
        return True

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def filter(
        self,
        data: Any,
        role: str,
        *,
        strict: bool | None = None,
        preserve_structure: bool | None = None,
        batch_size: int | None = None,
        include_metadata: bool = False,
        context: Any = None,
    ) -> Any:
        """Return a copy of ``data`` with every field ``role`` may not see removed.

        A scalar under key ``K`` at path ``P`` is kept when every policy that
        governs it allows it: the policy for ``K`` and the policy matching
        ``P``, whichever exist (with neither, ``allow_unknown_fields``
        decides).  It is also kept when ``K`` is an always-allowed field and
        ``strict`` is off.  Nested mappings are filtered recursively.
        Sequences are filtered element by element; scalar elements follow the
        decision for the sequence's own key.  A top-level sequence is treated
        as a list of records and processed ``batch_size`` items at a time;
        the batch size never affects the output.

        Args:
            data: A mapping, a sequence of records, or a scalar (returned
                unchanged).
            role: Acting role.
            strict: Disable the always-allowed exemption.  Default ``False``.
            preserve_structure: Keep nested mappings and sequences that end
                up empty.  Default ``True``.
            batch_size: Records per batch; defaults to
                ``performance.batch_size``.
            include_metadata: Return a :class:`FilterResult` with a
                :class:`FilterReport` instead of the bare data.
            context: Opaque value handed to ``condition`` callbacks.

        Raises:
            ValidationError: If ``batch_size`` is not a positive integer.
        """
        size = self._config.performance.batch_size if batch_size is None else batch_size
        if not isinstance(size, int) or isinstance(size, bool) or size < 1:
            raise ValidationError(f"batch_size must be a positive integer, got {size!r}")

        started = time.perf_counter()
        state = _FilterState(
            role=role,
            strict=bool(strict),
            preserve_structure=True if preserve_structure is None else preserve_structure,
            context=context,
            track=include_metadata,
        )

        if isinstance(data, Mapping):
            filtered: Any = self._filter_mapping(data, "", "", state)
            items = 1
        elif is_sequence(data):
            filtered = []
            for start in range(0, len(data), size):
                filtered.extend(self._filter_record(item, state) for item in data[start : start + size])
            items = len(data)
        else:
            filtered = data
            items = 0

        elapsed_ms = (time.perf_counter() - started) * 1000
        with self._stats_lock:
            self._filters += 1
            self._items_filtered += items
            self._fields_removed += state.removed
        logger.debug(
            "Filtered %d item(s) for role %r in %.2f ms (%d field(s) removed)",
            items,
            role,
            elapsed_ms,
            state.removed,
        )

        if not include_metadata:
            return filtered
        report = FilterReport(
            role=role,
            total_fields=len(state.seen),
            allowed_fields=sum(1 for kept in state.seen.values() if kept),
            filtered_fields=[
                removed for shown, removed in state.dropped.items() if not state.seen[shown]
            ],
            items_processed=items,
            elapsed_ms=elapsed_ms,
        )
        return FilterResult(data=filtered, report=report)

    def _filter_record(self, item: Any, state: _FilterState) -> Any:
        if isinstance(item, Mapping):
            return self._filter_mapping(item, "", "", state)
        if is_sequence(item):
            return [self._filter_record(x, state) for x in item]
        return item

    def _filter_mapping(
        self,
        data: Mapping[Any, Any],
        prefix: str,
        shown_prefix: str,
        state: _FilterState,
    ) -> dict[Any, Any]:
        result: dict[Any, Any] = {}
        for key, value in data.items():
            name = str(key)
            path = f"{prefix}.{name}" if prefix else name
            shown = f"{shown_prefix}.{name}" if shown_prefix else name
            if isinstance(value, Mapping):
                nested = self._filter_mapping(value, path, shown, state)
                if nested or state.preserve_structure:
                    result[key] = nested
            elif is_sequence(value):
                items = self._filter_sequence(value, path, shown, name, state)
                if items or state.preserve_structure or not value:
                    result[key] = items
            elif self._keep_leaf(path, name, shown, state):
                result[key] = value
        return result

    def _filter_sequence(
        self,
        items: Any,
        path: str,
        shown: str,
        key: str,
        state: _FilterState,
    ) -> list[Any]:
        result: list[Any] = []
        scalars_kept: bool | None = None
        for index, item in enumerate(items):
            if isinstance(item, Mapping):
                result.append(self._filter_mapping(item, f"{path}.{index}", f"{shown}[]", state))
            elif is_sequence(item):
                result.append(self._filter_sequence(item, f"{path}.{index}", f"{shown}[]", key, state))
            else:
                if scalars_kept is None:
                    scalars_kept = self._keep_leaf(path, key, shown, state)
                if scalars_kept:
                    result.append(item)
        return result

    def _keep_leaf(self, path: str, key: str, shown: str, state: _FilterState) -> bool:
        # a path policy can narrow a key policy, never widen it
        decision = self.check_access(key, state.role, state.context)
        unconfigured = decision.reason is AccessReason.NO_CONFIGURATION
        if path != key and (decision.allowed or unconfigured):
            lookup = self._lookup_path(path)
            if self.resolve_policy(lookup) is not None:
                decision = self.check_access(lookup, state.role, state.context)
        kept = decision.allowed or (not state.strict and key in self._always_allowed)
        state.record(shown, kept, decision)
        return kept

    def _lookup_path(self, path: str) -> str:
        """Return the cache key under which ``path`` is resolved.

        When no policy can tell one sequence index from another, every
        numeric segment is folded to ``0`` so that ``orders.0.cost`` and
        ``orders.917.cost`` share one cache entry.
        """
        if self._index_sensitive:
            return path
        return _INDEX_SEGMENT_RE.sub("0", path)

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    def query(
        self,
        role: str,
        dialect: str | SQLCompiler = "postgres",
        identifiers: IdentifierValidator | None = None,
        strict: bool = False,
    ) -> QueryBuilder:
        """Return a :class:`~shieldql.compile.builder.QueryBuilder` bound to this engine."""
        from shieldql.compile.builder import QueryBuilder

        return QueryBuilder(self, role, compiler=dialect, identifiers=identifiers, strict=strict)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> EngineStats:
        """Return a snapshot of the engine's counters."""
        with self._stats_lock:
            return EngineStats(
                checks=self._checks,
                cache_hits=self._decisions.hits,
                cache_misses=self._decisions.misses,
                cache_size=len(self._decisions),
                cache_capacity=self._decisions.capacity,
                filters=self._filters,
                items_filtered=self._items_filtered,
                fields_removed=self._fields_removed,
            )

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._checks = 0
            self._filters = 0
            self._items_filtered = 0
            self._fields_removed = 0
        self._decisions.reset_counters()

    def clear_cache(self) -> None:
        """Drop every memoized decision and policy resolution."""
        self._decisions.clear()
        self._resolved.clear()
