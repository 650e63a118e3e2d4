"""Policy-aware, parameterized statement builder.

``QueryBuilder`` accumulates one SELECT / INSERT / UPDATE / DELETE statement
through chained calls and renders it with an injected
:class:`~shieldql.compile.base.SQLCompiler`::

    compiled = (
        engine.query("manager", dialect="postgres")
        .select(["id", "firstName", "salary"])
        .from_("users")
        .where({"status": "active"})
        .order_by("createdAt", "DESC")
        .limit(20)
        .build()
    )
    cursor.execute(compiled.sql, compiled.params)

Guarantees
----------
* Every value becomes a placeholder; no value is ever written into the SQL
  text.  Placeholders are assigned during :meth:`QueryBuilder.build`, in the
  order they appear in the text.
* Every identifier is checked by the
  :class:`~shieldql.validate.identifiers.IdentifierValidator`, mapped to its
  storage name and quoted by the dialect.
* Projected, written, returned, grouped and ordered fields the role may not
  see are dropped (or, with ``strict=True``, rejected) *before* identifier
  validation.  Predicates (WHERE / HAVING / JOIN ON) on such fields are always
  rejected: dropping one would widen the result set.

State machine
-------------
``empty → statement selected → clauses → built``.  Clause methods before
:meth:`select` / :meth:`insert` / :meth:`update` / :meth:`delete` raise
:class:`~shieldql.errors.CompilationError`, as does a second :meth:`build`
without :meth:`reset`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from shieldql.compile.base import CompiledSQL, SQLCompiler
from shieldql.compile.context import CompilationContext, ParamAccumulator, split_field_ref
from shieldql.compile.registry import CompilerFactory
from shieldql.errors import AccessDeniedError, CompilationError, ValidationError, truncate
from shieldql.match.patterns import is_sequence
from shieldql.validate.identifiers import IdentifierValidator

if TYPE_CHECKING:
    from shieldql.policy.decision import AccessDecision
    from shieldql.policy.engine import PolicyEngine

logger = logging.getLogger(__name__)

COMPARISON_OPERATORS: frozenset[str] = frozenset({"=", "!=", "<>", "<", "<=", ">", ">="})
PATTERN_OPERATORS: frozenset[str] = frozenset({"LIKE", "ILIKE"})
LIST_OPERATORS: frozenset[str] = frozenset({"IN", "NOT IN"})
NULL_OPERATORS: frozenset[str] = frozenset({"IS NULL", "IS NOT NULL"})
WHERE_OPERATORS: frozenset[str] = (
    COMPARISON_OPERATORS | PATTERN_OPERATORS | LIST_OPERATORS | NULL_OPERATORS
)
AGGREGATE_FUNCTIONS: frozenset[str] = frozenset({"COUNT", "SUM", "AVG", "MIN", "MAX"})
JOIN_TYPES: frozenset[str] = frozenset({"INNER", "LEFT", "RIGHT"})

# Clause → statement types it may be used with.
_CLAUSE_STATEMENTS: dict[str, frozenset[str]] = {
    "from": frozenset({"SELECT", "DELETE"}),
    "values": frozenset({"INSERT"}),
    "set": frozenset({"UPDATE"}),
    "where": frozenset({"SELECT", "UPDATE", "DELETE"}),
    "join": frozenset({"SELECT"}),
    "group_by": frozenset({"SELECT"}),
    "having": frozenset({"SELECT"}),
    "order_by": frozenset({"SELECT"}),
    "limit": frozenset({"SELECT"}),
    "offset": frozenset({"SELECT"}),
    "returning": frozenset({"INSERT", "UPDATE", "DELETE"}),
}


# ---------------------------------------------------------------------------
# Accumulated clause records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Condition:
    field: str
    op: str
    value: Any = None


@dataclass(frozen=True)
class _Join:
    table: str
    left: str
    right: str
    kind: str


@dataclass(frozen=True)
class _Having:
    func: str
    field: str
    op: str
    value: Any


@dataclass
class _QueryState:
    kind: str | None = None
    table: str | None = None
    fields: list[str] | None = None
    values: dict[str, Any] = field(default_factory=dict)
    # each group is OR-joined internally; groups are AND-joined
    conditions: list[list[_Condition]] = field(default_factory=list)
    joins: list[_Join] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    having: list[_Having] = field(default_factory=list)
    order_by: list[tuple[str, str]] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    returning: list[str] = field(default_factory=list)

    def copy(self) -> _QueryState:
        return _QueryState(
            kind=self.kind,
            table=self.table,
            fields=list(self.fields) if self.fields is not None else None,
            values=dict(self.values),
            conditions=[list(group) for group in self.conditions],
            joins=list(self.joins),
            group_by=list(self.group_by),
            having=list(self.having),
            order_by=list(self.order_by),
            limit=self.limit,
            offset=self.offset,
            returning=list(self.returning),
        )


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class QueryBuilder:
    """Builds one parameterized statement for one role.

    Not thread-safe: each logical operation should own its builder.

    Args:
        engine: Policy engine deciding field and table access.
        role: Acting role.
        compiler: Dialect name registered with
            :class:`~shieldql.compile.registry.CompilerFactory`, or a
            compiler instance.
        identifiers: Identifier validator / name mapper.  Defaults to
            :meth:`IdentifierValidator.default`.
        strict: Raise :class:`~shieldql.errors.AccessDeniedError` for denied
            fields instead of dropping them.
    """

    def __init__(
        self,
        engine: PolicyEngine,
        role: str,
        compiler: str | SQLCompiler = "postgres",
        identifiers: IdentifierValidator | None = None,
        strict: bool = False,
    ) -> None:
        self._engine = engine
        self._role = role
        self._compiler = CompilerFactory.resolve(compiler)
        self._identifiers = identifiers or IdentifierValidator.default()
        self._strict = strict
        self._state = _QueryState()
        self._built = False

    @property
    def role(self) -> str:
        return self._role

    @property
    def compiler(self) -> SQLCompiler:
        return self._compiler

    @property
    def statement_type(self) -> str | None:
        return self._state.kind

    # ------------------------------------------------------------------
    # Statement selection
    # ------------------------------------------------------------------

    def select(self, fields: str | Iterable[str] | None = None) -> QueryBuilder:
        """Start a SELECT.

        Args:
            fields: Field names (``"field"`` or ``"table.field"``).  ``None``
                or ``"*"`` selects every column the role may read.
        """
        self._start("SELECT")
        if fields is None or fields == "*":
            self._state.fields = None
        elif isinstance(fields, str):
            self._state.fields = [fields]
        else:
            self._state.fields = list(fields)
        return self

    def from_(self, table: str) -> QueryBuilder:
        """Set the target table of a SELECT or DELETE."""
        self._require("from")
        self._set_table(table)
        return self

    def insert(self, table: str) -> QueryBuilder:
        self._start("INSERT")
        self._set_table(table)
        return self

    def values(self, values: Mapping[str, Any]) -> QueryBuilder:
        """Set the ``{field: value}`` pairs of an INSERT."""
        self._require("values")
        self._state.values = self._check_mapping(values, "values")
        return self

    def update(self, table: str) -> QueryBuilder:
        self._start("UPDATE")
        self._set_table(table)
        return self

    def set(self, values: Mapping[str, Any]) -> QueryBuilder:
        """Set the ``{field: value}`` assignments of an UPDATE."""
        self._require("set")
        self._state.values = self._check_mapping(values, "set")
        return self

    def delete(self, table: str | None = None) -> QueryBuilder:
        """Start a DELETE; the table may be given here or via :meth:`from_`."""
        self._start("DELETE")
        if table is not None:
            self._set_table(table)
        return self

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def where(self, conditions: Mapping[str, Any]) -> QueryBuilder:
        """Add ``field = value`` predicates, AND-joined."""
        self._require("where")
        for name, value in self._check_mapping(conditions, "where").items():
            self._state.conditions.append([_Condition(name, "=", value)])
        return self

    def where_condition(self, field_name: str, op: str, value: Any = None) -> QueryBuilder:
        """Add one predicate with an explicit operator.

        Supported operators: ``=``, ``!=``, ``<>``, ``<``, ``<=``, ``>``,
        ``>=``, ``LIKE``, ``ILIKE``, ``IN``, ``NOT IN``, ``IS NULL``,
        ``IS NOT NULL``.

        Raises:
            ValidationError: For an unknown operator, or a non-sequence /
                empty value with ``IN`` / ``NOT IN``.
        """
        self._require("where")
        self._state.conditions.append([self._make_condition(field_name, op, value)])
        return self

    def or_where(self, conditions: Mapping[str, Any]) -> QueryBuilder:
        """Add one group of ``field = value`` predicates joined by OR."""
        self._require("where")
        group = [
            _Condition(name, "=", value)
            for name, value in self._check_mapping(conditions, "or_where").items()
        ]
        self._state.conditions.append(group)
        return self

    # ------------------------------------------------------------------
    # Joins, grouping, ordering, paging
    # ------------------------------------------------------------------

    def join(self, table: str, left_field: str, right_field: str, type: str = "INNER") -> QueryBuilder:
        """Join ``table`` on ``left_field = right_field``.

        Both sides are field references, usually qualified
        (``"users.id"``, ``"orders.userId"``).
        """
        self._require("join")
        kind = type.upper()
        if kind not in JOIN_TYPES:
            raise ValidationError(f"Unsupported join type '{truncate(type)}'. Use one of {sorted(JOIN_TYPES)}.")
        self._engine.check_table_access(table, self._role, "SELECT")
        self._state.joins.append(_Join(table=table, left=left_field, right=right_field, kind=kind))
        return self

    def left_join(self, table: str, left_field: str, right_field: str) -> QueryBuilder:
        return self.join(table, left_field, right_field, "LEFT")

    def group_by(self, *fields: str) -> QueryBuilder:
        self._require("group_by")
        for item in fields:
            if is_sequence(item):
                self._state.group_by.extend(item)
            else:
                self._state.group_by.append(item)
        return self

    def having(self, func: str, field_name: str, op: str, value: Any) -> QueryBuilder:
        """Add ``FUNC(field) op value`` to HAVING; ``COUNT`` accepts ``"*"``."""
        self._require("having")
        func = func.upper()
        if func not in AGGREGATE_FUNCTIONS:
            raise ValidationError(
                f"Unsupported aggregate '{truncate(func)}'. Use one of {sorted(AGGREGATE_FUNCTIONS)}."
            )
        op = op.upper()
        if op not in COMPARISON_OPERATORS:
            raise ValidationError(f"Unsupported HAVING operator '{truncate(op)}'.")
        if field_name == "*" and func != "COUNT":
            raise ValidationError(f"{func}(*) is not valid; only COUNT accepts '*'.")
        self._state.having.append(_Having(func=func, field=field_name, op=op, value=value))
        return self

    def order_by(self, field_name: str | Mapping[str, str], direction: str = "ASC") -> QueryBuilder:
        """Order by one field, or by a ``{field: direction}`` mapping."""
        self._require("order_by")
        items = field_name.items() if isinstance(field_name, Mapping) else [(field_name, direction)]
        for name, dir_ in items:
            dir_ = str(dir_).upper()
            if dir_ not in ("ASC", "DESC"):
                raise ValidationError(f"Sort direction must be ASC or DESC, got '{truncate(dir_)}'.")
            self._state.order_by.append((name, dir_))
        return self

    def limit(self, count: int) -> QueryBuilder:
        self._require("limit")
        self._state.limit = _non_negative(count, "limit")
        return self

    def offset(self, count: int) -> QueryBuilder:
        self._require("offset")
        self._state.offset = _non_negative(count, "offset")
        return self

    def returning(self, fields: str | Iterable[str]) -> QueryBuilder:
        """Request columns back from an INSERT / UPDATE / DELETE.

        On dialects without RETURNING the clause is omitted and the built
        statement is flagged with ``emulate_returning``.
        """
        self._require("returning")
        self._state.returning = [fields] if isinstance(fields, str) else list(fields)
        return self

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> QueryBuilder:
        """Discard all accumulated state so the builder can be reused."""
        self._state = _QueryState()
        self._built = False
        return self

    def clone(self) -> QueryBuilder:
        """Return an unbuilt copy of this builder with the same state."""
        other = QueryBuilder(
            self._engine,
            self._role,
            compiler=self._compiler,
            identifiers=self._identifiers,
            strict=self._strict,
        )
        other._state = self._state.copy()
        return other

    def build(self) -> CompiledSQL:
        """Render the statement.

        Returns:
            :class:`~shieldql.compile.base.CompiledSQL` with the SQL text and
            its bound values in placeholder order.

        Raises:
            CompilationError: If no statement/table was chosen, the
                projection or value set is empty after policy filtering, or
                the builder was already built.
            IdentifierRejectedError: If an identifier fails validation.
            AccessDeniedError: For predicates on denied fields, or any denied
                field in strict mode.
        """
        if self._built:
            raise CompilationError(
                "build() was already called on this builder; call reset() first.",
                clause="build",
            )
        state = self._state
        if state.kind is None:
            raise CompilationError("No statement type selected.", clause="build")
        if state.table is None:
            raise CompilationError(f"No target table for {state.kind}.", clause=state.kind)

        ctx = CompilationContext(
            compiler=self._compiler,
            identifiers=self._identifiers,
            table=state.table,
            role=self._role,
        )
        params = ParamAccumulator(self._compiler)
        renderers = {
            "SELECT": self._build_select,
            "INSERT": self._build_insert,
            "UPDATE": self._build_update,
            "DELETE": self._build_delete,
        }
        sql, returning = renderers[state.kind](ctx, params)

        emulate = bool(returning) and not self._compiler.supports_returning
        if emulate:
            logger.warning(
                "%s does not support RETURNING; caller must emulate it for %s on %r",
                self._compiler.dialect_name,
                state.kind,
                state.table,
            )

        self._built = True
        logger.debug(
            "Built %s for role %r on %r (%s): %s [%d param(s)]",
            state.kind,
            self._role,
            state.table,
            self._compiler.dialect_name,
            truncate(sql, 200),
            len(params.params),
        )
        return CompiledSQL(
            sql=sql,
            params=tuple(params.params),
            dialect=self._compiler.dialect_name,
            returning=tuple(returning),
            emulate_returning=emulate,
        )

    # ------------------------------------------------------------------
    # Statement renderers
    # ------------------------------------------------------------------

    def _build_select(self, ctx: CompilationContext, params: ParamAccumulator) -> tuple[str, list[str]]:
        state = self._state
        fields = state.fields if state.fields is not None else self._default_fields(state.table)
        visible = self._visible(fields, "SELECT")
        if not visible:
            raise CompilationError(
                f"No accessible fields to select from '{truncate(state.table)}' for role '{self._role}'.",
                clause="SELECT",
            )

        parts = [f"SELECT {', '.join(ctx.column_sql(f) for f in visible)}"]
        parts.append(f"FROM {ctx.table_sql(state.table)}")
        for join in state.joins:
            self._require_predicate_access(join.left)
            self._require_predicate_access(join.right)
            parts.append(
                f"{join.kind} JOIN {ctx.table_sql(join.table)} "
                f"ON {ctx.column_sql(join.left)} = {ctx.column_sql(join.right)}"
            )
        where = self._where_sql(ctx, params)
        if where:
            parts.append(where)

        group_by = self._visible(state.group_by, "GROUP BY")
        if group_by:
            parts.append(f"GROUP BY {', '.join(ctx.column_sql(f) for f in group_by)}")

        if state.having:
            terms = []
            for having in state.having:
                if having.field == "*":
                    target = "*"
                else:
                    self._require_predicate_access(having.field)
                    target = ctx.column_sql(having.field)
                terms.append(f"{having.func}({target}) {having.op} {params.add(having.value)}")
            parts.append(f"HAVING {' AND '.join(terms)}")

        visible_order = self._visible([name for name, _ in state.order_by], "ORDER BY")
        order_terms = [
            f"{ctx.column_sql(name)} {direction}"
            for name, direction in state.order_by
            if name in visible_order
        ]
        if order_terms:
            parts.append(f"ORDER BY {', '.join(order_terms)}")

        if state.limit is not None:
            parts.append(f"LIMIT {state.limit}")
        if state.offset is not None:
            parts.append(f"OFFSET {state.offset}")
        return " ".join(parts), []

    def _build_insert(self, ctx: CompilationContext, params: ParamAccumulator) -> tuple[str, list[str]]:
        state = self._state
        values = self._visible_values("INSERT")
        columns = ", ".join(ctx.column_sql(name) for name in values)
        placeholders = ", ".join(params.add(value) for value in values.values())
        sql = f"INSERT INTO {ctx.table_sql(state.table)} ({columns}) VALUES ({placeholders})"
        return self._append_returning(sql, ctx)

    def _build_update(self, ctx: CompilationContext, params: ParamAccumulator) -> tuple[str, list[str]]:
        state = self._state
        values = self._visible_values("UPDATE")
        assignments = ", ".join(
            f"{ctx.column_sql(name)} = {params.add(value)}" for name, value in values.items()
        )
        parts = [f"UPDATE {ctx.table_sql(state.table)} SET {assignments}"]
        where = self._where_sql(ctx, params)
        if where:
            parts.append(where)
        else:
            logger.warning("UPDATE on %r has no WHERE clause; every row will be modified", state.table)
        return self._append_returning(" ".join(parts), ctx)

    def _build_delete(self, ctx: CompilationContext, params: ParamAccumulator) -> tuple[str, list[str]]:
        state = self._state
        parts = [f"DELETE FROM {ctx.table_sql(state.table)}"]
        where = self._where_sql(ctx, params)
        if where:
            parts.append(where)
        else:
            logger.warning("DELETE on %r has no WHERE clause; every row will be removed", state.table)
        return self._append_returning(" ".join(parts), ctx)

    # ------------------------------------------------------------------
    # Clause helpers
    # ------------------------------------------------------------------

    def _where_sql(self, ctx: CompilationContext, params: ParamAccumulator) -> str:
        groups = []
        for group in self._state.conditions:
            if not group:
                continue
            terms = [self._condition_sql(cond, ctx, params) for cond in group]
            groups.append(terms[0] if len(terms) == 1 else f"({' OR '.join(terms)})")
        return f"WHERE {' AND '.join(groups)}" if groups else ""

    def _condition_sql(self, cond: _Condition, ctx: CompilationContext, params: ParamAccumulator) -> str:
        self._require_predicate_access(cond.field)
        column = ctx.column_sql(cond.field)
        if cond.op in NULL_OPERATORS:
            return f"{column} {cond.op}"
        if cond.op in LIST_OPERATORS:
            placeholders = ", ".join(params.add(v) for v in cond.value)
            return f"{column} {cond.op} ({placeholders})"
        if cond.op in PATTERN_OPERATORS:
            return f"{column} {self._compiler.like_operator(cond.op)} {params.add(cond.value)}"
        if cond.value is None and cond.op in ("=", "!=", "<>"):
            return f"{column} {'IS NULL' if cond.op == '=' else 'IS NOT NULL'}"
        return f"{column} {cond.op} {params.add(cond.value)}"

    def _append_returning(self, sql: str, ctx: CompilationContext) -> tuple[str, list[str]]:
        fields = self._visible(self._state.returning, "RETURNING")
        if not fields:
            return sql, []
        storage = [ctx.storage_name(f) for f in fields]
        if self._compiler.supports_returning:
            sql = f"{sql} RETURNING {', '.join(ctx.column_sql(f) for f in fields)}"
        return sql, storage

    # ------------------------------------------------------------------
    # Policy filtering
    # ------------------------------------------------------------------

    def _decision(self, ref: str) -> AccessDecision:
        qualifier, column = split_field_ref(ref, self._state.table, self._role)
        return self._engine.check_column_access(qualifier or self._state.table, column, self._role)

    def _visible(self, fields: Iterable[str], clause: str) -> list[str]:
        visible = []
        for ref in fields:
            decision = self._decision(ref)
            if decision.allowed:
                visible.append(ref)
            elif self._strict:
                raise AccessDeniedError(
                    ref, self._role, required_role=decision.required_role, reason=decision.reason.value
                )
            else:
                logger.debug("Dropping %s field %r for role %r", clause, truncate(ref), self._role)
        return visible

    def _visible_values(self, clause: str) -> dict[str, Any]:
        visible = set(self._visible(self._state.values, clause))
        values = {k: v for k, v in self._state.values.items() if k in visible}
        if not values:
            raise CompilationError(
                f"No writable fields for {clause} on '{truncate(self._state.table)}' "
                f"for role '{self._role}'.",
                clause=clause,
            )
        return values

    def _require_predicate_access(self, ref: str) -> None:
        decision = self._decision(ref)
        if not decision.allowed:
            raise AccessDeniedError(
                ref, self._role, required_role=decision.required_role, reason=decision.reason.value
            )

    def _default_fields(self, table: str) -> list[str]:
        catalog = self._engine.catalog
        if catalog is not None and catalog.has_table(table):
            candidates = []
            for column in catalog.get_column_names(table):
                try:
                    candidates.append(self._identifiers.to_semantic(column))
                except ValidationError:
                    logger.debug("Skipping unmapped catalog column %r on %r", column, table)
            return self._engine.allowed_columns(table, self._role, candidates)
        return self._engine.allowed_columns(table, self._role)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _start(self, kind: str) -> None:
        if self._built:
            raise CompilationError("Builder already built; call reset() first.", clause=kind)
        if self._state.kind is not None and self._state.kind != kind:
            raise CompilationError(
                f"Statement type already set to {self._state.kind}; call reset() first.",
                clause=kind,
            )
        self._state.kind = kind

    def _require(self, clause: str) -> None:
        if self._built:
            raise CompilationError("Builder already built; call reset() first.", clause=clause)
        kind = self._state.kind
        if kind is None:
            raise CompilationError(
                f"{clause}() called before a statement type was selected.", clause=clause
            )
        if kind not in _CLAUSE_STATEMENTS[clause]:
            raise CompilationError(f"{clause}() is not valid for {kind}.", clause=clause)

    def _set_table(self, table: str) -> None:
        self._identifiers.validate(table, table=table, role=self._role)
        self._engine.check_table_access(table, self._role, self._state.kind or "SELECT")
        self._state.table = table

    def _make_condition(self, field_name: str, op: str, value: Any) -> _Condition:
        op = " ".join(str(op).upper().split())
        if op not in WHERE_OPERATORS:
            raise ValidationError(f"Unsupported operator '{truncate(op)}'.")
        if op in LIST_OPERATORS:
            if not is_sequence(value) or not value:
                raise ValidationError(f"{op} requires a non-empty list of values.")
            value = tuple(value)
        if op in NULL_OPERATORS:
            value = None
        return _Condition(field_name, op, value)

    @staticmethod
    def _check_mapping(values: Mapping[str, Any], clause: str) -> dict[str, Any]:
        if not isinstance(values, Mapping):
            raise ValidationError(f"{clause}() expects a mapping of field names to values.")
        return dict(values)


def _non_negative(count: Any, clause: str) -> int:
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ValidationError(f"{clause} must be a non-negative integer, got {truncate(count)!r}.")
    return count
