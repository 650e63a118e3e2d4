"""Per-build compilation state.

``CompilationContext`` packages the ``(compiler, identifiers, table, role)``
data clump every clause renderer needs.  ``ParamAccumulator`` collects bound
values for one ``build()`` run and hands out placeholders in text order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from shieldql.compile.base import SQLCompiler
from shieldql.errors import IdentifierRejectedError
from shieldql.validate.identifiers import IdentifierValidator


@dataclass(frozen=True)
class CompilationContext:
    """Immutable context for a single build.

    Attributes:
        compiler: Dialect-specific SQL compiler instance.
        identifiers: Validator / name mapper for every identifier.
        table: Target table of the statement.
        role: Acting role (for error context).
    """

    compiler: SQLCompiler
    identifiers: IdentifierValidator
    table: str
    role: str

    def table_sql(self, table: str) -> str:
        """Validate and quote a table name."""
        self.identifiers.validate(table, table=self.table, role=self.role)
        return self.compiler.quote_identifier(table)

    def storage_name(self, ref: str) -> str:
        """Return the storage column name for a field reference."""
        _, column = split_field_ref(ref, self.table, self.role)
        return self.identifiers.to_storage(column, table=self.table, role=self.role)

    def column_sql(self, ref: str) -> str:
        """Validate, map and quote a field reference (``field`` or ``table.field``)."""
        table, column = split_field_ref(ref, self.table, self.role)
        storage = self.identifiers.to_storage(column, table=self.table, role=self.role)
        quoted = self.compiler.quote_identifier(storage)
        if table is None:
            return quoted
        return f"{self.table_sql(table)}.{quoted}"


def split_field_ref(ref: str, table: str | None = None, role: str | None = None) -> tuple[str | None, str]:
    """Split ``"table.field"`` into ``("table", "field")``; bare names get ``None``.

    Raises:
        IdentifierRejectedError: If ``ref`` has more than one dot.
    """
    if not isinstance(ref, str):
        raise IdentifierRejectedError(str(ref), "field reference must be a string", table=table, role=role)
    if "." not in ref:
        return None, ref
    qualifier, _, column = ref.partition(".")
    if "." in column:
        raise IdentifierRejectedError(ref, "too many qualifiers", table=table, role=role)
    return qualifier, column


@dataclass
class ParamAccumulator:
    """Accumulates bound values during a single build.

    Placeholders are handed out in the order values are added, which is the
    order they appear in the SQL text, so numbered placeholders always line
    up with their position in :attr:`params`.
    """

    compiler: SQLCompiler
    params: list[Any] = field(default_factory=list)

    def add(self, value: Any) -> str:
        """Store a value and return its placeholder."""
        self.params.append(value)
        return self.compiler.placeholder(len(self.params))
