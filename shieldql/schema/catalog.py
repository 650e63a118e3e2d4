"""Pydantic models describing the tables and columns a query builder may see.

The catalog is purely structural: it lists which columns exist in which
table, using storage (database) names.  It carries no policy.  When a
:class:`~shieldql.compile.builder.QueryBuilder` is asked for a table without
an explicit projection, the catalog's columns are mapped to field names and
filtered through the policy engine.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ColumnInfo(BaseModel):
    """Metadata for a single column.

    Attributes:
        name: Storage column name.
        type: SQL type string (e.g. ``'TEXT'``, ``'INTEGER'``).
        nullable: Whether the column can be NULL.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    type: str = ""
    nullable: bool = True


class TableInfo(BaseModel):
    """Metadata for a single table.

    Attributes:
        name: Storage table name.
        columns: Ordered column metadata.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    columns: list[ColumnInfo]

    @property
    def column_names(self) -> list[str]:
        """Returns all column names for this table."""
        return [c.name for c in self.columns]


class TableCatalog(BaseModel):
    """The set of known tables.

    Attributes:
        tables: Every table the builder may reference.
    """

    model_config = ConfigDict(extra="forbid")

    tables: list[TableInfo]

    @classmethod
    def from_columns(cls, columns: dict[str, list[str]]) -> TableCatalog:
        """Build a catalog from ``{table: [column, ...]}``."""
        return cls(
            tables=[
                TableInfo(name=table, columns=[ColumnInfo(name=c) for c in names])
                for table, names in columns.items()
            ]
        )

    def get_table(self, name: str) -> TableInfo | None:
        """Returns the TableInfo for the given table name, or ``None``."""
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def has_table(self, name: str) -> bool:
        return self.get_table(name) is not None

    def get_column_names(self, table_name: str) -> list[str]:
        """Returns column names for ``table_name``, or ``[]`` if not found."""
        table = self.get_table(table_name)
        return table.column_names if table is not None else []

    @property
    def table_names(self) -> list[str]:
        """Returns all table names in the catalog."""
        return [t.name for t in self.tables]
