"""PostgreSQL dialect compiler."""

from __future__ import annotations

from shieldql.compile.base import PlaceholderStyle, SQLCompiler


class PostgresCompiler(SQLCompiler):
    """Emits PostgreSQL-flavoured parameterized SQL.

    Parameter style: ``$1, $2, …`` – the native server-side numbering used by
    ``asyncpg`` and by prepared statements.
    """

    @property
    def dialect_name(self) -> str:
        return "postgres"

    @property
    def placeholder_style(self) -> PlaceholderStyle:
        return "numbered"

    @property
    def supports_returning(self) -> bool:
        return True

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def like_operator(self, op: str) -> str:
        return op  # 'LIKE' or 'ILIKE' - PostgreSQL supports both natively

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace('"', '""')
        return f'"{escaped}"'
