"""SQLite dialect compiler."""
from __future__ import annotations

from shieldql.compile.base import PlaceholderStyle, SQLCompiler


class SQLiteCompiler(SQLCompiler):
    """Emits SQLite-flavoured parameterized SQL.

    Parameter style: ``?`` – compatible with Python's built-in ``sqlite3``
    positional execution (``cursor.execute(sql, params)``).

    Note: SQLite does not support ``ILIKE``; it is mapped to ``LIKE``.
    SQLite's ``LIKE`` is case-insensitive for ASCII by default.  ``RETURNING``
    is available from SQLite 3.35.
    """

    @property
    def dialect_name(self) -> str:
        return "sqlite"

    @property
    def placeholder_style(self) -> PlaceholderStyle:
        return "positional"

    @property
    def supports_returning(self) -> bool:
        return True

    def placeholder(self, index: int) -> str:
        return "?"

    def like_operator(self, op: str) -> str:
        return "LIKE"  # SQLite has no ILIKE; fall back to LIKE

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace('"', '""')
        return f'"{escaped}"'
