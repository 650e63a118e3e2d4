"""MySQL dialect compiler."""

from __future__ import annotations

from shieldql.compile.base import PlaceholderStyle, SQLCompiler


class MySQLCompiler(SQLCompiler):
    """Emits MySQL-flavoured parameterized SQL.

    Parameter style: ``?`` – bound by position, as with prepared statements
    in ``mysql-connector-python`` and ``mysql2``-style drivers.

    Note: MySQL does not support ``ILIKE``; it is mapped to ``LIKE``.
    MySQL's ``LIKE`` is case-insensitive for non-binary TEXT/VARCHAR columns
    by default.  MySQL has no ``RETURNING`` clause either; statements that
    request one are flagged for emulation by the executing adapter.

    Identifiers are quoted with backticks (`` ` ``) rather than double-quotes.
    """

    @property
    def dialect_name(self) -> str:
        return "mysql"

    @property
    def placeholder_style(self) -> PlaceholderStyle:
        return "positional"

    @property
    def supports_returning(self) -> bool:
        return False

    def placeholder(self, index: int) -> str:
        return "?"

    def like_operator(self, op: str) -> str:
        return "LIKE"  # MySQL has no ILIKE; LIKE is case-insensitive for TEXT by default

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace("`", "``")
        return f"`{escaped}`"
