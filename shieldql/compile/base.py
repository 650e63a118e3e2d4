"""Compiler abstractions: CompiledSQL and the SQLCompiler ABC.

The Template Method pattern (GoF) is used:
- ``QueryBuilder`` defines the statement skeleton (clause order, parameter
  numbering, policy filtering).
- ``SQLCompiler`` subclasses supply the dialect-specific steps: parameter
  placeholder style, identifier quoting, ILIKE support and RETURNING support.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

#: ``"numbered"`` placeholders carry their position (``$1``); ``"positional"``
#: placeholders are bound by order of appearance (``?``).
PlaceholderStyle = Literal["numbered", "positional"]


@dataclass(frozen=True)
class CompiledSQL:
    """The output of a successful build.

    Attributes:
        sql: The SQL text.  Contains identifiers and placeholders only; no
            bound value ever appears in it.
        params: Bound values in placeholder order.
        dialect: The target dialect (``'postgres'``, ``'mysql'``, ``'sqlite'``).
        returning: Storage column names requested via ``returning()``.
        emulate_returning: ``True`` when ``returning`` was requested but the
            dialect has no RETURNING clause; the executing adapter must fetch
            those columns itself (e.g. by re-selecting the affected row).
    """

    sql: str
    params: tuple[Any, ...]
    dialect: str
    returning: tuple[str, ...] = ()
    emulate_returning: bool = False

    def as_tuple(self) -> tuple[str, tuple[Any, ...]]:
        """Return ``(sql, params)`` ready for ``cursor.execute``."""
        return self.sql, self.params


class SQLCompiler(ABC):
    """Abstract base for dialect-specific SQL compilers.

    Subclasses implement the dialect-specific methods; the ``QueryBuilder``
    uses this interface via the Strategy / Template Method patterns.
    """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the canonical dialect name."""

    @property
    @abstractmethod
    def placeholder_style(self) -> PlaceholderStyle:
        """Return how placeholders are bound (numbered or positional)."""

    @property
    @abstractmethod
    def supports_returning(self) -> bool:
        """Return ``True`` if the dialect has a ``RETURNING`` clause."""

    @abstractmethod
    def placeholder(self, index: int) -> str:
        """Return the placeholder for the ``index``-th bound value (1-based).

        Args:
            index: Position of the value in the parameter list, starting at 1.

        Returns:
            Dialect-specific placeholder string.
        """

    @abstractmethod
    def like_operator(self, op: str) -> str:
        """Return the SQL keyword for a LIKE / ILIKE operator.

        Dialects without ``ILIKE`` fall back to ``LIKE``.

        Args:
            op: ``'LIKE'`` or ``'ILIKE'``.

        Returns:
            SQL operator keyword.
        """

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Return a properly-quoted SQL identifier.

        Args:
            name: Unquoted, already validated identifier.

        Returns:
            Quoted identifier.
        """
