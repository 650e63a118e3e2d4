"""Compiler registry (Open/Closed Principle).

``CompilerFactory`` maps dialect names to
:class:`~shieldql.compile.base.SQLCompiler` classes.  The query builder
resolves its ``compiler`` argument through :meth:`CompilerFactory.resolve`, so
adding a dialect never requires editing the builder.

Usage::

    from shieldql.compile.registry import CompilerFactory

    @CompilerFactory.register("mssql", aliases=("sqlserver",))
    class MSSQLCompiler(SQLCompiler):
        ...

    CompilerFactory.create("sqlserver")   # -> MSSQLCompiler()
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import ClassVar

from shieldql.compile.base import SQLCompiler
from shieldql.errors import CompilationError


class CompilerFactory:
    """Registry of dialect compilers, with alias support.

    Names are case-insensitive.  An alias resolves to the same class as its
    canonical name; :meth:`registered_targets` lists canonical names only.
    """

    _compilers: ClassVar[dict[str, type[SQLCompiler]]] = {}
    _aliases: ClassVar[dict[str, str]] = {}

    @classmethod
    def register(
        cls,
        name: str,
        aliases: Iterable[str] = (),
    ) -> Callable[[type[SQLCompiler]], type[SQLCompiler]]:
        """Decorator form of :meth:`register_class`."""

        def decorator(compiler_cls: type[SQLCompiler]) -> type[SQLCompiler]:
            cls.register_class(name, compiler_cls, aliases)
            return compiler_cls

        return decorator

    @classmethod
    def register_class(
        cls,
        name: str,
        compiler_cls: type[SQLCompiler],
        aliases: Iterable[str] = (),
    ) -> None:
        """Register ``compiler_cls`` under ``name`` and any ``aliases``.

        Args:
            name: Canonical dialect name (e.g. ``"postgres"``).
            compiler_cls: The :class:`SQLCompiler` subclass to register.
            aliases: Alternative names resolving to the same compiler.
        """
        canonical = name.lower()
        cls._compilers[canonical] = compiler_cls
        for alias in aliases:
            cls._aliases[alias.lower()] = canonical

    @classmethod
    def create(cls, name: str) -> SQLCompiler:
        """Instantiate the compiler registered for ``name``.

        Raises:
            CompilationError: If no compiler is registered for ``name``.
        """
        key = name.lower()
        compiler_cls = cls._compilers.get(cls._aliases.get(key, key))
        if compiler_cls is None:
            raise CompilationError(
                f"Unsupported dialect target: '{name}'. "
                f"Registered targets: {cls.registered_targets()}."
            )
        return compiler_cls()

    @classmethod
    def resolve(cls, compiler: str | SQLCompiler) -> SQLCompiler:
        """Return ``compiler`` itself if it is an instance, else :meth:`create` it."""
        if isinstance(compiler, SQLCompiler):
            return compiler
        return cls.create(compiler)

    @classmethod
    def registered_targets(cls) -> list[str]:
        """Return the sorted canonical dialect names."""
        return sorted(cls._compilers)
