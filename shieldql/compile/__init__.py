"""shieldQL compilation layer: policy-filtered, parameterized SQL."""
from shieldql.compile.base import CompiledSQL, SQLCompiler
from shieldql.compile.builder import QueryBuilder
from shieldql.compile.mysql import MySQLCompiler
from shieldql.compile.postgres import PostgresCompiler
from shieldql.compile.registry import CompilerFactory
from shieldql.compile.sqlite import SQLiteCompiler

__all__ = [
    "CompiledSQL",
    "SQLCompiler",
    "QueryBuilder",
    "CompilerFactory",
    "MySQLCompiler",
    "PostgresCompiler",
    "SQLiteCompiler",
]
