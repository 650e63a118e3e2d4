"""Integration tests: build → execute against a real PostgreSQL instance.

Uses SHIELDQL_PG_DSN (e.g. ``postgresql://postgres@localhost/shieldql``).
Skips all tests if the env var is unset or the connection fails.

Statements are sent through libpq's extended protocol
(``PGconn.exec_params``), which binds the compiler's ``$n`` placeholders
server-side exactly as asyncpg-style drivers do.  Values travel in text
format and are decoded to ``str`` on the way back.
"""
from __future__ import annotations

import os

import pytest

from shieldql.compile.base import CompiledSQL
from shieldql.compile.builder import QueryBuilder
from shieldql.policy.engine import PolicyEngine
from tests.fixtures import load_catalog, load_ddl, load_engine_config

psycopg = pytest.importorskip("psycopg", reason="psycopg required for Postgres integration tests")
from psycopg.pq import ExecStatus  # noqa: E402

ENGINE = PolicyEngine(load_engine_config(), catalog=load_catalog())


def _get_pg_connection():
    dsn = os.environ.get("SHIELDQL_PG_DSN")
    if not dsn:
        pytest.skip("SHIELDQL_PG_DSN not set")
    try:
        return psycopg.connect(dsn, autocommit=True)
    except psycopg.Error as e:
        pytest.skip(f"Cannot connect to Postgres: {e}")


@pytest.fixture(scope="module")
def pg_conn():
    """Module-scoped Postgres connection with schema and seed data."""
    conn = _get_pg_connection()
    conn.execute(load_ddl("postgres"))
    with conn.cursor() as cur:
        cur.executemany(
            """INSERT INTO users (id, first_name, last_name, email, phone, salary,
                                  ssn, password, department, status, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::timestamptz)""",
            [
                (1, "Ada", "Lovelace", "ada@example.com", "+1 555 0101", 120000,
                 "111-11-1111", "pw1", "R&D", "active", "2024-01-01T00:00:00Z"),
                (2, "Alan", "Turing", "alan@example.com", None, 95000,
                 "222-22-2222", "pw2", "R&D", "active", "2024-02-01T00:00:00Z"),
                (3, "Grace", "Hopper", None, "+1 555 0103", 130000,
                 "333-33-3333", "pw3", "Navy", "inactive", "2024-03-01T00:00:00Z"),
            ],
        )
        cur.executemany(
            """INSERT INTO orders (id, user_id, total, status, created_at)
               VALUES (%s, %s, %s, %s, %s::timestamptz)""",
            [
                (1, 1, 50, "paid", "2024-05-01T00:00:00Z"),
                (2, 1, 20, "open", "2024-05-02T00:00:00Z"),
                (3, 2, 75, "paid", "2024-05-03T00:00:00Z"),
            ],
        )
    yield conn
    conn.close()


def _pg(role: str) -> QueryBuilder:
    return ENGINE.query(role, dialect="postgres")


def _run(conn, compiled: CompiledSQL) -> list[tuple]:
    params = [None if v is None else str(v).encode() for v in compiled.params]
    result = conn.pgconn.exec_params(compiled.sql.encode(), params)
    if result.status not in (ExecStatus.TUPLES_OK, ExecStatus.COMMAND_OK):
        raise AssertionError((result.error_message or b"").decode())
    rows = []
    for r in range(result.ntuples):
        row = []
        for c in range(result.nfields):
            value = result.get_value(r, c)
            row.append(None if value is None else value.decode())
        rows.append(tuple(row))
    return rows


@pytest.mark.integration
def test_numbered_placeholders_bind_in_order(pg_conn):
    compiled = (
        _pg("user")
        .select(["id", "firstName"])
        .from_("users")
        .where({"status": "active"})
        .where_condition("id", "IN", [1, 2, 3])
        .order_by("id")
        .build()
    )
    assert compiled.sql.count("$") == 4
    assert _run(pg_conn, compiled) == [("1", "Ada"), ("2", "Alan")]


@pytest.mark.integration
def test_select_star_is_narrowed_by_role(pg_conn):
    compiled = _pg("guest").select().from_("users").order_by("id").limit(1).build()
    assert '"email"' not in compiled.sql
    assert '"salary"' not in compiled.sql
    rows = _run(pg_conn, compiled)
    assert len(rows) == 1
    assert rows[0][:4] == ("1", "Ada", "Lovelace", "active")


@pytest.mark.integration
def test_ilike_is_native(pg_conn):
    compiled = (
        _pg("user")
        .select(["id"])
        .from_("users")
        .where_condition("firstName", "ILIKE", "a%")
        .order_by("id")
        .build()
    )
    assert "ILIKE" in compiled.sql
    assert _run(pg_conn, compiled) == [("1",), ("2",)]


@pytest.mark.integration
def test_join_group_having(pg_conn):
    compiled = (
        _pg("manager")
        .select(["users.firstName"])
        .from_("users")
        .join("orders", "users.id", "orders.userId")
        .where_condition("orders.total", ">", 10)
        .group_by("users.firstName")
        .having("COUNT", "*", ">=", 2)
        .build()
    )
    assert _run(pg_conn, compiled) == [("Ada",)]


@pytest.mark.integration
def test_update_returning(pg_conn):
    compiled = (
        _pg("admin")
        .update("orders")
        .set({"status": "shipped"})
        .where({"id": 3})
        .returning(["id", "status"])
        .build()
    )
    assert compiled.returning == ("id", "status")
    assert _run(pg_conn, compiled) == [("3", "shipped")]
