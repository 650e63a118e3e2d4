"""Integration tests: build → execute against a real SQLite in-memory DB.

Covers projections narrowed by role, auto-populated projections, predicates
(equality, IN, IS NULL, LIKE), joins, grouping, paging, writes with denied
values dropped, and filtering of fetched rows.
"""
from __future__ import annotations

import sqlite3

import pytest

from shieldql.compile.base import CompiledSQL
from shieldql.compile.builder import QueryBuilder
from shieldql.policy.engine import PolicyEngine
from shieldql.validate.identifiers import IdentifierValidator
from tests.fixtures import load_catalog, load_ddl, load_engine_config

ENGINE = PolicyEngine(load_engine_config(), catalog=load_catalog())
IDS = IdentifierValidator.default()


@pytest.fixture()
def db() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.executescript(load_ddl())
    conn.executemany(
        "INSERT INTO users VALUES (?,?,?,?,?,?,?,?,?,?,?)",
        [
            (1, "Ada", "Lovelace", "ada@example.com", "+1 555 0101", 120000.0,
             "111-11-1111", "pw1", "R&D", "active", "2024-01-01"),
            (2, "Alan", "Turing", "alan@example.com", None, 95000.0,
             "222-22-2222", "pw2", "R&D", "active", "2024-02-01"),
            (3, "Grace", "Hopper", None, "+1 555 0103", 130000.0,
             "333-33-3333", "pw3", "Navy", "inactive", "2024-03-01"),
        ],
    )
    conn.executemany(
        "INSERT INTO orders VALUES (?,?,?,?,?)",
        [
            (1, 1, 50.0, "paid", "2024-05-01"),
            (2, 1, 20.0, "open", "2024-05-02"),
            (3, 2, 75.0, "paid", "2024-05-03"),
        ],
    )
    conn.commit()
    return conn


def _sq(role: str) -> QueryBuilder:
    return ENGINE.query(role, dialect="sqlite")


def _run(conn: sqlite3.Connection, compiled: CompiledSQL) -> list[dict]:
    cur = conn.execute(compiled.sql, compiled.params)
    return [dict(row) for row in cur.fetchall()]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_select_star_is_narrowed_by_role(db):
    rows = _run(db, _sq("user").select().from_("users").order_by("id").build())
    assert len(rows) == 3
    assert set(rows[0]) == {
        "id", "first_name", "last_name", "email", "phone", "status", "created_at",
    }

    admin_rows = _run(db, _sq("admin").select().from_("users").order_by("id").build())
    assert admin_rows[0]["salary"] == 120000.0
    assert "ssn" not in admin_rows[0]
    assert "password" not in admin_rows[0]


@pytest.mark.integration
def test_where_order_limit_offset(db):
    compiled = (
        _sq("user")
        .select(["id", "firstName"])
        .from_("users")
        .where({"status": "active"})
        .order_by("id", "DESC")
        .limit(1)
        .offset(1)
        .build()
    )
    assert _run(db, compiled) == [{"id": 1, "first_name": "Ada"}]


@pytest.mark.integration
def test_in_and_is_null(db):
    compiled = (
        _sq("user")
        .select(["id"])
        .from_("users")
        .where_condition("id", "IN", [1, 3])
        .where({"email": None})
        .build()
    )
    assert _run(db, compiled) == [{"id": 3}]


@pytest.mark.integration
def test_ilike_maps_to_case_insensitive_like(db):
    compiled = (
        _sq("user")
        .select(["id"])
        .from_("users")
        .where_condition("firstName", "ILIKE", "a%")
        .order_by("id")
        .build()
    )
    assert [r["id"] for r in _run(db, compiled)] == [1, 2]


@pytest.mark.integration
def test_join_with_qualified_fields(db):
    compiled = (
        _sq("manager")
        .select(["users.firstName", "orders.total"])
        .from_("users")
        .join("orders", "users.id", "orders.userId")
        .where_condition("orders.total", ">", 30)
        .order_by("orders.total")
        .build()
    )
    assert _run(db, compiled) == [
        {"first_name": "Ada", "total": 50.0},
        {"first_name": "Alan", "total": 75.0},
    ]


@pytest.mark.integration
def test_group_by_having(db):
    compiled = (
        _sq("manager")
        .select(["userId"])
        .from_("orders")
        .group_by("userId")
        .having("COUNT", "*", ">=", 2)
        .build()
    )
    assert _run(db, compiled) == [{"user_id": 1}]


@pytest.mark.integration
def test_hostile_value_is_bound_not_executed(db):
    hostile = "x'; DROP TABLE users; --"
    compiled = _sq("user").select(["id"]).from_("users").where({"lastName": hostile}).build()
    assert _run(db, compiled) == []
    assert db.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 3


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_insert_drops_denied_values(db):
    compiled = (
        _sq("user")
        .insert("users")
        .values(
            {
                "id": 4,
                "firstName": "Katherine",
                "lastName": "Johnson",
                "salary": 1.0,
                "status": "active",
                "createdAt": "2024-04-01",
            }
        )
        .build()
    )
    db.execute(compiled.sql, compiled.params)
    row = db.execute("SELECT first_name, salary FROM users WHERE id = 4").fetchone()
    assert row["first_name"] == "Katherine"
    assert row["salary"] is None


@pytest.mark.integration
def test_update_and_delete(db):
    update = _sq("admin").update("users").set({"salary": 99.0}).where({"id": 2}).build()
    db.execute(update.sql, update.params)
    assert db.execute("SELECT salary FROM users WHERE id = 2").fetchone()[0] == 99.0

    delete = _sq("admin").delete("orders").where_condition("status", "=", "open").build()
    db.execute(delete.sql, delete.params)
    assert db.execute("SELECT COUNT(*) FROM orders").fetchone()[0] == 2


# ---------------------------------------------------------------------------
# Filtering fetched rows
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_filter_rows_fetched_by_a_privileged_role(db):
    compiled = (
        _sq("admin")
        .select(["id", "firstName", "salary", "department"])
        .from_("users")
        .order_by("id")
        .build()
    )
    rows = IDS.map_to_semantic(_run(db, compiled))
    assert rows[0] == {"id": 1, "firstName": "Ada", "salary": 120000.0, "department": "R&D"}

    assert ENGINE.filter(rows, "user") == [
        {"id": 1, "firstName": "Ada"},
        {"id": 2, "firstName": "Alan"},
        {"id": 3, "firstName": "Grace"},
    ]
    assert ENGINE.filter(rows, "manager")[2] == {"id": 3, "firstName": "Grace", "department": "Navy"}
