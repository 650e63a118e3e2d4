"""Unit tests for PolicyEngine access decisions, caching and table policies."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from shieldql.errors import AccessDeniedError, TableAccessDeniedError
from shieldql.policy.cache import DecisionCache
from shieldql.policy.decision import AccessReason
from shieldql.policy.engine import PolicyEngine

ROLES = {
    "admin": {"level": 100},
    "manager": {"level": 50, "inherits": ["user"]},
    "user": {"level": 10},
}


def _engine(fields: dict, roles: dict | None = None, **settings) -> PolicyEngine:
    config = {"roles": roles or ROLES, "fields": fields}
    config.update(settings)
    return PolicyEngine(config)


# ---------------------------------------------------------------------------
# Core decisions
# ---------------------------------------------------------------------------


def test_min_role_blocks_lower_roles():
    engine = _engine({"salary": {"minRole": "admin"}})
    assert engine.has_field_access("salary", "manager") is False
    assert engine.has_field_access("salary", "admin") is True


def test_insufficient_role_decision_details(engine):
    decision = engine.check_access("salary", "manager")
    assert not decision.allowed
    assert decision.reason is AccessReason.INSUFFICIENT_ROLE
    assert decision.policy_pattern == "salary"
    assert decision.required_role == "admin"
    assert decision.required_level == 100
    assert decision.user_level == 50


def test_sufficient_role(engine):
    decision = engine.check_access("salary", "admin")
    assert decision.allowed
    assert decision.reason is AccessReason.SUFFICIENT_ROLE


def test_inherited_grant_beats_own_level(engine):
    # auditor is level 5 but inherits manager
    assert engine.has_field_access("department", "auditor")
    assert engine.has_field_access("email", "auditor")
    assert not engine.has_field_access("salary", "auditor")


def test_explicit_deny(engine):
    for role in ("guest", "user", "admin"):
        decision = engine.check_access("password", role)
        assert not decision.allowed
        assert decision.reason is AccessReason.EXPLICITLY_DENIED


def test_wildcard_deny_names_its_pattern(engine):
    decision = engine.check_access("user.password", "admin")
    assert not decision.allowed
    assert decision.policy_pattern == "*.password"


def test_regex_deny(engine):
    assert not engine.has_field_access("api_secret", "admin")
    assert not engine.has_field_access("config.db_secret", "admin")


def test_wildcard_min_role(engine):
    assert engine.has_field_access("financial.bonus", "manager")
    assert not engine.has_field_access("financial.bonus", "user")


def test_array_index_policy(engine):
    assert engine.has_field_access("orders.0.cost", "manager")
    assert not engine.has_field_access("orders.3.cost", "user")


def test_policy_without_restrictions(engine):
    decision = engine.check_access("nickname", "guest")
    assert decision.allowed
    assert decision.reason is AccessReason.NO_RESTRICTIONS


def test_unknown_field_follows_allow_unknown(engine):
    decision = engine.check_access("favoriteColor", "guest")
    assert decision.allowed
    assert decision.reason is AccessReason.NO_CONFIGURATION
    assert decision.policy_pattern is None

    closed = _engine({}, security={"allowUnknownFields": False})
    assert not closed.has_field_access("favoriteColor", "admin")


def test_undefined_role_is_level_zero(engine):
    assert not engine.has_field_access("email", "intruder")
    assert engine.has_field_access("nickname", "intruder")


def test_check_access_agrees_with_has_field_access(engine):
    for field_path in ("salary", "email", "password", "financial.bonus", "unknown"):
        for role in ("guest", "user", "manager", "admin", "auditor"):
            assert engine.check_access(field_path, role).allowed == engine.has_field_access(
                field_path, role
            )


def test_decision_to_dict(engine):
    data = engine.check_access("email", "guest").to_dict()
    assert data["allowed"] is False
    assert data["reason"] == "insufficient_role"
    assert data["required_role"] == "user"


def test_require_access(engine):
    assert engine.require_access("email", "user").allowed
    with pytest.raises(AccessDeniedError) as exc_info:
        engine.require_access("salary", "user")
    assert exc_info.value.code == "ACCESS_DENIED"
    assert exc_info.value.details["required_role"] == "admin"


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


def test_deny_pattern_overrides_exact_min_role():
    engine = _engine(
        {
            "user.password": {"minRole": "user"},
            "*.password": {"deny": True},
        }
    )
    decision = engine.check_access("user.password", "admin")
    assert not decision.allowed
    assert decision.reason is AccessReason.EXPLICITLY_DENIED
    assert decision.policy_pattern == "*.password"


def test_first_declared_pattern_wins():
    first = _engine({"user.*": {"minRole": "admin"}, "*.email": {}})
    assert not first.has_field_access("user.email", "user")

    second = _engine({"*.email": {}, "user.*": {"minRole": "admin"}})
    assert second.has_field_access("user.email", "user")


def test_exact_key_beats_patterns():
    engine = _engine({"user.*": {"minRole": "admin"}, "user.email": {}})
    assert engine.resolve_policy("user.email")[0] == "user.email"
    assert engine.has_field_access("user.email", "user")
    assert not engine.has_field_access("user.phone", "user")


def test_resolve_policy_none_for_unmatched(engine):
    assert engine.resolve_policy("financial.tax.rate") is None


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


def _owner_only(field_path, value, role, context):
    return context == "owner"


def test_condition_callback_decides():
    engine = _engine({"notes": {"condition": _owner_only}})
    passed = engine.check_access("notes", "user", context="owner")
    failed = engine.check_access("notes", "user", context="stranger")
    assert passed.allowed and passed.reason is AccessReason.CONDITION_PASSED
    assert not failed.allowed and failed.reason is AccessReason.CONDITION_FAILED


def test_condition_decisions_are_not_cached():
    engine = _engine({"notes": {"condition": _owner_only}})
    engine.check_access("notes", "user", context="owner")
    assert engine.stats().cache_size == 0
    assert not engine.has_field_access("notes", "user")


def test_min_role_takes_priority_over_condition():
    engine = _engine({"notes": {"minRole": "admin", "condition": _owner_only}})
    assert not engine.has_field_access("notes", "user", context="owner")


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def test_allowed_fields(engine):
    assert engine.allowed_fields("user") == ["email", "phone", "nickname"]
    assert engine.allowed_fields("manager", category="financial") == ["financial.*"]


def test_fields_by_category(engine):
    assert engine.fields_by_category("financial") == ["salary", "financial.*"]
    assert engine.fields_by_category("personal") == ["email", "phone"]


# ---------------------------------------------------------------------------
# Columns and tables
# ---------------------------------------------------------------------------


def test_qualified_column_policy_wins(engine):
    assert not engine.check_column_access("users", "ssn", "admin").allowed
    assert engine.check_column_access("orders", "ssn", "admin").allowed


def test_allowed_columns_from_policies(engine):
    assert engine.allowed_columns("users", "guest") == ["nickname"]
    assert engine.allowed_columns("users", "user") == ["email", "phone", "nickname"]
    assert engine.allowed_columns("users", "admin") == [
        "email", "phone", "salary", "department", "nickname",
    ]


def test_allowed_columns_from_candidates(engine):
    assert engine.allowed_columns("users", "user", ["id", "email", "salary"]) == ["id", "email"]


def test_allowed_columns_fallback():
    engine = _engine({"salary": {"minRole": "admin"}})
    assert engine.allowed_columns("users", "user") == ["id", "created_at", "updated_at"]


def test_table_min_role(engine):
    engine.check_table_access("audit_log", "admin")
    with pytest.raises(TableAccessDeniedError) as exc_info:
        engine.check_table_access("audit_log", "manager")
    err = exc_info.value
    assert err.code == "TABLE_ACCESS_DENIED"
    assert err.required_role == "admin"
    assert err.details["operation"] == "SELECT"


def test_table_operations(engine):
    assert engine.has_table_access("reports", "user", "select")
    assert not engine.has_table_access("reports", "admin", "DELETE")
    with pytest.raises(TableAccessDeniedError) as exc_info:
        engine.check_table_access("reports", "admin", "INSERT")
    assert exc_info.value.details["allowed_operations"] == ["SELECT"]


def test_unknown_tables():
    assert _engine({}).has_table_access("anything", "user")
    locked = _engine({}, security={"denyUnknownTables": True})
    assert not locked.has_table_access("anything", "admin")


# ---------------------------------------------------------------------------
# Cache and statistics
# ---------------------------------------------------------------------------


def test_stats_track_cache_hits(engine):
    engine.check_access("email", "user")
    engine.check_access("email", "user")
    stats = engine.stats()
    assert stats.checks == 2
    assert stats.cache_hits == 1
    assert stats.cache_misses == 1
    assert stats.cache_size == 1
    assert stats.hit_rate == 0.5


def test_reset_stats_and_clear_cache(engine):
    engine.check_access("email", "user")
    engine.reset_stats()
    assert engine.stats().checks == 0
    engine.clear_cache()
    assert engine.stats().cache_size == 0


def test_disabled_cache_still_decides():
    engine = _engine({"salary": {"minRole": "admin"}}, performance={"cacheEnabled": False})
    assert not engine.has_field_access("salary", "user")
    assert engine.has_field_access("salary", "admin")
    assert engine.stats().cache_size == 0


def test_decision_cache_evicts_to_newest_half():
    cache = DecisionCache(capacity=4)
    for i in range(5):
        cache.put(f"k{i}", i)
    assert len(cache) == 2
    assert cache.get("k0") is None
    assert cache.get("k3") == 3
    assert cache.get("k4") == 4


def test_decision_cache_rejects_tiny_capacity():
    with pytest.raises(ValueError):
        DecisionCache(capacity=1)


def test_concurrent_checks_agree_with_serial_results():
    fields = {f"field{i}": {"minRole": "admin" if i % 2 else "user"} for i in range(40)}
    engine = _engine(fields, performance={"cacheCapacity": 8})
    jobs = [(f"field{i % 40}", ("user", "manager", "admin")[i % 3]) for i in range(600)]
    expected = [engine.roles.has_permission(role, fields[f]["minRole"]) for f, role in jobs]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda job: engine.has_field_access(*job), jobs))

    assert results == expected
    assert engine.stats().cache_size <= 8
