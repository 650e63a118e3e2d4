"""Unit tests for field-pattern matching and pattern syntax validation."""

from __future__ import annotations

import re

import pytest

from shieldql.match.patterns import (
    PatternKind,
    PatternMatcher,
    classify_pattern,
    compile_pattern,
    enumerate_field_paths,
    extract_fields,
    match_first,
    matches,
    normalize_pattern,
    pattern_complexity,
    validate_pattern_syntax,
)

# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("pattern", "kind"),
    [
        ("user.email", PatternKind.EXACT),
        ("/^user\\./", PatternKind.REGEX),
        ("financial.*", PatternKind.WILDCARD),
        ("financial.**", PatternKind.WILDCARD),
        ("items[].price", PatternKind.ARRAY_INDEX),
        ("items[*].price", PatternKind.WILDCARD),
        ("/", PatternKind.EXACT),
    ],
)
def test_classify_pattern(pattern, kind):
    assert classify_pattern(pattern) is kind


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def test_single_star_stays_within_one_segment():
    assert matches("financial.bonus", "financial.*")
    assert not matches("financial.tax.rate", "financial.*")


def test_double_star_crosses_segments():
    assert matches("financial.bonus", "financial.**")
    assert matches("financial.tax.rate", "financial.**")


def test_exact_pattern_matches_only_itself():
    assert matches("user.email", "user.email")
    assert not matches("user.emails", "user.email")
    assert not matches("admin.user.email", "user.email")


def test_literal_equality_wins_over_markers():
    assert matches("a.*", "a.*")
    assert matches("items[]", "items[]")


def test_dot_is_literal_in_wildcard_patterns():
    assert not matches("aXb", "a.*")
    assert matches("a.b", "a.*")


def test_bare_star_matches_top_level_names_only():
    assert matches("name", "*")
    assert not matches("user.name", "*")
    assert matches("user.name", "**")


def test_leading_star_segment():
    assert matches("user.password", "*.password")
    assert not matches("password", "*.password")
    assert not matches("a.b.password", "*.password")


def test_regex_pattern_uses_search_semantics():
    assert matches("api_secret", "/.*_secret$/")
    assert matches("config.db.password", "/password/")
    assert not matches("secret_api", "/_secret$/")


def test_array_index_pattern():
    assert matches("items.0.price", "items[].price")
    assert matches("items.12.price", "items[].price")
    assert not matches("items.first.price", "items[].price")
    assert not matches("items.price", "items[].price")


def test_array_wildcard_pattern():
    assert matches("items.0.price", "items[*].price")
    assert matches("items.first.price", "items[*].price")
    assert not matches("items.a.b.price", "items[*].price")


def test_leading_array_token():
    assert matches("0.name", "[].name")
    assert matches("first.name", "[*].name")
    assert not matches("x.name", "[].name")


def test_compile_pattern_is_memoized():
    assert compile_pattern("orders[].total") is compile_pattern("orders[].total")


def test_compile_pattern_rejects_bad_regex():
    with pytest.raises(re.error):
        compile_pattern("/(unclosed/")


def test_match_first_follows_declared_order():
    assert match_first("salary", ["*", "salary"]) == "*"
    assert match_first("salary", ["salary", "*"]) == "salary"
    assert match_first("salary", ["email"]) is None


def test_pattern_matcher_order_and_all_matches():
    matcher = PatternMatcher(["user.*", "user.email", "**"])
    assert len(matcher) == 3
    assert matcher.patterns == ["user.*", "user.email", "**"]
    assert matcher.first_match("user.email") == "user.*"
    assert matcher.all_matches("user.email") == ["user.*", "user.email", "**"]
    assert matcher.first_match("order.id") == "**"
    assert PatternMatcher([]).first_match("anything") is None


# ---------------------------------------------------------------------------
# Syntax validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "pattern",
    ["email", "financial.*", "financial.**", "items[].price", "items[*].id", "/^a/"],
)
def test_valid_patterns(pattern):
    result = validate_pattern_syntax(pattern)
    assert result.valid
    assert result.errors == ()


@pytest.mark.parametrize(
    ("pattern", "message"),
    [
        ("", "Pattern cannot be empty"),
        ("   ", "Pattern cannot be empty"),
        ("//", "Regular expression pattern cannot be empty"),
        ("/(/", "Invalid regex pattern"),
        ("a.***", "Triple asterisk (***) is not supported"),
        ("items[[]]", "Nested brackets are not supported"),
        ("items].x", "Unmatched ']' in array pattern"),
        ("items[.x", "Unmatched '[' in array pattern"),
        ("items[0].x", "Unsupported array selector '[0]'"),
    ],
)
def test_invalid_patterns_report_errors(pattern, message):
    result = validate_pattern_syntax(pattern)
    assert not result.valid
    assert any(message in error for error in result.errors)


def test_validation_reports_every_problem():
    result = validate_pattern_syntax("a.***[x")
    assert "Triple asterisk (***) is not supported" in result.errors
    assert "Unmatched '[' in array pattern" in result.errors


# ---------------------------------------------------------------------------
# Data traversal and helpers
# ---------------------------------------------------------------------------

NESTED = {
    "a": 1,
    "b": {"c": 2, "d": [10, {"e": 3}]},
    "f": {},
    "g": [],
}


def test_enumerate_field_paths():
    assert enumerate_field_paths(NESTED) == ["a", "b.c", "b.d.0", "b.d.1.e", "f", "g"]


def test_enumerate_field_paths_top_level_list():
    assert enumerate_field_paths([{"x": 1}, {"y": {"z": 2}}]) == ["0.x", "1.y.z"]


def test_enumerate_field_paths_scalar():
    assert enumerate_field_paths("plain") == []


def test_extract_fields():
    assert extract_fields(NESTED, "b.**") == ["b.c", "b.d.0", "b.d.1.e"]
    assert extract_fields(NESTED, "b.d[]") == ["b.d.0"]


def test_normalize_pattern():
    assert normalize_pattern("  User . Email ") == "user.email"


def test_pattern_complexity_is_bounded():
    assert pattern_complexity("name") == 1
    assert pattern_complexity("/^name$/") > pattern_complexity("name.*")
    assert pattern_complexity("/" + "*" * 20 + "/") == 10
