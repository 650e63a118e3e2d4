"""shieldQL policy layer: access decisions and data filtering."""
from shieldql.policy.decision import (
    AccessDecision,
    AccessReason,
    EngineStats,
    FilteredField,
    FilterReport,
    FilterResult,
)
from shieldql.policy.engine import PolicyEngine

__all__ = [
    "AccessDecision",
    "AccessReason",
    "EngineStats",
    "FilteredField",
    "FilterReport",
    "FilterResult",
    "PolicyEngine",
]
