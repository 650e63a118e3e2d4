"""Value objects produced by the policy engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AccessReason(str, Enum):
    """Why an access decision came out the way it did."""

    NO_CONFIGURATION = "no_configuration"
    EXPLICITLY_DENIED = "explicitly_denied"
    SUFFICIENT_ROLE = "sufficient_role"
    INSUFFICIENT_ROLE = "insufficient_role"
    CONDITION_PASSED = "condition_passed"
    CONDITION_FAILED = "condition_failed"
    NO_RESTRICTIONS = "no_restrictions"


@dataclass(frozen=True)
class AccessDecision:
    """The outcome of evaluating one field for one role.

    Attributes:
        field: Field path that was checked.
        role: Acting role.
        allowed: The verdict.
        reason: Why.
        policy_pattern: Key of the policy that decided, if any.
        required_role: The policy's ``min_role``, if any.
        user_level: Level of the acting role.
        required_level: Level of ``required_role``, if any.
    """

    field: str
    role: str
    allowed: bool
    reason: AccessReason
    policy_pattern: str | None = None
    required_role: str | None = None
    user_level: int = 0
    required_level: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "role": self.role,
            "allowed": self.allowed,
            "reason": self.reason.value,
            "policy_pattern": self.policy_pattern,
            "required_role": self.required_role,
            "user_level": self.user_level,
            "required_level": self.required_level,
        }


@dataclass(frozen=True)
class FilteredField:
    """A field removed by :meth:`PolicyEngine.filter`.

    ``field`` is the path with sequence indices written as ``[]``
    (``orders[].cost``), so one entry stands for every element.
    """

    field: str
    reason: AccessReason
    required_role: str | None = None
    required_level: int | None = None
    user_level: int = 0


@dataclass
class FilterReport:
    """Bookkeeping for one :meth:`PolicyEngine.filter` call.

    Attributes:
        role: Acting role.
        total_fields: Distinct field paths seen (indices collapsed to ``[]``).
        allowed_fields: How many of them were kept somewhere in the output.
        filtered_fields: One entry per distinct removed field path.
        items_processed: Top-level sequence items processed (1 for a mapping).
        elapsed_ms: Wall-clock time spent filtering.
    """

    role: str
    total_fields: int = 0
    allowed_fields: int = 0
    filtered_fields: list[FilteredField] = field(default_factory=list)
    items_processed: int = 0
    elapsed_ms: float = 0.0

    @property
    def filtered_count(self) -> int:
        return len(self.filtered_fields)


@dataclass
class FilterResult:
    """Filtered data plus its :class:`FilterReport`."""

    data: Any
    report: FilterReport


@dataclass(frozen=True)
class EngineStats:
    """Counters snapshot returned by :meth:`PolicyEngine.stats`."""

    checks: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_size: int = 0
    cache_capacity: int = 0
    filters: int = 0
    items_filtered: int = 0
    fields_removed: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0
