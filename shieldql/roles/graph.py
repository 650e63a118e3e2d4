"""Role hierarchy resolution.

Roles form a directed graph through their ``inherits`` lists and each carries
a numeric ``level``.  A role is granted a required role when either:

* the required role is reachable from it through ``inherits`` edges (the role
  itself included), or
* some role in that reachable set has a level at least as high as the
  required role's level.

Counting inherited levels as well as the role's own level means that adding
an inheritance edge can only ever widen what a role may see.

Role definitions are immutable once loaded, so the reachable set of every
role is computed once and reused.  The traversal keeps a visited set and is
safe on cyclic input; cycles are *reported* by :meth:`RoleGraph.validate_hierarchy`
rather than raised, so tooling can show every problem at once.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from shieldql.schema.config import Role


@dataclass(frozen=True)
class FlattenedRole:
    """A role with its inheritance resolved.

    Attributes:
        name: Role name.
        level: The role's own level.
        description: Free-form description, if any.
        permissions: Union of the permission tags of the role and every role
            it transitively inherits, in discovery order.
        inherited_roles: Every transitively inherited role name, in discovery
            order (the role itself excluded).
    """

    name: str
    level: int
    description: str | None
    permissions: tuple[str, ...]
    inherited_roles: tuple[str, ...]


@dataclass
class HierarchyReport:
    """Result of :meth:`RoleGraph.validate_hierarchy`.

    Attributes:
        cycles: Each cycle as a path that starts and ends on the same role,
            e.g. ``["admin", "manager", "admin"]``.
        dangling: ``(role, missing_parent)`` pairs for undefined parents.
        warnings: Non-fatal findings such as inheriting a higher-level role.
    """

    cycles: list[list[str]] = field(default_factory=list)
    dangling: list[tuple[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.cycles and not self.dangling

    @property
    def errors(self) -> list[str]:
        """Human-readable messages for every fatal finding."""
        messages = [f"Circular inheritance detected: {' -> '.join(c)}" for c in self.cycles]
        messages.extend(
            f"Role '{role}' inherits from undefined role '{parent}'"
            for role, parent in self.dangling
        )
        return messages


class RoleGraph:
    """Answers "does role U satisfy role R?" for a set of role definitions.

    Args:
        roles: Role definitions keyed by name.
    """

    def __init__(self, roles: Mapping[str, Role]) -> None:
        self._roles: dict[str, Role] = dict(roles)
        self._closures: dict[str, tuple[str, ...]] = {
            name: self._reachable(name) for name in self._roles
        }
        self._effective_levels: dict[str, int] = {
            name: max(self._roles[r].level for r in closure if r in self._roles)
            for name, closure in self._closures.items()
        }

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def roles(self) -> tuple[str, ...]:
        """Defined role names in declaration order."""
        return tuple(self._roles)

    def __contains__(self, role: object) -> bool:
        return role in self._roles

    def get(self, role: str) -> Role | None:
        return self._roles.get(role)

    def level(self, role: str) -> int:
        """Return the declared level of ``role``; undefined roles are level 0."""
        definition = self._roles.get(role)
        return definition.level if definition is not None else 0

    def closure(self, role: str) -> tuple[str, ...]:
        """Return ``role`` followed by every role it transitively inherits.

        An undefined role has no parents, so its closure is just itself.
        """
        return self._closures.get(role, (role,))

    # ------------------------------------------------------------------
    # Permission checks
    # ------------------------------------------------------------------

    def has_permission(self, user_role: str, required_role: str) -> bool:
        """Return ``True`` if ``user_role`` satisfies ``required_role``.

        Args:
            user_role: The acting role.  Undefined roles act as level 0
                with no parents.
            required_role: The role a policy demands.  An undefined required
                role is never satisfied.
        """
        required = self._roles.get(required_role)
        if required is None:
            return False
        if required_role in self.closure(user_role):
            return True
        return self._effective_levels.get(user_role, 0) >= required.level

    def accessible_roles(self, role: str) -> list[str]:
        """Return every defined role that ``role`` satisfies, in declaration order."""
        return [name for name in self._roles if self.has_permission(role, name)]

    def compare_roles(self, first: str, second: str) -> int:
        """Compare two roles by level: ``-1``, ``0`` or ``1``."""
        a, b = self.level(first), self.level(second)
        return (a > b) - (a < b)

    def highest_role(self, roles: Iterable[str]) -> str | None:
        """Return the highest-level role among ``roles``; ties keep the first."""
        best: str | None = None
        for role in roles:
            if best is None or self.level(role) > self.level(best):
                best = role
        return best

    def flatten_role(self, role: str) -> FlattenedRole | None:
        """Resolve ``role``'s inheritance, or ``None`` if it is undefined."""
        definition = self._roles.get(role)
        if definition is None:
            return None

        permissions: list[str] = []
        for name in self.closure(role):
            member = self._roles.get(name)
            if member is None:
                continue
            for permission in member.permissions:
                if permission not in permissions:
                    permissions.append(permission)

        return FlattenedRole(
            name=role,
            level=definition.level,
            description=definition.description,
            permissions=tuple(permissions),
            inherited_roles=self.closure(role)[1:],
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_hierarchy(self) -> HierarchyReport:
        """Report every cycle, dangling reference and level inversion."""
        report = HierarchyReport()

        for name, definition in self._roles.items():
            for parent in definition.inherits:
                parent_def = self._roles.get(parent)
                if parent_def is None:
                    report.dangling.append((name, parent))
                elif parent_def.level > definition.level:
                    report.warnings.append(
                        f"Role '{name}' (level {definition.level}) inherits from "
                        f"higher-level role '{parent}' (level {parent_def.level})"
                    )

        seen: set[tuple[str, ...]] = set()
        acyclic: set[str] = set()
        for name in self._roles:
            if name not in acyclic:
                self._find_cycles([name], report.cycles, seen, acyclic)
        return report

    def _find_cycles(
        self,
        path: list[str],
        cycles: list[list[str]],
        seen: set[tuple[str, ...]],
        acyclic: set[str],
    ) -> bool:
        # Each branch gets its own copy of the path so siblings that share
        # an ancestor are not mistaken for cycles.  Roles from which no cycle
        # is reachable are recorded in ``acyclic`` and never walked again.
        current = self._roles.get(path[-1])
        if current is None:
            return False
        found = False
        for parent in current.inherits:
            if parent in path:
                found = True
                cycle = path[path.index(parent) :] + [parent]
                key = _canonical_cycle(cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(cycle)
            elif parent in self._roles and parent not in acyclic:
                if self._find_cycles(path + [parent], cycles, seen, acyclic):
                    found = True
        if not found:
            acyclic.add(path[-1])
        return found

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reachable(self, role: str) -> tuple[str, ...]:
        order: list[str] = []
        visited: set[str] = set()
        stack = [role]
        while stack:
            name = stack.pop()
            if name in visited:
                continue
            visited.add(name)
            order.append(name)
            definition = self._roles.get(name)
            if definition is not None:
                stack.extend(reversed(definition.inherits))
        return tuple(order)


def _canonical_cycle(cycle: list[str]) -> tuple[str, ...]:
    body = cycle[:-1]
    start = body.index(min(body))
    return tuple(body[start:] + body[:start])
