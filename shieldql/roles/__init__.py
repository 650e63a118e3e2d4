"""shieldQL role hierarchy."""
from shieldql.roles.graph import FlattenedRole, HierarchyReport, RoleGraph

__all__ = ["FlattenedRole", "HierarchyReport", "RoleGraph"]
