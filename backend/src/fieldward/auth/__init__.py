"""Role hierarchy and field-level access control for fieldward."""

from fieldward.auth.roles import (
    ChainedRoleSource,
    DatabaseRoleSource,
    RoleHierarchy,
    RoleHierarchyService,
    RoleRecord,
    RoleSource,
    StaticRoleSource,
    YamlRoleSource,
)
from fieldward.auth.field_access import (
    FieldAccessController,
    omit_fields,
    pick_fields,
)

__all__ = [
    "ChainedRoleSource",
    "DatabaseRoleSource",
    "RoleHierarchy",
    "RoleHierarchyService",
    "RoleRecord",
    "RoleSource",
    "StaticRoleSource",
    "YamlRoleSource",
    "FieldAccessController",
    "omit_fields",
    "pick_fields",
]
