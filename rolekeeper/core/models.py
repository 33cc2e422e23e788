"""Domain models for role hierarchies and effective permissions.

- Module / PermissionFlags: the four-flag capability tuple per resource domain
- Role: a node in the parent-role chain with its own permission entries
- User: holder of any number of role assignments
- RoleCreate / RoleUpdate: explicit, field-enumerated mutation commands
- ComparisonResult: structural diff between two resolved roles
- AuditEvent: record of one administrative action
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> UUID:
    return uuid4()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Module(str, Enum):
    USERS = "users"
    ROLES = "roles"
    CONTENT = "content"
    SETTINGS = "settings"
    REPORTS = "reports"
    ANALYTICS = "analytics"
    BILLING = "billing"
    SUPPORT = "support"


class PermissionAction(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    ADMIN = "admin"


class ConflictResolution(str, Enum):
    """How a role's own entries combine with the ones inherited from its parent."""

    MERGE = "merge"
    OVERRIDE = "override"
    INHERIT = "inherit"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"


class AuditAction(str, Enum):
    ROLE_CREATED = "ROLE_CREATED"
    ROLE_UPDATED = "ROLE_UPDATED"
    ROLE_DELETED = "ROLE_DELETED"
    PERMISSION_ADDED = "PERMISSION_ADDED"
    PERMISSION_REMOVED = "PERMISSION_REMOVED"
    PERMISSION_MODIFIED = "PERMISSION_MODIFIED"
    USER_ASSIGNED = "USER_ASSIGNED"
    USER_REMOVED = "USER_REMOVED"
    BULK_ASSIGNMENT = "BULK_ASSIGNMENT"
    ROLE_COMPARED = "ROLE_COMPARED"
    NOTIFICATION_CHANGED = "NOTIFICATION_CHANGED"
    AUDIT_CONFIG_CHANGED = "AUDIT_CONFIG_CHANGED"


class AuditEntityType(str, Enum):
    ROLE = "Role"
    USER = "User"
    PERMISSION = "Permission"


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class PermissionFlags(BaseModel):
    """The (read, write, delete, admin) capability tuple for one module."""

    model_config = ConfigDict(frozen=True)

    read: bool = False
    write: bool = False
    delete: bool = False
    admin: bool = False

    def as_tuple(self) -> tuple[bool, bool, bool, bool]:
        return (self.read, self.write, self.delete, self.admin)

    def union(self, other: PermissionFlags) -> PermissionFlags:
        """Flag-wise logical OR."""
        return PermissionFlags(
            read=self.read or other.read,
            write=self.write or other.write,
            delete=self.delete or other.delete,
            admin=self.admin or other.admin,
        )

    def allows(self, action: PermissionAction) -> bool:
        return getattr(self, action.value)

    def flags(self) -> PermissionFlags:
        """Return the bare flags, dropping any subclass fields."""
        return PermissionFlags(
            read=self.read, write=self.write, delete=self.delete, admin=self.admin
        )


#: Flags of a module a role does not mention.
NO_PERMISSIONS = PermissionFlags()


class ModulePermission(PermissionFlags):
    """One persisted permission entry: flags bound to a module."""

    module: Module


#: Resolved permissions, keyed by module in resolution order.
EffectivePermissions = dict[Module, PermissionFlags]


def _unique_modules(permissions: list[ModulePermission]) -> list[ModulePermission]:
    seen: set[Module] = set()
    for perm in permissions:
        if perm.module in seen:
            msg = f"Duplicate permission entry for module '{perm.module.value}'"
            raise ValueError(msg)
        seen.add(perm.module)
    return permissions


def permission_map(permissions: list[ModulePermission]) -> EffectivePermissions:
    return {perm.module: perm.flags() for perm in permissions}


# ---------------------------------------------------------------------------
# Role settings carried over from the admin wizard
# ---------------------------------------------------------------------------


class NotificationSettings(BaseModel):
    on_user_assigned: bool = True
    on_permission_changed: bool = True
    on_role_modified: bool = True
    on_user_removed: bool = False


class AuditConfiguration(BaseModel):
    enabled: bool = True
    log_permission_changes: bool = True
    log_user_assignments: bool = True
    log_role_modifications: bool = True
    retention_days: int = Field(default=90, ge=1)


# ---------------------------------------------------------------------------
# Role and User
# ---------------------------------------------------------------------------


class Role(BaseModel):
    """A role in the hierarchy.

    ``parent_role_id`` is a weak reference: the parent is looked up through
    the role store on every resolution, never held as an object.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=_new_id)
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    parent_role_id: UUID | None = None
    permissions: list[ModulePermission] = Field(default_factory=list)
    inherit_permissions: bool = True
    conflict_resolution: ConflictResolution = ConflictResolution.MERGE
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    audit_configuration: AuditConfiguration = Field(default_factory=AuditConfiguration)
    is_active: bool = True
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = Field(default=1, ge=1, description="Optimistic concurrency token")

    @field_validator("permissions")
    @classmethod
    def check_permissions(cls, v: list[ModulePermission]) -> list[ModulePermission]:
        return _unique_modules(v)

    def permission_map(self) -> EffectivePermissions:
        """The role's own entries as a module mapping (no inheritance)."""
        return permission_map(self.permissions)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe view used for audit before/after records."""
        return self.model_dump(mode="json")


class User(BaseModel):
    """A platform user and the roles assigned to them."""

    id: UUID = Field(default_factory=_new_id)
    username: str = Field(min_length=1)
    email: str | None = None
    is_active: bool = True
    assigned_roles: list[UUID] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    """Fields accepted when creating a role."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    parent_role_id: UUID | None = None
    permissions: list[ModulePermission] = Field(default_factory=list)
    inherit_permissions: bool = True
    conflict_resolution: ConflictResolution = ConflictResolution.MERGE
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    audit_configuration: AuditConfiguration = Field(default_factory=AuditConfiguration)
    is_active: bool = True

    @field_validator("permissions")
    @classmethod
    def check_permissions(cls, v: list[ModulePermission]) -> list[ModulePermission]:
        return _unique_modules(v)


class RoleUpdate(BaseModel):
    """Fields an administrator may change on an existing role.

    ``name``, ``id``, ``created_by`` and ``version`` are deliberately absent:
    unknown keys are rejected. Only fields explicitly provided are applied,
    so ``parent_role_id=None`` clears the parent while omitting it keeps it.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    description: str | None = Field(default=None, min_length=1, max_length=500)
    parent_role_id: UUID | None = None
    permissions: list[ModulePermission] | None = None
    inherit_permissions: bool | None = None
    conflict_resolution: ConflictResolution | None = None
    notification_settings: NotificationSettings | None = None
    audit_configuration: AuditConfiguration | None = None
    is_active: bool | None = None
    expected_version: int | None = Field(
        default=None, ge=1, description="Version the caller last read; rejects stale writes"
    )

    @field_validator("permissions")
    @classmethod
    def check_permissions(
        cls, v: list[ModulePermission] | None
    ) -> list[ModulePermission] | None:
        return _unique_modules(v) if v is not None else v

    def changes(self) -> dict[str, Any]:
        """Explicitly set fields, ready to overlay on a role dump."""
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class RoleSnapshot(BaseModel):
    id: UUID
    name: str
    permissions: EffectivePermissions


class PermissionDifference(BaseModel):
    module: Module
    role1: PermissionFlags
    role2: PermissionFlags


class ComparisonResult(BaseModel):
    role1: RoleSnapshot
    role2: RoleSnapshot
    differences: list[PermissionDifference] = Field(default_factory=list)

    @property
    def identical(self) -> bool:
        return not self.differences


class AssignmentResult(BaseModel):
    status: AssignmentStatus
    user: User

    @property
    def already_assigned(self) -> bool:
        return self.status is AssignmentStatus.ALREADY_ASSIGNED


class AuditEvent(BaseModel):
    """One administrative action, as persisted in the audit log."""

    id: UUID = Field(default_factory=_new_id)
    action: AuditAction
    entity_type: AuditEntityType
    entity_id: str
    performed_by: str
    target_user: str | None = None
    target_role: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
