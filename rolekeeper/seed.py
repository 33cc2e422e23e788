"""Sample role catalogue for demos and local development.

Creates the five stock roles of the admin console (Senior Manager inherits
from Manager), an administrator account holding Super Admin, and three
test users. Existing roles and users are left alone, so seeding twice is
harmless.
"""

from __future__ import annotations

import logging
from typing import Any

from rolekeeper.core.models import Role, RoleCreate, User
from rolekeeper.core.service import RoleService
from rolekeeper.rbac import Actor, PlatformRole
from rolekeeper.storage.database import Database

logger = logging.getLogger("rolekeeper.seed")

SEED_ACTOR = Actor(id="seed", roles=(PlatformRole.ADMIN,))


def _perm(
    module: str,
    read: bool = False,
    write: bool = False,
    delete: bool = False,
    admin: bool = False,
) -> dict[str, Any]:
    return {"module": module, "read": read, "write": write, "delete": delete, "admin": admin}


SAMPLE_ROLES: list[dict[str, Any]] = [
    {
        "name": "Basic User",
        "description": "Standard user with read-only access to most modules",
        "permissions": [_perm("content", read=True), _perm("reports", read=True)],
        "inherit_permissions": False,
        "notification_settings": {"on_permission_changed": False, "on_role_modified": False},
        "audit_configuration": {"log_role_modifications": False, "retention_days": 30},
    },
    {
        "name": "Content Editor",
        "description": "Can create and edit content",
        "permissions": [
            _perm("content", read=True, write=True),
            _perm("reports", read=True),
            _perm("analytics", read=True),
        ],
        "inherit_permissions": False,
        "notification_settings": {"on_role_modified": False},
        "audit_configuration": {"retention_days": 60},
    },
    {
        "name": "Manager",
        "description": "Department manager with extended permissions",
        "permissions": [
            _perm("users", read=True, write=True),
            _perm("content", read=True, write=True, delete=True),
            _perm("reports", read=True, write=True),
            _perm("analytics", read=True, write=True),
        ],
        "inherit_permissions": False,
        "notification_settings": {"on_user_removed": True},
    },
    {
        "name": "Senior Manager",
        "description": "Senior manager with additional permissions, inherits from Manager",
        "parent": "Manager",
        "permissions": [
            _perm("users", read=True, write=True, delete=True),
            _perm("billing", read=True, write=True),
            _perm("settings", read=True, write=True),
        ],
        "inherit_permissions": True,
        "conflict_resolution": "merge",
        "notification_settings": {"on_user_removed": True},
    },
    {
        "name": "Super Admin",
        "description": "Full administrative access to all modules",
        "permissions": [
            _perm(m, read=True, write=True, delete=True, admin=True)
            for m in (
                "users", "roles", "content", "settings",
                "reports", "analytics", "billing", "support",
            )
        ],
        "inherit_permissions": False,
        "conflict_resolution": "override",
        "notification_settings": {"on_user_removed": True},
        "audit_configuration": {"retention_days": 365},
    },
]

SAMPLE_USERS: list[tuple[str, str, str]] = [
    ("admin", "admin@admin.com", "Super Admin"),
    ("john_editor", "john@test.com", "Content Editor"),
    ("jane_manager", "jane@test.com", "Manager"),
    ("bob_user", "bob@test.com", "Basic User"),
]


async def seed_database(db: Database, service: RoleService) -> dict[str, Role]:
    """Create any missing sample roles and users. Returns roles by name."""
    roles: dict[str, Role] = {}
    for entry in SAMPLE_ROLES:
        entry = dict(entry)
        parent_name = entry.pop("parent", None)
        existing = await db.find_role_by_name(entry["name"])
        if existing is not None:
            roles[existing.name] = existing
            logger.info("Role %s already exists", existing.name)
            continue
        if parent_name:
            entry["parent_role_id"] = roles[parent_name].id
        role = await service.create_role(RoleCreate.model_validate(entry), SEED_ACTOR)
        roles[role.name] = role

    for username, email, role_name in SAMPLE_USERS:
        if await db.find_user_by_username(username) is not None:
            logger.info("User %s already exists", username)
            continue
        user = await db.insert_user(User(username=username, email=email))
        await service.assign_role_to_user(roles[role_name].id, user.id, SEED_ACTOR)
        logger.info("Created user %s with role %s", username, role_name)

    return roles
