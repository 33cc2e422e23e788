"""Shared fixtures for RoleKeeper tests."""

from __future__ import annotations

import pytest
import pytest_asyncio

from rolekeeper.audit import AuditRecorder
from rolekeeper.core.models import ConflictResolution, ModulePermission, Role, User
from rolekeeper.core.resolver import PermissionResolver
from rolekeeper.core.service import RoleService
from rolekeeper.rbac import Actor
from rolekeeper.storage.database import Database


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database for each test."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def admin():
    return Actor(id="admin-1", roles=("admin",))


@pytest.fixture
def recorder(db):
    return AuditRecorder(db, enabled=True)


@pytest.fixture
def resolver(db):
    return PermissionResolver(db, max_depth=8)


@pytest.fixture
def service(db, recorder):
    return RoleService(db, recorder, max_depth=8)


@pytest.fixture
def make_role(db):
    """Insert a role straight into the store, bypassing service checks.

    ``permissions`` maps a module name to its granted flags, e.g.
    ``{"content": {"read": True}}``.
    """

    async def _make(
        name,
        permissions=None,
        parent=None,
        inherit=True,
        strategy=ConflictResolution.MERGE,
        **fields,
    ):
        parent_id = parent.id if isinstance(parent, Role) else parent
        role = Role(
            name=name,
            description=f"{name} role",
            parent_role_id=parent_id,
            permissions=[
                ModulePermission(module=module, **flags)
                for module, flags in (permissions or {}).items()
            ],
            inherit_permissions=inherit,
            conflict_resolution=strategy,
            **fields,
        )
        return await db.insert_role(role)

    return _make


@pytest.fixture
def make_user(db):
    async def _make(username, roles=()):
        user = User(username=username, assigned_roles=[r.id for r in roles])
        return await db.insert_user(user)

    return _make
