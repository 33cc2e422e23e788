"""Tests for user-level permission aggregation."""

from __future__ import annotations

from uuid import uuid4

import pytest

from rolekeeper.core.aggregator import UserPermissionAggregator
from rolekeeper.core.models import ConflictResolution, Module, PermissionAction, PermissionFlags
from rolekeeper.exceptions import NotFoundError, ValidationError


@pytest.fixture
def aggregator(db, resolver):
    return UserPermissionAggregator(db, resolver)


class TestResolveUserPermissions:
    async def test_roles_are_ored_together(self, aggregator, make_role, make_user):
        reader = await make_role("Reader", {"content": {"read": True}})
        writer = await make_role("Writer", {"content": {"write": True}, "reports": {"read": True}})
        user = await make_user("alice", roles=[reader, writer])

        result = await aggregator.resolve_user_permissions(user.id)
        assert result == {
            Module.CONTENT: PermissionFlags(read=True, write=True),
            Module.REPORTS: PermissionFlags(read=True),
        }

    async def test_override_inside_chain_does_not_narrow_other_roles(
        self, aggregator, make_role, make_user
    ):
        base = await make_role("Base", {"content": {"read": True, "delete": True}})
        narrowed = await make_role(
            "Narrowed",
            {"content": {"write": True}},
            parent=base,
            strategy=ConflictResolution.OVERRIDE,
        )
        user = await make_user("bob", roles=[narrowed, base])

        result = await aggregator.resolve_user_permissions(user.id)
        assert result[Module.CONTENT] == PermissionFlags(read=True, write=True, delete=True)

    async def test_user_without_roles(self, aggregator, make_user):
        user = await make_user("nobody")
        assert await aggregator.resolve_user_permissions(user.id) == {}

    async def test_unknown_user(self, aggregator):
        with pytest.raises(NotFoundError):
            await aggregator.resolve_user_permissions(uuid4())

    async def test_dangling_assignment_skipped(self, db, aggregator, make_role, make_user):
        kept = await make_role("Kept", {"users": {"read": True}})
        gone = await make_role("Gone", {"billing": {"admin": True}})
        user = await make_user("carol", roles=[kept, gone])
        await db.delete_role(gone.id)

        result = await aggregator.resolve_user_permissions(user.id)
        assert result == {Module.USERS: PermissionFlags(read=True)}


class TestHasPermission:
    async def test_granted_and_denied(self, aggregator, make_role, make_user):
        role = await make_role("Editor", {"content": {"read": True, "write": True}})
        user = await make_user("dave", roles=[role])

        assert await aggregator.has_permission(user.id, Module.CONTENT, PermissionAction.WRITE)
        assert not await aggregator.has_permission(
            user.id, Module.CONTENT, PermissionAction.DELETE
        )

    async def test_absent_module_is_false(self, aggregator, make_role, make_user):
        role = await make_role("Editor", {"content": {"read": True}})
        user = await make_user("erin", roles=[role])
        assert not await aggregator.has_permission(user.id, Module.BILLING, PermissionAction.READ)

    async def test_accepts_plain_strings(self, aggregator, make_role, make_user):
        role = await make_role("Analyst", {"analytics": {"read": True}})
        user = await make_user("frank", roles=[role])
        assert await aggregator.has_permission(user.id, "analytics", "read")

    async def test_inherited_grant_counts(self, aggregator, make_role, make_user):
        parent = await make_role("Parent", {"settings": {"admin": True}})
        child = await make_role("Child", {"content": {"read": True}}, parent=parent)
        user = await make_user("grace", roles=[child])
        assert await aggregator.has_permission(user.id, "settings", "admin")

    @pytest.mark.parametrize("module,action", [("inventory", "read"), ("content", "execute")])
    async def test_invalid_names_rejected(self, aggregator, make_user, module, action):
        user = await make_user("henry")
        with pytest.raises(ValidationError):
            await aggregator.has_permission(user.id, module, action)

    async def test_unknown_user(self, aggregator):
        with pytest.raises(NotFoundError):
            await aggregator.has_permission(uuid4(), "content", "read")
