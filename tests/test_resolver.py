"""Tests for effective-permission resolution through the parent chain."""

from __future__ import annotations

from uuid import uuid4

import pytest

from rolekeeper.core.models import ConflictResolution, Module, PermissionFlags
from rolekeeper.core.resolver import CONFLICT_RULES, PermissionResolver, merge_permissions
from rolekeeper.exceptions import CycleDetectedError, NotFoundError, RoleDepthExceededError

FLAGS = ("read", "write", "delete", "admin")


def flags(**kw):
    return PermissionFlags(**kw)


# ---------------------------------------------------------------------------
# Pure merge rules
# ---------------------------------------------------------------------------


class TestMergePermissions:
    def test_every_strategy_has_a_rule(self):
        assert set(CONFLICT_RULES) == set(ConflictResolution)

    @pytest.mark.parametrize("flag", FLAGS)
    @pytest.mark.parametrize("parent_on", [True, False])
    @pytest.mark.parametrize("child_on", [True, False])
    def test_merge_is_flagwise_or(self, flag, parent_on, child_on):
        parent = {Module.CONTENT: flags(**{flag: parent_on})}
        child = {Module.CONTENT: flags(**{flag: child_on})}
        merged = merge_permissions(parent, child, ConflictResolution.MERGE)
        assert getattr(merged[Module.CONTENT], flag) is (parent_on or child_on)

    def test_override_takes_child_exactly(self):
        parent = {Module.CONTENT: flags(read=True, admin=True)}
        child = {Module.CONTENT: flags(write=True)}
        merged = merge_permissions(parent, child, ConflictResolution.OVERRIDE)
        assert merged[Module.CONTENT] == flags(write=True)

    def test_inherit_keeps_parent_exactly(self):
        parent = {Module.CONTENT: flags(read=True)}
        child = {Module.CONTENT: flags(write=True, delete=True)}
        merged = merge_permissions(parent, child, ConflictResolution.INHERIT)
        assert merged[Module.CONTENT] == flags(read=True)

    @pytest.mark.parametrize("strategy", list(ConflictResolution))
    def test_unshared_modules_carried_through(self, strategy):
        parent = {Module.USERS: flags(read=True)}
        child = {Module.BILLING: flags(write=True)}
        merged = merge_permissions(parent, child, strategy)
        assert merged == {Module.USERS: flags(read=True), Module.BILLING: flags(write=True)}

    def test_parent_modules_come_first(self):
        parent = {Module.REPORTS: flags(read=True), Module.USERS: flags(read=True)}
        child = {Module.ANALYTICS: flags(read=True), Module.USERS: flags(write=True)}
        merged = merge_permissions(parent, child, ConflictResolution.MERGE)
        assert list(merged) == [Module.REPORTS, Module.USERS, Module.ANALYTICS]

    def test_inputs_not_mutated(self):
        parent = {Module.CONTENT: flags(read=True)}
        child = {Module.CONTENT: flags(write=True)}
        merge_permissions(parent, child, ConflictResolution.OVERRIDE)
        assert parent == {Module.CONTENT: flags(read=True)}


# ---------------------------------------------------------------------------
# Store-backed resolution
# ---------------------------------------------------------------------------


class TestResolveEffective:
    @pytest.mark.parametrize(
        "strategy,expected",
        [
            (ConflictResolution.MERGE, flags(read=True, write=True)),
            (ConflictResolution.OVERRIDE, flags(write=True)),
            (ConflictResolution.INHERIT, flags(read=True)),
        ],
    )
    async def test_content_scenarios(self, resolver, make_role, strategy, expected):
        role_a = await make_role("RoleA", {"content": {"read": True}})
        role_b = await make_role(
            "RoleB", {"content": {"write": True}}, parent=role_a, strategy=strategy
        )
        result = await resolver.resolve_effective(role_b.id)
        assert result == {Module.CONTENT: expected}

    async def test_role_without_parent_returns_own(self, resolver, make_role):
        role = await make_role("Solo", {"reports": {"read": True}, "support": {"write": True}})
        result = await resolver.resolve_effective(role.id)
        assert result == {
            Module.REPORTS: flags(read=True),
            Module.SUPPORT: flags(write=True),
        }

    async def test_non_inheriting_role_ignores_parent(self, resolver, make_role):
        parent = await make_role("Parent", {"billing": {"admin": True}})
        child = await make_role("Child", {"content": {"read": True}}, parent=parent, inherit=False)
        result = await resolver.resolve_effective(child.id)
        assert result == {Module.CONTENT: flags(read=True)}

    async def test_inherit_adds_child_only_modules(self, resolver, make_role):
        parent = await make_role("Parent", {"content": {"read": True}})
        child = await make_role(
            "Child",
            {"content": {"write": True}, "analytics": {"read": True}},
            parent=parent,
            strategy=ConflictResolution.INHERIT,
        )
        result = await resolver.resolve_effective(child.id)
        assert result == {
            Module.CONTENT: flags(read=True),
            Module.ANALYTICS: flags(read=True),
        }

    async def test_three_level_chain(self, resolver, make_role):
        base = await make_role("Base", {"content": {"read": True}, "reports": {"read": True}})
        mid = await make_role(
            "Mid",
            {"content": {"write": True}},
            parent=base,
            strategy=ConflictResolution.OVERRIDE,
        )
        top = await make_role("Top", {"reports": {"delete": True}}, parent=mid)
        result = await resolver.resolve_effective(top.id)
        assert result == {
            Module.CONTENT: flags(write=True),
            Module.REPORTS: flags(read=True, delete=True),
        }

    async def test_child_strategy_governs_not_parent(self, resolver, make_role):
        grandparent = await make_role("GP", {"content": {"read": True}})
        parent = await make_role(
            "P",
            {"content": {"write": True}},
            parent=grandparent,
            strategy=ConflictResolution.INHERIT,
        )
        child = await make_role(
            "C", {"content": {"delete": True}}, parent=parent, strategy=ConflictResolution.MERGE
        )
        result = await resolver.resolve_effective(child.id)
        assert result == {Module.CONTENT: flags(read=True, delete=True)}

    async def test_resolution_is_idempotent(self, resolver, make_role):
        parent = await make_role("Parent", {"content": {"read": True}, "users": {"read": True}})
        child = await make_role("Child", {"content": {"write": True}}, parent=parent)
        first = await resolver.resolve_effective(child.id)
        second = await resolver.resolve_effective(child.id)
        assert first == second
        assert list(first) == list(second)

    async def test_unknown_role_raises(self, resolver):
        with pytest.raises(NotFoundError):
            await resolver.resolve_effective(uuid4())

    async def test_missing_parent_resolves_without_it(self, resolver, make_role):
        child = await make_role("Orphan", {"content": {"read": True}}, parent=uuid4())
        result = await resolver.resolve_effective(child.id)
        assert result == {Module.CONTENT: flags(read=True)}


class TestChainBounds:
    async def test_cycle_in_stored_chain_detected(self, resolver, make_role):
        a_id = uuid4()
        b = await make_role("B", {"content": {"read": True}}, parent=a_id)
        await make_role("A", {"users": {"read": True}}, parent=b, id=a_id)
        with pytest.raises(CycleDetectedError) as exc_info:
            await resolver.resolve_effective(a_id)
        assert exc_info.value.chain[0] == exc_info.value.chain[-1] == str(a_id)

    async def test_self_parent_detected(self, resolver, make_role):
        role_id = uuid4()
        await make_role("Loop", parent=role_id, id=role_id)
        with pytest.raises(CycleDetectedError):
            await resolver.resolve_effective(role_id)

    async def test_cycle_ignored_when_inheritance_off(self, resolver, make_role):
        a_id = uuid4()
        b = await make_role("B", parent=a_id)
        await make_role("A", {"users": {"read": True}}, parent=b, id=a_id, inherit=False)
        assert await resolver.resolve_effective(a_id) == {Module.USERS: flags(read=True)}

    async def test_depth_bound(self, db, make_role):
        resolver = PermissionResolver(db, max_depth=3)
        role = None
        for i in range(4):
            role = await make_role(f"Level{i}", {"content": {"read": True}}, parent=role)
        with pytest.raises(RoleDepthExceededError):
            await resolver.resolve_effective(role.id)

    async def test_chain_at_max_depth_resolves(self, db, make_role):
        resolver = PermissionResolver(db, max_depth=3)
        role = None
        for i in range(3):
            role = await make_role(f"Level{i}", {"content": {"read": True}}, parent=role)
        assert await resolver.resolve_effective(role.id) == {Module.CONTENT: flags(read=True)}

    async def test_ancestor_ids(self, resolver, make_role):
        a = await make_role("A")
        b = await make_role("B", parent=a)
        c = await make_role("C", parent=b)
        assert await resolver.ancestor_ids(c.id) == [c.id, b.id, a.id]
        assert await resolver.ancestor_ids(None) == []
