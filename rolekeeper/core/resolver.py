"""Effective-permission resolution over the parent-role chain.

A role's effective permissions are its own entries merged on top of its
parent's effective permissions, recursively, using the role's
``conflict_resolution`` strategy:

    override -- on a shared module the child's flags replace the parent's
    merge    -- on a shared module each flag is parent OR child
    inherit  -- on a shared module the parent's flags are kept

Modules present on only one side are always carried through. Parents are
fetched from the role store by id on every call; a visited set and a depth
counter bound the walk so a corrupted chain fails instead of recursing
forever.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from uuid import UUID

from rolekeeper.core.models import (
    ConflictResolution,
    EffectivePermissions,
    PermissionFlags,
    Role,
)
from rolekeeper.exceptions import CycleDetectedError, NotFoundError, RoleDepthExceededError
from rolekeeper.storage.base import RoleStore

logger = logging.getLogger("rolekeeper.resolver")

ConflictRule = Callable[[PermissionFlags, PermissionFlags], PermissionFlags]


def _override(parent: PermissionFlags, child: PermissionFlags) -> PermissionFlags:
    return child


def _merge(parent: PermissionFlags, child: PermissionFlags) -> PermissionFlags:
    return parent.union(child)


def _inherit(parent: PermissionFlags, child: PermissionFlags) -> PermissionFlags:
    return parent


#: Per-module conflict rule for each strategy.
CONFLICT_RULES: dict[ConflictResolution, ConflictRule] = {
    ConflictResolution.OVERRIDE: _override,
    ConflictResolution.MERGE: _merge,
    ConflictResolution.INHERIT: _inherit,
}

_missing = set(ConflictResolution) - set(CONFLICT_RULES)
if _missing:  # pragma: no cover - guards new enum members
    raise RuntimeError(f"No conflict rule for strategies: {sorted(s.value for s in _missing)}")


def merge_permissions(
    parent: EffectivePermissions,
    child: EffectivePermissions,
    strategy: ConflictResolution,
) -> EffectivePermissions:
    """Combine inherited and own permissions; parent modules keep their order first."""
    rule = CONFLICT_RULES[strategy]
    merged: EffectivePermissions = dict(parent)
    for module, flags in child.items():
        existing = merged.get(module)
        merged[module] = flags if existing is None else rule(existing, flags)
    return merged


class PermissionResolver:
    """Resolves a role's effective permissions through its ancestor chain."""

    def __init__(self, store: RoleStore, max_depth: int | None = None) -> None:
        if max_depth is None:
            from rolekeeper.config import settings

            max_depth = settings.max_role_depth
        self.store = store
        self.max_depth = max_depth

    async def resolve_effective(self, role_id: UUID) -> EffectivePermissions:
        """Return the role's effective permissions.

        Raises:
            NotFoundError: *role_id* does not exist.
            CycleDetectedError: the role appears in its own ancestor chain.
            RoleDepthExceededError: the chain is longer than ``max_depth``.
        """
        role = await self.store.get_role(role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return await self._resolve(role, [])

    async def resolve_role(self, role: Role) -> EffectivePermissions:
        """Resolve an already-fetched role."""
        return await self._resolve(role, [])

    async def _resolve(self, role: Role, chain: list[UUID]) -> EffectivePermissions:
        if role.id in chain:
            path = [str(r) for r in [*chain, role.id]]
            logger.error(
                "Cycle in role chain at %s",
                role.name,
                extra={"role_id": str(role.id), "chain": path},
            )
            raise CycleDetectedError(f"Role '{role.name}' appears twice in its role chain", path)
        chain = [*chain, role.id]
        if len(chain) > self.max_depth:
            raise RoleDepthExceededError(
                f"Role chain exceeds maximum depth of {self.max_depth}",
                [str(r) for r in chain],
            )

        own = role.permission_map()
        if not role.inherit_permissions or role.parent_role_id is None:
            return own

        parent = await self.store.get_role(role.parent_role_id)
        if parent is None:
            logger.warning(
                "Role %s references missing parent %s; resolving without it",
                role.name,
                role.parent_role_id,
                extra={"role_id": str(role.id)},
            )
            return own

        inherited = await self._resolve(parent, chain)
        return merge_permissions(inherited, own, role.conflict_resolution)

    async def ancestor_ids(self, parent_role_id: UUID | None) -> list[UUID]:
        """Walk parent links from *parent_role_id* upward, ignoring inheritance flags.

        Used to validate a proposed parent before a write. Stops at a missing
        parent; raises on a cycle or an over-long chain.
        """
        ancestors: list[UUID] = []
        current = parent_role_id
        while current is not None:
            if current in ancestors:
                raise CycleDetectedError(
                    "Existing role chain already contains a cycle",
                    [str(r) for r in [*ancestors, current]],
                )
            ancestors.append(current)
            if len(ancestors) > self.max_depth:
                raise RoleDepthExceededError(
                    f"Role chain exceeds maximum depth of {self.max_depth}",
                    [str(r) for r in ancestors],
                )
            role = await self.store.get_role(current)
            if role is None:
                break
            current = role.parent_role_id
        return ancestors
