"""Structural comparison of two roles' effective permissions."""

from __future__ import annotations

from uuid import UUID

from rolekeeper.core.models import (
    NO_PERMISSIONS,
    ComparisonResult,
    PermissionDifference,
    RoleSnapshot,
)
from rolekeeper.core.resolver import PermissionResolver
from rolekeeper.exceptions import NotFoundError


class RoleComparator:
    """Resolves two roles and reports every module whose flags differ."""

    def __init__(self, resolver: PermissionResolver) -> None:
        self.resolver = resolver

    async def compare_roles(self, role1_id: UUID, role2_id: UUID) -> ComparisonResult:
        """Compare two roles module by module.

        Modules are visited in role 1's resolution order, then role 2's
        remaining modules. A module missing from one side counts as all
        flags false.

        Raises:
            NotFoundError: either role does not exist.
        """
        store = self.resolver.store
        role1 = await store.get_role(role1_id)
        role2 = await store.get_role(role2_id)
        if role1 is None or role2 is None:
            raise NotFoundError("One or both roles not found")

        perms1 = await self.resolver.resolve_role(role1)
        perms2 = await self.resolver.resolve_role(role2)

        differences: list[PermissionDifference] = []
        for module in dict.fromkeys([*perms1, *perms2]):
            flags1 = perms1.get(module, NO_PERMISSIONS)
            flags2 = perms2.get(module, NO_PERMISSIONS)
            if flags1.as_tuple() != flags2.as_tuple():
                differences.append(
                    PermissionDifference(module=module, role1=flags1, role2=flags2)
                )

        return ComparisonResult(
            role1=RoleSnapshot(id=role1.id, name=role1.name, permissions=perms1),
            role2=RoleSnapshot(id=role2.id, name=role2.name, permissions=perms2),
            differences=differences,
        )
