"""User-level permission aggregation across assigned roles."""

from __future__ import annotations

import logging
from uuid import UUID

from rolekeeper.core.models import (
    NO_PERMISSIONS,
    EffectivePermissions,
    Module,
    PermissionAction,
)
from rolekeeper.core.resolver import PermissionResolver
from rolekeeper.exceptions import NotFoundError, ValidationError
from rolekeeper.storage.base import RoleStore

logger = logging.getLogger("rolekeeper.aggregator")


class UserPermissionAggregator:
    """Combines the effective permissions of every role a user holds.

    Aggregation across roles is always additive (flag-wise OR). Each role's
    own ``conflict_resolution`` only applies inside its parent chain.
    """

    def __init__(self, store: RoleStore, resolver: PermissionResolver) -> None:
        self.store = store
        self.resolver = resolver

    async def resolve_user_permissions(self, user_id: UUID) -> EffectivePermissions:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        combined: EffectivePermissions = {}
        for role_id in user.assigned_roles:
            role = await self.store.get_role(role_id)
            if role is None:
                # Assignment left behind by an interrupted role deletion.
                logger.warning(
                    "User %s holds unknown role %s; skipping",
                    user.username,
                    role_id,
                    extra={"user_id": str(user_id), "role_id": str(role_id)},
                )
                continue
            for module, flags in (await self.resolver.resolve_role(role)).items():
                combined[module] = combined.get(module, NO_PERMISSIONS).union(flags)
        return combined

    async def has_permission(
        self,
        user_id: UUID,
        module: Module | str,
        action: PermissionAction | str,
    ) -> bool:
        """True when at least one assigned role grants *action* on *module*."""
        try:
            module = Module(module)
            action = PermissionAction(action)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        permissions = await self.resolve_user_permissions(user_id)
        flags = permissions.get(module)
        if flags is None:
            return False
        return flags.allows(action)
