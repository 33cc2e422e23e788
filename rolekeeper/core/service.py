"""Role service layer: role lifecycle, user assignments, and audited reads."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from rolekeeper.audit import AuditSink
from rolekeeper.core.aggregator import UserPermissionAggregator
from rolekeeper.core.comparator import RoleComparator
from rolekeeper.core.models import (
    AssignmentResult,
    AssignmentStatus,
    AuditAction,
    AuditEntityType,
    ComparisonResult,
    EffectivePermissions,
    Module,
    PermissionAction,
    Role,
    RoleCreate,
    RoleUpdate,
    User,
)
from rolekeeper.core.resolver import PermissionResolver
from rolekeeper.exceptions import (
    ConcurrentModificationError,
    CycleDetectedError,
    NotFoundError,
    RoleDepthExceededError,
    StorageError,
    ValidationError,
)
from rolekeeper.rbac import Actor, require_admin
from rolekeeper.storage.base import RoleStore

logger = logging.getLogger("rolekeeper.service")
audit_logger = logging.getLogger("rolekeeper.audit")

M = TypeVar("M", bound=BaseModel)


def _validate(model: type[M], data: M | dict[str, Any]) -> M:
    """Coerce *data* into *model*, reporting pydantic failures as ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(problems) from exc


class RoleService:
    """Orchestrates role CRUD, assignments and permission queries.

    Every operation takes the acting administrator as ``performed_by``.
    Each successful mutation emits exactly one audit event; audit failures
    never affect the mutation.
    """

    def __init__(
        self,
        store: RoleStore,
        audit: AuditSink,
        max_depth: int | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.resolver = PermissionResolver(store, max_depth)
        self.aggregator = UserPermissionAggregator(store, self.resolver)
        self.comparator = RoleComparator(self.resolver)
        self._role_locks: dict[UUID, asyncio.Lock] = {}
        # Held for every check-and-write of a parent link. Taken after a
        # role lock, never before one.
        self._hierarchy_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, role_id: UUID) -> asyncio.Lock:
        return self._role_locks.setdefault(role_id, asyncio.Lock())

    async def _audit(
        self,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: str,
        performed_by: str,
        **fields: Any,
    ) -> None:
        """Record an audit event; a failing sink is logged and ignored."""
        try:
            await self.audit.record(action, entity_type, entity_id, performed_by, **fields)
        except Exception as exc:
            audit_logger.error(
                "Audit sink failed to record %s on %s %s",
                action.value,
                entity_type.value,
                entity_id,
                exc_info=exc,
                extra={"action": action.value, "actor": performed_by},
            )

    async def _require_role(self, role_id: UUID) -> Role:
        role = await self.store.get_role(role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return role

    async def _require_user(self, user_id: UUID) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def _subtree_height(self, role_id: UUID) -> int:
        """Number of generations of roles below *role_id*."""
        children: dict[UUID, list[UUID]] = {}
        for role in await self.store.list_roles():
            if role.parent_role_id is not None:
                children.setdefault(role.parent_role_id, []).append(role.id)

        height = 0
        seen = {role_id}
        frontier = [role_id]
        while frontier:
            frontier = [c for p in frontier for c in children.get(p, []) if c not in seen]
            if not frontier:
                break
            seen.update(frontier)
            height += 1
        return height

    async def _check_parent_chain(self, role: Role) -> None:
        """Reject a parent link that would create a cycle or an over-long chain.

        Runs before any write, so a rejected create/update leaves the store
        untouched.
        """
        parent_id = role.parent_role_id
        if parent_id is None:
            return
        if parent_id == role.id:
            raise CycleDetectedError(
                f"Role '{role.name}' cannot be its own parent", [str(role.id), str(role.id)]
            )
        if await self.store.get_role(parent_id) is None:
            raise NotFoundError(f"Parent role {parent_id} not found")

        ancestors = await self.resolver.ancestor_ids(parent_id)
        if role.id in ancestors:
            chain = [str(role.id), *(str(a) for a in ancestors[: ancestors.index(role.id) + 1])]
            raise CycleDetectedError(
                f"Setting parent of '{role.name}' would create a cycle in the role chain", chain
            )

        depth = len(ancestors) + 1 + await self._subtree_height(role.id)
        if depth > self.resolver.max_depth:
            raise RoleDepthExceededError(
                f"Role chain would be {depth} roles deep (maximum {self.resolver.max_depth})",
                [str(role.id), *(str(a) for a in ancestors)],
            )

    # ------------------------------------------------------------------
    # Role lifecycle
    # ------------------------------------------------------------------

    async def create_role(
        self,
        data: RoleCreate | dict[str, Any],
        performed_by: Actor,
        metadata: dict[str, Any] | None = None,
    ) -> Role:
        """Create a role.

        Raises:
            ValidationError: malformed input or duplicate name.
            NotFoundError: the parent role does not exist.
            CycleDetectedError / RoleDepthExceededError: invalid parent chain.
        """
        require_admin(performed_by, "create_role")
        command = _validate(RoleCreate, data)

        if await self.store.find_role_by_name(command.name) is not None:
            raise ValidationError(f"Role name '{command.name}' already exists")

        role = _validate(
            Role,
            {
                **command.model_dump(),
                "created_by": performed_by.id,
                "updated_by": performed_by.id,
            },
        )
        if role.parent_role_id is None:
            role = await self.store.insert_role(role)
        else:
            async with self._hierarchy_lock:
                await self._check_parent_chain(role)
                role = await self.store.insert_role(role)

        logger.info(
            "Role %s created",
            role.name,
            extra={"role_id": str(role.id), "actor": performed_by.id},
        )
        await self._audit(
            AuditAction.ROLE_CREATED,
            AuditEntityType.ROLE,
            str(role.id),
            performed_by.id,
            target_role=str(role.id),
            description=f'Role "{role.name}" created',
            metadata=metadata,
        )
        return role

    async def update_role(
        self,
        role_id: UUID,
        data: RoleUpdate | dict[str, Any],
        performed_by: Actor,
        metadata: dict[str, Any] | None = None,
    ) -> Role:
        """Apply an explicit field update to a role.

        Raises:
            ValidationError: unknown or malformed fields.
            NotFoundError: role (or new parent) does not exist.
            CycleDetectedError / RoleDepthExceededError: invalid new parent.
            ConcurrentModificationError: the role changed since it was read.
        """
        require_admin(performed_by, "update_role")
        command = _validate(RoleUpdate, data)

        async with self._lock_for(role_id):
            current = await self._require_role(role_id)
            if command.expected_version is not None and command.expected_version != current.version:
                raise ConcurrentModificationError(
                    f"Role {role_id} is at version {current.version}, "
                    f"update was based on version {command.expected_version}"
                )

            updated = _validate(
                Role,
                {
                    **current.model_dump(),
                    **command.changes(),
                    "updated_by": performed_by.id,
                    "updated_at": datetime.now(timezone.utc),
                },
            )
            if updated.parent_role_id != current.parent_role_id:
                async with self._hierarchy_lock:
                    await self._check_parent_chain(updated)
                    stored = await self.store.update_role(
                        updated, expected_version=current.version
                    )
            else:
                stored = await self.store.update_role(updated, expected_version=current.version)

        logger.info(
            "Role %s updated (version %d)",
            stored.name,
            stored.version,
            extra={"role_id": str(role_id), "actor": performed_by.id},
        )
        await self._audit(
            AuditAction.ROLE_UPDATED,
            AuditEntityType.ROLE,
            str(role_id),
            performed_by.id,
            target_role=str(role_id),
            changes={"before": current.snapshot(), "after": stored.snapshot()},
            description=f'Role "{stored.name}" updated',
            metadata=metadata,
        )
        return stored

    async def delete_role(
        self,
        role_id: UUID,
        performed_by: Actor,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Delete a role after detaching it from every user.

        The detach step is idempotent, so a call interrupted between the two
        steps can simply be retried. Returns the number of users detached.
        """
        require_admin(performed_by, "delete_role")

        async with self._lock_for(role_id):
            role = await self._require_role(role_id)

            detached = await self.store.detach_role_from_all_users(role_id)
            remaining = await self.store.find_users_by_assigned_role(role_id)
            if remaining:
                raise StorageError(
                    f"Role {role_id} still assigned to {len(remaining)} users after detach"
                )
            await self.store.delete_role(role_id)
        self._role_locks.pop(role_id, None)

        logger.info(
            "Role %s deleted, detached from %d users",
            role.name,
            detached,
            extra={"role_id": str(role_id), "actor": performed_by.id},
        )
        await self._audit(
            AuditAction.ROLE_DELETED,
            AuditEntityType.ROLE,
            str(role_id),
            performed_by.id,
            target_role=str(role_id),
            changes={"before": role.snapshot(), "detached_users": detached},
            description=f'Role "{role.name}" deleted',
            metadata=metadata,
        )
        return detached

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def assign_role_to_user(
        self,
        role_id: UUID,
        user_id: UUID,
        performed_by: Actor,
        metadata: dict[str, Any] | None = None,
    ) -> AssignmentResult:
        """Assign a role; an existing assignment is reported, not raised."""
        require_admin(performed_by, "assign_role_to_user")
        role = await self._require_role(role_id)
        user = await self._require_user(user_id)

        if role_id in user.assigned_roles or not await self.store.add_user_role(user_id, role_id):
            return AssignmentResult(status=AssignmentStatus.ALREADY_ASSIGNED, user=user)

        user = await self._require_user(user_id)
        await self._audit(
            AuditAction.USER_ASSIGNED,
            AuditEntityType.USER,
            str(user_id),
            performed_by.id,
            target_user=str(user_id),
            target_role=str(role_id),
            description=f'User "{user.username}" assigned to role "{role.name}"',
            metadata=metadata,
        )
        return AssignmentResult(status=AssignmentStatus.ASSIGNED, user=user)

    async def remove_role_from_user(
        self,
        role_id: UUID,
        user_id: UUID,
        performed_by: Actor,
        metadata: dict[str, Any] | None = None,
    ) -> User:
        """Remove a role from a user; removing an absent role is a no-op."""
        require_admin(performed_by, "remove_role_from_user")
        role = await self._require_role(role_id)
        await self._require_user(user_id)

        removed = await self.store.remove_user_role(user_id, role_id)
        user = await self._require_user(user_id)
        await self._audit(
            AuditAction.USER_REMOVED,
            AuditEntityType.USER,
            str(user_id),
            performed_by.id,
            target_user=str(user_id),
            target_role=str(role_id),
            changes={"removed": removed},
            description=f'User "{user.username}" removed from role "{role.name}"',
            metadata=metadata,
        )
        return user

    async def bulk_assign_role(
        self,
        role_id: UUID,
        user_ids: Iterable[UUID],
        performed_by: Actor,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Assign a role to many users; returns how many users actually changed.

        Users that already hold the role and unknown user ids are skipped, so
        repeating the call with the same arguments modifies nobody.
        """
        require_admin(performed_by, "bulk_assign_role")
        role = await self._require_role(role_id)

        targets = list(dict.fromkeys(user_ids))
        modified = 0
        for user_id in targets:
            user = await self.store.get_user(user_id)
            if user is None:
                logger.debug("Bulk assignment skipped unknown user %s", user_id)
                continue
            if role_id in user.assigned_roles:
                continue
            if await self.store.add_user_role(user_id, role_id):
                modified += 1

        logger.info(
            "Role %s bulk assigned to %d of %d users",
            role.name,
            modified,
            len(targets),
            extra={"role_id": str(role_id), "actor": performed_by.id},
        )
        await self._audit(
            AuditAction.BULK_ASSIGNMENT,
            AuditEntityType.ROLE,
            str(role_id),
            performed_by.id,
            target_role=str(role_id),
            changes={"user_ids": [str(u) for u in targets], "count": modified},
            description=f'Bulk assigned role "{role.name}" to {modified} users',
            metadata=metadata,
        )
        return modified

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_role(self, role_id: UUID, performed_by: Actor) -> Role:
        require_admin(performed_by, "get_role")
        return await self._require_role(role_id)

    async def get_role_with_effective_permissions(
        self, role_id: UUID, performed_by: Actor
    ) -> tuple[Role, EffectivePermissions]:
        require_admin(performed_by, "get_role")
        role = await self._require_role(role_id)
        return role, await self.resolver.resolve_role(role)

    async def list_roles(self, performed_by: Actor) -> list[Role]:
        require_admin(performed_by, "list_roles")
        return await self.store.list_roles()

    async def get_role_users(self, role_id: UUID, performed_by: Actor) -> list[User]:
        require_admin(performed_by, "get_role_users")
        return await self.store.find_users_by_assigned_role(role_id)

    async def resolve_effective(self, role_id: UUID, performed_by: Actor) -> EffectivePermissions:
        require_admin(performed_by, "resolve_effective")
        return await self.resolver.resolve_effective(role_id)

    async def resolve_user_permissions(
        self, user_id: UUID, performed_by: Actor
    ) -> EffectivePermissions:
        require_admin(performed_by, "resolve_user_permissions")
        return await self.aggregator.resolve_user_permissions(user_id)

    async def has_permission(
        self,
        user_id: UUID,
        module: Module | str,
        action: PermissionAction | str,
        performed_by: Actor,
    ) -> bool:
        require_admin(performed_by, "has_permission")
        return await self.aggregator.has_permission(user_id, module, action)

    async def compare_roles(
        self,
        role1_id: UUID,
        role2_id: UUID,
        performed_by: Actor,
        metadata: dict[str, Any] | None = None,
    ) -> ComparisonResult:
        """Compare two roles and record the comparison in the audit log."""
        require_admin(performed_by, "compare_roles")
        comparison = await self.comparator.compare_roles(role1_id, role2_id)
        await self._audit(
            AuditAction.ROLE_COMPARED,
            AuditEntityType.ROLE,
            str(role1_id),
            performed_by.id,
            changes={
                "role2": str(role2_id),
                "differences": [d.module.value for d in comparison.differences],
            },
            description=(
                f'Compared roles "{comparison.role1.name}" and "{comparison.role2.name}"'
            ),
            metadata=metadata,
        )
        return comparison
