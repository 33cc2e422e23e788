"""Role store protocol consumed by the resolver, aggregator and role service."""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from rolekeeper.core.models import Role, User


@runtime_checkable
class RoleStore(Protocol):
    """Durable lookup and mutation of roles and user role assignments.

    Each fetch must return a consistent point-in-time read of one record;
    resolution relies on nothing stronger than that.
    """

    async def get_role(self, role_id: UUID) -> Role | None: ...

    async def find_role_by_name(self, name: str) -> Role | None: ...

    async def list_roles(self) -> list[Role]: ...

    async def insert_role(self, role: Role) -> Role: ...

    async def update_role(self, role: Role, expected_version: int) -> Role:
        """Persist *role* if the stored version still equals *expected_version*.

        Returns the stored role with its version incremented. Raises
        ``ConcurrentModificationError`` when the version moved.
        """
        ...

    async def delete_role(self, role_id: UUID) -> bool: ...

    async def find_users_by_assigned_role(self, role_id: UUID) -> list[User]: ...

    async def detach_role_from_all_users(self, role_id: UUID) -> int:
        """Remove *role_id* from every user's assignments; returns users touched."""
        ...

    async def get_user(self, user_id: UUID) -> User | None: ...

    async def insert_user(self, user: User) -> User: ...

    async def add_user_role(self, user_id: UUID, role_id: UUID) -> bool:
        """Assign a role; returns False when the user already held it."""
        ...

    async def remove_user_role(self, user_id: UUID, role_id: UUID) -> bool: ...
