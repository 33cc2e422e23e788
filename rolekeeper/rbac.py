"""Platform-level privileges of the actor performing an operation.

These are the coarse account roles of the administrator console, distinct
from the fine-grained hierarchical roles that RoleKeeper resolves. Every
role and assignment operation requires an actor holding ``admin``.

Roles (highest → lowest privilege):
    admin      - Manage roles, assignments and the audit log
    moderator  - Reserved for content moderation; no role management
    user       - Regular account
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from rolekeeper.exceptions import AuthorizationError

_audit_logger = logging.getLogger("rolekeeper.audit")


class PlatformRole(StrEnum):
    """Enumerated account roles."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"


#: Roles ordered from most to least privileged.
ROLE_HIERARCHY: list[PlatformRole] = [
    PlatformRole.ADMIN,
    PlatformRole.MODERATOR,
    PlatformRole.USER,
]

#: Mapping from each role to the set of roles it implicitly includes.
ROLE_INCLUDES: dict[PlatformRole, frozenset[PlatformRole]] = {
    PlatformRole.ADMIN: frozenset(ROLE_HIERARCHY),
    PlatformRole.MODERATOR: frozenset({PlatformRole.MODERATOR, PlatformRole.USER}),
    PlatformRole.USER: frozenset({PlatformRole.USER}),
}


@dataclass(frozen=True)
class Actor:
    """Authenticated identity passed to every operation as ``performed_by``."""

    id: str
    roles: tuple[str, ...] = ()
    metadata: dict = field(default_factory=dict, hash=False, compare=False)


def has_role(user_roles: list[str] | tuple[str, ...], required: str) -> bool:
    """Check if *user_roles* satisfy *required*, respecting hierarchy.

    Returns ``True`` when at least one of the caller's roles either
    matches *required* directly or includes it via the hierarchy.
    """
    for r in user_roles:
        try:
            role = PlatformRole(r)
        except ValueError:
            continue
        if required in ROLE_INCLUDES.get(role, frozenset()):
            return True
    return False


def require_admin(actor: Actor, operation: str) -> None:
    """Raise ``AuthorizationError`` unless *actor* holds the admin role."""
    if not actor.id or not has_role(actor.roles, PlatformRole.ADMIN):
        _audit_logger.warning(
            "Authorization failure: %s attempted %s",
            actor.id or "<anonymous>",
            operation,
            extra={"actor": actor.id, "action": operation},
        )
        raise AuthorizationError(f"Administrator privileges required for {operation}")
