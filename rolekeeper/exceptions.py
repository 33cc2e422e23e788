"""Custom exception hierarchy for RoleKeeper.

Provides structured error types that a transport layer can translate into
consistent responses. Every error carries an HTTP-style ``status_code`` and
a machine-readable ``error_type``.
"""

from __future__ import annotations


class RoleKeeperError(Exception):
    """Base exception for all RoleKeeper errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class StorageError(RoleKeeperError):
    """Database or storage layer failure."""

    status_code = 503
    error_type = "storage_error"


class NotFoundError(RoleKeeperError):
    """Requested role or user was not found."""

    status_code = 404
    error_type = "not_found"


class ValidationError(RoleKeeperError):
    """Input validation failure: duplicate name, missing field, bad permission entry."""

    status_code = 400
    error_type = "validation_error"


class AuthorizationError(RoleKeeperError):
    """Actor lacks the platform role required for the operation."""

    status_code = 403
    error_type = "forbidden"


class RoleChainError(RoleKeeperError):
    """The parent-role chain is malformed."""

    status_code = 409
    error_type = "role_chain_error"

    def __init__(self, message: str, chain: list[str] | None = None) -> None:
        self.chain = chain or []
        super().__init__(message)


class CycleDetectedError(RoleChainError):
    """A role appears twice in its own ancestor chain."""

    error_type = "cycle_detected"


class RoleDepthExceededError(RoleChainError):
    """The ancestor chain is longer than the configured maximum depth."""

    error_type = "role_depth_exceeded"


class ConcurrentModificationError(RoleKeeperError):
    """Optimistic-concurrency conflict: the role changed since it was read."""

    status_code = 409
    error_type = "concurrent_modification"


class AuditWriteError(RoleKeeperError):
    """Audit record could not be persisted.

    Never surfaced to callers of mutating operations; the audit recorder
    catches it and reports it on the diagnostics logger.
    """

    error_type = "audit_write_error"
