"""Audit trail for role and assignment changes.

Recording is best-effort: a failure to persist an audit event is logged on
the ``rolekeeper.audit`` logger and discarded, never propagated to the
operation that triggered it. The query helpers back the admin console's
activity views and statistics.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, runtime_checkable

from rolekeeper.core.models import AuditAction, AuditEntityType, AuditEvent
from rolekeeper.exceptions import AuditWriteError
from rolekeeper.storage.database import Database

logger = logging.getLogger("rolekeeper.audit")


@runtime_checkable
class AuditSink(Protocol):
    """Best-effort recorder of administrative actions. Must never raise."""

    async def record(
        self,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: str,
        performed_by: str,
        *,
        description: str,
        target_user: str | None = None,
        target_role: str | None = None,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent | None: ...


class AuditRecorder:
    """Persists audit events to the database and answers activity queries."""

    def __init__(self, db: Database, enabled: bool | None = None) -> None:
        if enabled is None:
            from rolekeeper.config import settings

            enabled = settings.audit_enabled
        self.db = db
        self.enabled = enabled

    async def record(
        self,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: str,
        performed_by: str,
        *,
        description: str,
        target_user: str | None = None,
        target_role: str | None = None,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Write one audit event. Returns ``None`` if disabled or the write failed."""
        if not self.enabled:
            return None
        event = AuditEvent(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            performed_by=performed_by,
            target_user=target_user,
            target_role=target_role,
            changes=changes or {},
            description=description,
            metadata=metadata or {},
        )
        try:
            await self._persist(event)
        except AuditWriteError as failure:
            logger.error(
                failure.message,
                exc_info=failure,
                extra={"action": action.value, "actor": performed_by},
            )
            return None
        return event

    async def _persist(self, event: AuditEvent) -> None:
        try:
            await self.db.insert_audit_event(event)
        except Exception as exc:
            raise AuditWriteError(
                f"Could not persist audit event {event.action.value} "
                f"on {event.entity_type.value} {event.entity_id}"
            ) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_events(
        self,
        *,
        action: AuditAction | None = None,
        entity_type: AuditEntityType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        skip: int = 0,
    ) -> tuple[list[AuditEvent], int]:
        """Filtered events, newest first, with the unpaginated total."""
        return await self.db.get_audit_events_filtered(
            limit=limit,
            offset=skip,
            action=action.value if action else None,
            entity_type=entity_type.value if entity_type else None,
            start=start,
            end=end,
        )

    async def role_activity(
        self, role_id: str, limit: int = 100, skip: int = 0
    ) -> list[AuditEvent]:
        """Events about a role, either as the entity or as the target role."""
        return await self.db.get_role_audit_events(str(role_id), limit=limit, offset=skip)

    async def user_activity(
        self, performed_by: str, limit: int = 100, skip: int = 0
    ) -> list[AuditEvent]:
        """Events performed by an actor."""
        return await self.db.get_actor_audit_events(performed_by, limit=limit, offset=skip)

    async def stats(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, Any]:
        breakdown = await self.db.get_audit_action_counts(start=start, end=end)
        return {
            "total_logs": sum(breakdown.values()),
            "action_breakdown": [
                {"action": action, "count": count} for action, count in breakdown.items()
            ],
        }

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete events older than each audited role's ``retention_days``.

        Returns the total number of events removed.
        """
        now = now or datetime.now(timezone.utc)
        removed = 0
        for role in await self.db.list_roles():
            config = role.audit_configuration
            if not config.enabled:
                continue
            cutoff = now - timedelta(days=config.retention_days)
            count = await self.db.delete_role_audit_events_before(str(role.id), cutoff)
            if count:
                logger.info(
                    "Removed %d audit events for role %s (retention: %d days)",
                    count,
                    role.name,
                    config.retention_days,
                    extra={"role_id": str(role.id)},
                )
            removed += count
        return removed
