"""Async SQLite storage layer for roles, user assignments and the audit log.

Uses aiosqlite for async access. Implements the ``RoleStore`` protocol and
the persistence half of the audit recorder.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import UUID

import aiosqlite

from rolekeeper.core.models import (
    AuditAction,
    AuditConfiguration,
    AuditEntityType,
    AuditEvent,
    ConflictResolution,
    ModulePermission,
    NotificationSettings,
    Role,
    User,
)
from rolekeeper.exceptions import ConcurrentModificationError, NotFoundError, ValidationError


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL,
    parent_role_id TEXT,
    permissions TEXT NOT NULL DEFAULT '[]',
    inherit_permissions INTEGER NOT NULL DEFAULT 1,
    conflict_resolution TEXT NOT NULL DEFAULT 'merge',
    notification_settings TEXT NOT NULL DEFAULT '{}',
    audit_configuration TEXT NOT NULL DEFAULT '{}',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_by TEXT,
    updated_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_roles_parent
    ON roles (parent_role_id);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    email TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_roles (
    user_id TEXT NOT NULL,
    role_id TEXT NOT NULL,
    assigned_at TEXT NOT NULL,
    PRIMARY KEY (user_id, role_id)
);

CREATE INDEX IF NOT EXISTS idx_user_roles_role
    ON user_roles (role_id);

CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    performed_by TEXT NOT NULL,
    target_user TEXT,
    target_role TEXT,
    changes TEXT NOT NULL DEFAULT '{}',
    description TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_audit_log_action
    ON audit_log (action, timestamp);

CREATE INDEX IF NOT EXISTS idx_audit_log_performed_by
    ON audit_log (performed_by, timestamp);

CREATE INDEX IF NOT EXISTS idx_audit_log_target_role
    ON audit_log (target_role, timestamp);

CREATE INDEX IF NOT EXISTS idx_audit_log_entity
    ON audit_log (entity_type, entity_id);
"""


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        if db_path is None:
            from rolekeeper.config import settings

            db_path = settings.db_path
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._db

    # --- Role ---

    async def insert_role(self, role: Role) -> Role:
        try:
            await self.db.execute(
                """INSERT INTO roles
                   (id, name, description, parent_role_id, permissions, inherit_permissions,
                    conflict_resolution, notification_settings, audit_configuration,
                    is_active, created_by, updated_by, created_at, updated_at, version)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(role.id),
                    role.name,
                    role.description,
                    str(role.parent_role_id) if role.parent_role_id else None,
                    json.dumps([p.model_dump(mode="json") for p in role.permissions]),
                    int(role.inherit_permissions),
                    role.conflict_resolution.value,
                    role.notification_settings.model_dump_json(),
                    role.audit_configuration.model_dump_json(),
                    int(role.is_active),
                    role.created_by,
                    role.updated_by,
                    role.created_at.isoformat(),
                    role.updated_at.isoformat(),
                    role.version,
                ),
            )
        except sqlite3.IntegrityError as exc:
            await self.db.rollback()
            raise ValidationError(f"Role name '{role.name}' already exists") from exc
        await self.db.commit()
        return role

    async def get_role(self, role_id: UUID) -> Role | None:
        cursor = await self.db.execute("SELECT * FROM roles WHERE id = ?", (str(role_id),))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_role(row)

    async def find_role_by_name(self, name: str) -> Role | None:
        cursor = await self.db.execute("SELECT * FROM roles WHERE name = ?", (name,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_role(row)

    async def list_roles(self) -> list[Role]:
        """All roles, newest first."""
        cursor = await self.db.execute("SELECT * FROM roles ORDER BY created_at DESC, rowid DESC")
        rows = await cursor.fetchall()
        return [self._row_to_role(r) for r in rows]

    async def get_role_count(self) -> int:
        cursor = await self.db.execute("SELECT COUNT(*) FROM roles")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def update_role(self, role: Role, expected_version: int) -> Role:
        """Compare-and-swap update keyed on ``version``.

        ``name``, ``created_by`` and ``created_at`` are never rewritten.
        """
        cursor = await self.db.execute(
            """UPDATE roles SET
                   description = ?, parent_role_id = ?, permissions = ?,
                   inherit_permissions = ?, conflict_resolution = ?,
                   notification_settings = ?, audit_configuration = ?,
                   is_active = ?, updated_by = ?, updated_at = ?,
                   version = version + 1
               WHERE id = ? AND version = ?""",
            (
                role.description,
                str(role.parent_role_id) if role.parent_role_id else None,
                json.dumps([p.model_dump(mode="json") for p in role.permissions]),
                int(role.inherit_permissions),
                role.conflict_resolution.value,
                role.notification_settings.model_dump_json(),
                role.audit_configuration.model_dump_json(),
                int(role.is_active),
                role.updated_by,
                role.updated_at.isoformat(),
                str(role.id),
                expected_version,
            ),
        )
        updated = cursor.rowcount
        await self.db.commit()
        if updated == 0:
            current = await self.get_role(role.id)
            if current is None:
                raise NotFoundError(f"Role {role.id} not found")
            raise ConcurrentModificationError(
                f"Role {role.id} was modified concurrently "
                f"(expected version {expected_version}, found {current.version})"
            )
        return role.model_copy(update={"version": expected_version + 1})

    async def delete_role(self, role_id: UUID) -> bool:
        cursor = await self.db.execute("DELETE FROM roles WHERE id = ?", (str(role_id),))
        await self.db.commit()
        return cursor.rowcount > 0

    def _row_to_role(self, row: aiosqlite.Row) -> Role:
        return Role(
            id=UUID(row["id"]),
            name=row["name"],
            description=row["description"],
            parent_role_id=UUID(row["parent_role_id"]) if row["parent_role_id"] else None,
            permissions=[ModulePermission(**p) for p in json.loads(row["permissions"])],
            inherit_permissions=bool(row["inherit_permissions"]),
            conflict_resolution=ConflictResolution(row["conflict_resolution"]),
            notification_settings=NotificationSettings.model_validate_json(
                row["notification_settings"]
            ),
            audit_configuration=AuditConfiguration.model_validate_json(
                row["audit_configuration"]
            ),
            is_active=bool(row["is_active"]),
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
        )

    # --- User and assignments ---

    async def insert_user(self, user: User) -> User:
        try:
            await self.db.execute(
                """INSERT INTO users (id, username, email, is_active, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    str(user.id),
                    user.username,
                    user.email,
                    int(user.is_active),
                    user.created_at.isoformat(),
                ),
            )
            now = _utcnow_iso()
            await self.db.executemany(
                "INSERT OR IGNORE INTO user_roles (user_id, role_id, assigned_at) VALUES (?, ?, ?)",
                [(str(user.id), str(role_id), now) for role_id in user.assigned_roles],
            )
        except sqlite3.IntegrityError as exc:
            await self.db.rollback()
            raise ValidationError(f"Username '{user.username}' already exists") from exc
        await self.db.commit()
        return await self.get_user(user.id) or user

    async def get_user(self, user_id: UUID) -> User | None:
        cursor = await self.db.execute("SELECT * FROM users WHERE id = ?", (str(user_id),))
        row = await cursor.fetchone()
        if row is None:
            return None
        return await self._row_to_user(row)

    async def find_user_by_username(self, username: str) -> User | None:
        cursor = await self.db.execute("SELECT * FROM users WHERE username = ?", (username,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return await self._row_to_user(row)

    async def find_users_by_assigned_role(self, role_id: UUID) -> list[User]:
        """Users holding *role_id*, ordered by username."""
        cursor = await self.db.execute(
            """SELECT u.* FROM users u
               JOIN user_roles ur ON ur.user_id = u.id
               WHERE ur.role_id = ?
               ORDER BY u.username ASC""",
            (str(role_id),),
        )
        rows = await cursor.fetchall()
        return [await self._row_to_user(r) for r in rows]

    async def add_user_role(self, user_id: UUID, role_id: UUID) -> bool:
        cursor = await self.db.execute(
            "INSERT OR IGNORE INTO user_roles (user_id, role_id, assigned_at) VALUES (?, ?, ?)",
            (str(user_id), str(role_id), _utcnow_iso()),
        )
        await self.db.commit()
        return cursor.rowcount == 1

    async def remove_user_role(self, user_id: UUID, role_id: UUID) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM user_roles WHERE user_id = ? AND role_id = ?",
            (str(user_id), str(role_id)),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def detach_role_from_all_users(self, role_id: UUID) -> int:
        cursor = await self.db.execute("DELETE FROM user_roles WHERE role_id = ?", (str(role_id),))
        await self.db.commit()
        return cursor.rowcount

    async def _row_to_user(self, row: aiosqlite.Row) -> User:
        cursor = await self.db.execute(
            "SELECT role_id FROM user_roles WHERE user_id = ? ORDER BY assigned_at ASC, rowid ASC",
            (row["id"],),
        )
        role_rows = await cursor.fetchall()
        return User(
            id=UUID(row["id"]),
            username=row["username"],
            email=row["email"],
            is_active=bool(row["is_active"]),
            assigned_roles=[UUID(r["role_id"]) for r in role_rows],
            created_at=row["created_at"],
        )

    # --- Audit log ---

    async def insert_audit_event(self, event: AuditEvent) -> None:
        await self.db.execute(
            """INSERT INTO audit_log
               (id, timestamp, action, entity_type, entity_id, performed_by,
                target_user, target_role, changes, description, metadata)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                str(event.id),
                event.timestamp.isoformat(),
                event.action.value,
                event.entity_type.value,
                event.entity_id,
                event.performed_by,
                event.target_user,
                event.target_role,
                json.dumps(event.changes, default=str),
                event.description,
                json.dumps(event.metadata, default=str),
            ),
        )
        await self.db.commit()

    async def get_audit_events_filtered(
        self,
        limit: int = 100,
        offset: int = 0,
        action: str | None = None,
        entity_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[list[AuditEvent], int]:
        """Return filtered audit events (newest first) with total count."""
        conditions = []
        params: list[Any] = []
        if action is not None:
            conditions.append("action = ?")
            params.append(action)
        if entity_type is not None:
            conditions.append("entity_type = ?")
            params.append(entity_type)
        if start is not None:
            conditions.append("timestamp >= ?")
            params.append(start.isoformat())
        if end is not None:
            conditions.append("timestamp <= ?")
            params.append(end.isoformat())

        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        count_cursor = await self.db.execute(
            f"SELECT COUNT(*) FROM audit_log{where}",  # noqa: S608
            params,
        )
        row = await count_cursor.fetchone()
        total = row[0] if row else 0

        params.extend([limit, offset])
        cursor = await self.db.execute(
            f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?",  # noqa: S608
            params,
        )
        rows = await cursor.fetchall()
        return [self._row_to_audit_event(r) for r in rows], total

    async def get_role_audit_events(
        self, role_id: str, limit: int = 100, offset: int = 0
    ) -> list[AuditEvent]:
        cursor = await self.db.execute(
            """SELECT * FROM audit_log
               WHERE (entity_type = ? AND entity_id = ?) OR target_role = ?
               ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?""",
            (AuditEntityType.ROLE.value, role_id, role_id, limit, offset),
        )
        rows = await cursor.fetchall()
        return [self._row_to_audit_event(r) for r in rows]

    async def get_actor_audit_events(
        self, performed_by: str, limit: int = 100, offset: int = 0
    ) -> list[AuditEvent]:
        cursor = await self.db.execute(
            """SELECT * FROM audit_log WHERE performed_by = ?
               ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?""",
            (performed_by, limit, offset),
        )
        rows = await cursor.fetchall()
        return [self._row_to_audit_event(r) for r in rows]

    async def get_audit_action_counts(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, int]:
        """Event count per action, most frequent first."""
        conditions = []
        params: list[Any] = []
        if start is not None:
            conditions.append("timestamp >= ?")
            params.append(start.isoformat())
        if end is not None:
            conditions.append("timestamp <= ?")
            params.append(end.isoformat())
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        cursor = await self.db.execute(
            f"SELECT action, COUNT(*) AS cnt FROM audit_log{where} "  # noqa: S608
            "GROUP BY action ORDER BY cnt DESC, action ASC",
            params,
        )
        rows = await cursor.fetchall()
        return {row["action"]: row["cnt"] for row in rows}

    async def delete_role_audit_events_before(self, role_id: str, cutoff: datetime) -> int:
        cursor = await self.db.execute(
            "DELETE FROM audit_log WHERE target_role = ? AND timestamp < ?",
            (role_id, cutoff.isoformat()),
        )
        await self.db.commit()
        return cursor.rowcount

    def _row_to_audit_event(self, row: aiosqlite.Row) -> AuditEvent:
        return AuditEvent(
            id=UUID(row["id"]),
            timestamp=row["timestamp"],
            action=AuditAction(row["action"]),
            entity_type=AuditEntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            performed_by=row["performed_by"],
            target_user=row["target_user"],
            target_role=row["target_role"],
            changes=json.loads(row["changes"]),
            description=row["description"],
            metadata=json.loads(row["metadata"]),
        )
