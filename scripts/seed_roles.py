#!/usr/bin/env python3
"""Seed a RoleKeeper database with the sample role catalogue.

Roles: Basic User, Content Editor, Manager, Senior Manager (inherits from
Manager, merge), Super Admin. Users: admin, john_editor, jane_manager,
bob_user, each holding one role.

Usage: RK_DB_PATH=rolekeeper.db python scripts/seed_roles.py
"""

import asyncio

from rolekeeper.audit import AuditRecorder
from rolekeeper.config import settings
from rolekeeper.core.service import RoleService
from rolekeeper.logging_config import log_startup_info, setup_logging
from rolekeeper.seed import SEED_ACTOR, seed_database
from rolekeeper.storage.database import Database


async def main() -> None:
    db_path = settings.db_path
    setup_logging()
    log_startup_info(db_path)

    db = Database(db_path)
    await db.connect()
    try:
        service = RoleService(db, AuditRecorder(db))
        roles = await seed_database(db, service)

        print("═══ Effective permissions ═══")
        for name, role in roles.items():
            effective = await service.resolve_effective(role.id, SEED_ACTOR)
            print(f"{name}:")
            for module, flags in effective.items():
                granted = [a for a, on in flags.model_dump().items() if on]
                print(f"  {module.value:<10} {', '.join(granted) or '-'}")
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
