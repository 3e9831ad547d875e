#!/usr/bin/env python3
"""
Database initialization script for Zone Sync
Creates the sync state tables and checks that the record store is readable
"""

import asyncio
import logging
import sys

from sqlalchemy import func, select

from zonesync.core.config import get_settings
from zonesync.core.database import Database
from zonesync.core.logging_config import setup_logging
from zonesync.models.dns import Domain
from zonesync.services.sync_state import SyncStateRepository

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


async def main():
    """Initialize the sync state database"""
    settings = get_settings()
    state_db = Database(settings.SYNC_STATE_DATABASE_URL)
    record_db = Database(settings.DATABASE_URL)
    try:
        logger.info("Starting database initialization...")
        logger.info(f"Sync state database: {state_db.url}")
        await SyncStateRepository(state_db).init()

        async with record_db.session() as session:
            count = (await session.execute(select(func.count()).select_from(Domain))).scalar_one()
        logger.info(f"Record store reachable, {count} domain(s) found")
        logger.info("Database initialization completed successfully")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        logger.exception("Full error details:")
        sys.exit(1)
    finally:
        await state_db.close()
        await record_db.close()


if __name__ == "__main__":
    asyncio.run(main())
