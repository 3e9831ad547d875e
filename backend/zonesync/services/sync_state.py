"""
Durable sync state: last issued serial per domain and the publish audit trail
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select

from ..core.database import Database, StateBase
from ..core.logging_config import get_sync_logger
from ..models.sync import PublishJobRecord, ZoneSerial
from .publish_job import PublishJob

logger = get_sync_logger()


class SyncStateRepository:
    """Serial counters and terminal jobs in the state database"""

    def __init__(self, database: Database):
        self.database = database

    async def init(self) -> None:
        await self.database.create_tables(StateBase)
        logger.info("Sync state tables ready")

    async def get_last_serial(self, domain_id: str) -> Optional[int]:
        async with self.database.session() as session:
            result = await session.execute(select(ZoneSerial).where(ZoneSerial.domain_id == str(domain_id)))
            row = result.scalar_one_or_none()
            return int(row.last_serial) if row else None

    async def record_serial(self, domain_id: str, domain_name: str, serial: int) -> int:
        """Persist ``serial`` as issued; the stored value never decreases"""
        async with self.database.session() as session:
            async with session.begin():
                result = await session.execute(select(ZoneSerial).where(ZoneSerial.domain_id == str(domain_id)))
                row = result.scalar_one_or_none()
                if row is None:
                    row = ZoneSerial(domain_id=str(domain_id), domain_name=domain_name, last_serial=serial)
                    session.add(row)
                else:
                    row.domain_name = domain_name
                    row.last_serial = max(int(row.last_serial), serial)
                    row.updated_at = datetime.utcnow()
                stored = int(row.last_serial)
        return stored

    async def save_job(self, job: PublishJob) -> None:
        async with self.database.session() as session:
            async with session.begin():
                await session.merge(PublishJobRecord(
                    id=job.id,
                    domain_id=job.domain_id,
                    domain_name=job.domain_name,
                    action=job.action.value,
                    record=job.record,
                    status=job.status.value,
                    serial=job.serial,
                    attempts=job.attempts,
                    error=job.error,
                    error_message=job.error.get("message") if job.error else None,
                    created_at=job.created_at,
                    finished_at=job.finished_at,
                ))

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        async with self.database.session() as session:
            row = await session.get(PublishJobRecord, job_id)
            return row.to_dict() if row else None

    async def recent_jobs(self, domain_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        async with self.database.session() as session:
            result = await session.execute(
                select(PublishJobRecord)
                .where(PublishJobRecord.domain_id == str(domain_id))
                .order_by(desc(PublishJobRecord.created_at))
                .limit(limit)
            )
            return [row.to_dict() for row in result.scalars().all()]
