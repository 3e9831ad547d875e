"""
Record store adapter: read-only access to the dashboard's domains and records
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..core.database import Database
from ..core.exceptions import StoreReadError
from ..core.logging_config import get_store_logger
from ..models.dns import Domain, DNSRecord
from .zone_compiler import ZoneRecord

logger = get_store_logger()


@dataclass(frozen=True)
class DomainInfo:
    id: str
    domain_name: str
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class RecordStore(ABC):
    """Interface the orchestrator reads through. Implementations must be safe for concurrent reads."""

    @abstractmethod
    async def get_domain(self, domain_id: str) -> DomainInfo:
        """Return the domain or raise ``StoreReadError(not_found=True)``"""

    @abstractmethod
    async def list_active_records(self, domain_id: str) -> List[ZoneRecord]:
        """Return the domain's active records"""


class SQLRecordStore(RecordStore):
    """Record store backed by the dashboard's Postgres (or SQLite in tests)"""

    def __init__(self, database: Database):
        self.database = database

    async def get_domain(self, domain_id: str) -> DomainInfo:
        try:
            async with self.database.session() as session:
                result = await session.execute(select(Domain).where(Domain.id == str(domain_id)))
                domain = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read domain {domain_id}: {e}")
            raise StoreReadError(f"Could not read domain {domain_id}", details={"error": str(e)}) from e

        if domain is None:
            raise StoreReadError(
                f"Domain {domain_id} not found",
                not_found=True,
                details={"domain_id": str(domain_id)}
            )
        return DomainInfo(id=str(domain.id), domain_name=domain.domain_name, status=domain.status)

    async def list_active_records(self, domain_id: str) -> List[ZoneRecord]:
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    select(DNSRecord)
                    .where(DNSRecord.domain_id == str(domain_id), DNSRecord.status == "active")
                    .order_by(DNSRecord.created_at, DNSRecord.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read records for domain {domain_id}: {e}")
            raise StoreReadError(f"Could not read records for domain {domain_id}", details={"error": str(e)}) from e

        records = [
            ZoneRecord(
                type=row.type,
                name=row.name,
                value=row.value,
                ttl=row.ttl,
                status=row.status,
                id=str(row.id),
            )
            for row in rows
        ]
        logger.debug(f"Loaded {len(records)} active records for domain {domain_id}")
        return records


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store for local runs and tests"""

    def __init__(self):
        self.domains = {}
        self.records = {}

    def add_domain(self, domain_id: str, domain_name: str, status: str = "active") -> DomainInfo:
        info = DomainInfo(id=str(domain_id), domain_name=domain_name, status=status)
        self.domains[info.id] = info
        self.records.setdefault(info.id, [])
        return info

    def set_records(self, domain_id: str, records: List[ZoneRecord]) -> None:
        self.records[str(domain_id)] = list(records)

    async def get_domain(self, domain_id: str) -> DomainInfo:
        info: Optional[DomainInfo] = self.domains.get(str(domain_id))
        if info is None:
            raise StoreReadError(f"Domain {domain_id} not found", not_found=True)
        return info

    async def list_active_records(self, domain_id: str) -> List[ZoneRecord]:
        return [r for r in self.records.get(str(domain_id), []) if r.is_active]
