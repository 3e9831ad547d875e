"""
Tables owned by the sync service: serial counters and the publish audit trail
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, Integer, BigInteger, String, Text, DateTime, JSON, Index

from ..core.database import StateBase


class ZoneSerial(StateBase):
    """Last serial issued for a domain.

    Written before the publish that uses the serial starts, so a crash
    between compile and publish can never cause a serial to be reused.
    """
    __tablename__ = "zone_serials"

    domain_id = Column(String(36), primary_key=True)
    domain_name = Column(String(255), nullable=False)
    last_serial = Column(BigInteger, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ZoneSerial(domain='{self.domain_name}', last_serial={self.last_serial})>"


class PublishJobRecord(StateBase):
    """Terminal publish jobs, kept for audit"""
    __tablename__ = "publish_jobs"

    id = Column(String(36), primary_key=True)
    domain_id = Column(String(36), nullable=False, index=True)
    domain_name = Column(String(255), nullable=True)
    action = Column(String(20), nullable=False)
    record = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False)
    serial = Column(BigInteger, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    error = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_publish_jobs_domain_created', 'domain_id', 'created_at'),
        Index('idx_publish_jobs_status', 'status'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "domain_id": self.domain_id,
            "domain_name": self.domain_name,
            "action": self.action,
            "record": self.record,
            "status": self.status,
            "serial": self.serial,
            "attempts": self.attempts,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
