"""
Dashboard DNS tables, read by the record store adapter
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.database import DashboardBase


class Domain(DashboardBase):
    """A domain registered by a dashboard user"""
    __tablename__ = "domains"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=True, index=True)
    domain_name = Column(String(255), unique=True, index=True, nullable=False)
    status = Column(String(20), default="active", nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    records = relationship("DNSRecord", back_populates="domain", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'pending')", name='check_domain_status'),
    )

    def __repr__(self):
        return f"<Domain(id={self.id}, domain_name='{self.domain_name}', status='{self.status}')>"


class DNSRecord(DashboardBase):
    """A single resource record owned by a domain"""
    __tablename__ = "dns_records"

    id = Column(String(36), primary_key=True)
    domain_id = Column(String(36), ForeignKey("domains.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(10), nullable=False)
    name = Column(String(255), nullable=False)
    value = Column(String(2048), nullable=False)
    ttl = Column(Integer, nullable=False, default=3600)
    status = Column(String(20), default="active", nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    domain = relationship("Domain", back_populates="records")

    __table_args__ = (
        Index('idx_dns_records_domain_status', 'domain_id', 'status'),
        CheckConstraint("type IN ('A', 'AAAA', 'CNAME', 'MX', 'TXT', 'NS', 'SRV')", name='check_record_type'),
        CheckConstraint("status IN ('active', 'inactive')", name='check_record_status'),
    )

    def __repr__(self):
        return f"<DNSRecord(id={self.id}, name='{self.name}', type='{self.type}')>"
