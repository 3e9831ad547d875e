"""
Pydantic schemas for the sync API
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from ..services.publish_job import SyncAction


class RecordPayload(BaseModel):
    """Record as sent by the dashboard after it has been saved"""
    id: Optional[str] = None
    domain_id: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None
    value: Optional[str] = None
    ttl: Optional[int] = None
    status: Optional[str] = None

    class Config:
        extra = "allow"


class DomainPayload(BaseModel):
    id: Optional[str] = None
    domain_name: Optional[str] = None

    class Config:
        extra = "allow"


class SyncRequest(BaseModel):
    """Change notification body: ``{action, record, domain}``"""
    action: SyncAction = Field(..., description="create, update, delete or resync")
    record: Optional[RecordPayload] = Field(None, description="The record that changed")
    domain: Optional[DomainPayload] = Field(None, description="The domain the record belongs to")

    @model_validator(mode="after")
    def check_domain_reference(self):
        if not self.domain_id:
            raise ValueError("record.domain_id or domain.id is required")
        return self

    @property
    def domain_id(self) -> Optional[str]:
        if self.record is not None and self.record.domain_id:
            return self.record.domain_id
        if self.domain is not None and self.domain.id:
            return self.domain.id
        return None


class PublishJobResponse(BaseModel):
    """State of a publish job"""
    id: str
    domain_id: str
    domain_name: Optional[str] = None
    action: str
    record: Optional[Dict[str, Any]] = None
    status: str = Field(..., description="pending, succeeded or failed")
    serial: Optional[int] = None
    attempts: int = 0
    coalesced: bool = False
    error: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    saved: bool = Field(True, description="The record change itself is stored")
    published: bool = Field(False, description="The change is live on the DNS server")
    message: str
    created_at: datetime
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DomainSyncStatus(BaseModel):
    domain_id: str
    domain_name: Optional[str] = None
    state: str = Field(..., description="idle, compiling, publishing or failed")
    in_flight: bool
    pending: int
    last_serial: Optional[int] = None
    last_status: Optional[str] = None
    last_error: Optional[Dict[str, Any]] = None
    last_published_at: Optional[datetime] = None
    cycles: int = 0
    recent_jobs: List[Dict[str, Any]] = []


class HealthResponse(BaseModel):
    status: str
    app: str
    version: str
    orchestrator_running: bool
    timestamp: datetime
