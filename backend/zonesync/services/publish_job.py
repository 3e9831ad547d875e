"""
Publish jobs: one per change event, tracked until a terminal status
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..core.exceptions import ZoneSyncException


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESYNC = "resync"


class JobStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DomainPhase(str, Enum):
    IDLE = "idle"
    COMPILING = "compiling"
    PUBLISHING = "publishing"
    FAILED = "failed"


@dataclass
class PublishJob:
    domain_id: str
    action: SyncAction
    record: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    domain_name: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    serial: Optional[int] = None
    attempts: int = 0
    coalesced: bool = False
    error: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status != JobStatus.PENDING

    @property
    def published(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @property
    def message(self) -> str:
        """User-facing summary for the dashboard"""
        if self.status == JobStatus.SUCCEEDED:
            return "Saved and published to DNS"
        if self.status == JobStatus.PENDING:
            return "Saved, DNS publish in progress"
        if self.error and self.error.get("type") == "ValidationError":
            return "Saved, but DNS publish failed: the record data is invalid"
        return "Saved, but DNS publish failed; it will be retried with the next change or a resync"

    def succeed(self, serial: int, result: Optional[Dict[str, Any]] = None) -> None:
        self.status = JobStatus.SUCCEEDED
        self.serial = serial
        self.result = result
        self.error = None
        self.finished_at = datetime.utcnow()

    def fail(self, error: ZoneSyncException, serial: Optional[int] = None) -> None:
        self.status = JobStatus.FAILED
        self.error = error.to_dict()
        if serial is not None:
            self.serial = serial
        self.finished_at = datetime.utcnow()

    def release(self) -> None:
        """Wake everyone waiting on the job; called once its outcome is recorded"""
        self._done.set()

    async def wait(self, timeout: Optional[float] = None) -> "PublishJob":
        """Wait until the outcome is final and recorded; raises ``asyncio.TimeoutError``"""
        await asyncio.wait_for(self._done.wait(), timeout=timeout)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "domain_id": self.domain_id,
            "domain_name": self.domain_name,
            "action": self.action.value,
            "record": self.record,
            "status": self.status.value,
            "serial": self.serial,
            "attempts": self.attempts,
            "coalesced": self.coalesced,
            "error": self.error,
            "result": self.result,
            "saved": True,
            "published": self.published,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
