"""
Zone sync services
"""

from .publish_job import DomainPhase, JobStatus, PublishJob, SyncAction
from .record_store import DomainInfo, InMemoryRecordStore, RecordStore, SQLRecordStore
from .remote_executor import CommandResult, RemoteExecutor, SSHExecutor
from .soa_probe import SOAProbe
from .sync_orchestrator import SyncOrchestrator
from .sync_state import SyncStateRepository
from .zone_compiler import CompiledZone, ZoneRecord, ZoneSnapshot, compile_zone, next_serial
from .zone_publisher import PublishResult, ZonePublisher

__all__ = [
    "CommandResult",
    "CompiledZone",
    "DomainInfo",
    "DomainPhase",
    "InMemoryRecordStore",
    "JobStatus",
    "PublishJob",
    "PublishResult",
    "RecordStore",
    "RemoteExecutor",
    "SOAProbe",
    "SQLRecordStore",
    "SSHExecutor",
    "SyncAction",
    "SyncOrchestrator",
    "SyncStateRepository",
    "ZonePublisher",
    "ZoneRecord",
    "ZoneSnapshot",
    "compile_zone",
    "next_serial",
]
