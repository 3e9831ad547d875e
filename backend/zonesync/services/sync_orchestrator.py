"""
Sync orchestrator: turns record change events into zone publishes

Each domain has at most one compile+publish cycle in flight. Events that
arrive while a cycle runs are batched; the batch is served by a single
follow-up cycle that reads the record store when it starts, so a burst of
edits produces one publish reflecting the latest state.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from ..core.config import get_settings
from ..core.exceptions import (
    PublishError,
    StoreReadError,
    TransientPublishError,
    ValidationError,
    ZoneSyncException,
)
from ..core.logging_config import get_sync_logger
from .publish_job import DomainPhase, JobStatus, PublishJob, SyncAction
from .record_store import DomainInfo, RecordStore
from .sync_state import SyncStateRepository
from .zone_compiler import CompiledZone, SOAParameters, compile_zone
from .zone_publisher import PublishResult, ZonePublisher

logger = get_sync_logger()


class _DomainSlot:
    """Per-domain coordination state"""

    def __init__(self, domain_id: str):
        self.domain_id = domain_id
        self.domain_name: Optional[str] = None
        self.lock = asyncio.Lock()
        self.phase = DomainPhase.IDLE
        self.pending: List[PublishJob] = []
        self.task: Optional[asyncio.Task] = None
        self.last_serial: Optional[int] = None
        self.last_status: Optional[JobStatus] = None
        self.last_error: Optional[Dict[str, Any]] = None
        self.last_published_at: Optional[datetime] = None
        self.cycles = 0
        self.attempt_compiled: Optional[CompiledZone] = None

    @property
    def scheduled(self) -> bool:
        return self.task is not None and not self.task.done()


class SyncOrchestrator:
    """Coordinates the record store, compiler and publisher per domain"""

    def __init__(
        self,
        store: RecordStore,
        publisher: ZonePublisher,
        state: Optional[SyncStateRepository] = None,
        settings=None
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.publisher = publisher
        self.state = state
        self.soa = SOAParameters.from_settings(self.settings)
        self.max_attempts = max(1, self.settings.SYNC_MAX_ATTEMPTS)
        self.running = False
        # One slot per domain id, kept after its cycles finish so domain_state can
        # report the last serial and status; bounded by the domains in the store
        self._slots: Dict[str, _DomainSlot] = {}
        self._jobs: "OrderedDict[str, PublishJob]" = OrderedDict()

    async def start(self) -> None:
        if self.running:
            logger.warning("Sync orchestrator is already running")
            return
        if self.state is not None:
            await self.state.init()
        self.running = True
        logger.info("Sync orchestrator started")

    async def shutdown(self) -> None:
        """Cancel in-flight cycles, fail their jobs and close the remote channel"""
        if not self.running:
            return
        self.running = False
        logger.info("Stopping sync orchestrator")

        tasks = [slot.task for slot in self._slots.values() if slot.scheduled]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.publisher.executor.close()
        logger.info("Sync orchestrator stopped")

    # Events
    def notify_record_changed(
        self,
        domain_id: str,
        action: Union[str, SyncAction],
        record: Optional[Mapping[str, Any]] = None
    ) -> PublishJob:
        """Accept a change event and return its job without waiting for the publish"""
        if not self.running:
            raise ZoneSyncException(
                "Sync orchestrator is not running",
                suggestions=["Start the service before sending change events"]
            )
        if not domain_id:
            raise ValidationError("A domain id is required", field="domain_id")
        try:
            action = SyncAction(action)
        except ValueError:
            raise ValidationError(
                f"Unknown action: {action}",
                field="action",
                value=str(action),
                suggestions=[f"Use one of: {', '.join(a.value for a in SyncAction)}"]
            )
        if record is not None and not isinstance(record, Mapping):
            raise ValidationError("Record must be an object", field="record")

        slot = self._slot(str(domain_id))
        job = PublishJob(
            domain_id=slot.domain_id,
            action=action,
            record=dict(record) if record is not None else None,
            domain_name=slot.domain_name,
            coalesced=slot.scheduled,
        )
        self._remember(job)
        slot.pending.append(job)

        if slot.scheduled:
            logger.debug(
                f"Job {job.id} for domain {slot.domain_id} joined the pending batch "
                f"({len(slot.pending)} waiting)"
            )
        else:
            slot.task = asyncio.create_task(self._drain(slot), name=f"zonesync-{slot.domain_id}")
        return job

    def resync_domain(self, domain_id: str) -> PublishJob:
        """Republish a domain from the store without a record change"""
        return self.notify_record_changed(domain_id, SyncAction.RESYNC)

    def get_job(self, job_id: str) -> Optional[PublishJob]:
        return self._jobs.get(job_id)

    def domain_state(self, domain_id: str) -> Dict[str, Any]:
        slot = self._slots.get(str(domain_id))
        if slot is None:
            return {
                "domain_id": str(domain_id),
                "domain_name": None,
                "state": DomainPhase.IDLE.value,
                "in_flight": False,
                "pending": 0,
                "last_serial": None,
                "last_status": None,
                "last_error": None,
                "last_published_at": None,
                "cycles": 0,
            }
        return {
            "domain_id": slot.domain_id,
            "domain_name": slot.domain_name,
            "state": slot.phase.value,
            "in_flight": slot.lock.locked(),
            "pending": len(slot.pending),
            "last_serial": slot.last_serial,
            "last_status": slot.last_status.value if slot.last_status else None,
            "last_error": slot.last_error,
            "last_published_at": slot.last_published_at.isoformat() if slot.last_published_at else None,
            "cycles": slot.cycles,
        }

    def _slot(self, domain_id: str) -> _DomainSlot:
        slot = self._slots.get(domain_id)
        if slot is None:
            slot = self._slots[domain_id] = _DomainSlot(domain_id)
        return slot

    def _remember(self, job: PublishJob) -> None:
        self._jobs[job.id] = job
        limit = self.settings.JOB_HISTORY_LIMIT
        if len(self._jobs) <= limit:
            return
        for job_id in [jid for jid, j in self._jobs.items() if j.is_terminal]:
            if len(self._jobs) <= limit:
                break
            del self._jobs[job_id]

    # Cycles
    async def _drain(self, slot: _DomainSlot) -> None:
        batch: List[PublishJob] = []
        try:
            while slot.pending:
                batch, slot.pending = slot.pending, []
                async with slot.lock:
                    await self._run_cycle(slot, batch)
                batch = []
        except asyncio.CancelledError:
            error = TransientPublishError(
                "Sync orchestrator stopped before the publish finished",
                suggestions=["Resync the domain once the service is back"]
            )
            for job in batch + slot.pending:
                if not job.is_terminal:
                    job.fail(error)
                job.release()
            slot.pending = []
            slot.phase = DomainPhase.IDLE
            raise

    async def _run_cycle(self, slot: _DomainSlot, batch: List[PublishJob]) -> None:
        slot.cycles += 1
        logger.info(
            f"Sync cycle {slot.cycles} for domain {slot.domain_id}: "
            f"{len(batch)} job(s), actions={','.join(sorted({j.action.value for j in batch}))}"
        )

        attempt = 0
        while True:
            attempt += 1
            for job in batch:
                job.attempts = attempt
            slot.attempt_compiled = None
            try:
                compiled, result = await self._attempt(slot, batch)
            except ZoneSyncException as e:
                if e.retryable and attempt < self.max_attempts:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"Attempt {attempt}/{self.max_attempts} for domain {slot.domain_id} failed: "
                        f"{e.message}; retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                await self._finish_failed(slot, batch, self._terminal_error(e, attempt), slot.attempt_compiled)
                return
            except Exception as e:
                logger.exception(f"Unexpected error publishing domain {slot.domain_id}")
                error = ZoneSyncException(f"Unexpected error: {e}", details={"error_type": type(e).__name__})
                await self._finish_failed(slot, batch, error, slot.attempt_compiled)
                return

            await self._finish_succeeded(slot, batch, compiled, result)
            return

    async def _attempt(self, slot: _DomainSlot, batch: List[PublishJob]):
        slot.phase = DomainPhase.COMPILING
        domain = await self.store.get_domain(slot.domain_id)
        slot.domain_name = domain.domain_name
        for job in batch:
            job.domain_name = domain.domain_name

        records = await self._records_for(domain)
        previous = await self._previous_serial(slot, domain)
        compiled = compile_zone(domain.domain_name, records, previous, soa=self.soa)
        slot.attempt_compiled = compiled

        # Issued serials are durable before anything reaches the server
        if self.state is not None:
            try:
                await self.state.record_serial(domain.id, domain.domain_name, compiled.serial)
            except SQLAlchemyError as e:
                raise StoreReadError(
                    f"Could not persist serial for {domain.domain_name}",
                    details={"error": str(e)}
                ) from e
        slot.last_serial = compiled.serial

        slot.phase = DomainPhase.PUBLISHING
        result = await self.publisher.publish(compiled)
        return compiled, result

    async def _records_for(self, domain: DomainInfo):
        if domain.is_active:
            return await self.store.list_active_records(domain.id)
        if self.settings.PUBLISH_INACTIVE_DOMAINS:
            logger.info(f"Domain {domain.domain_name} is {domain.status}, publishing an empty record set")
            return []
        raise ValidationError(
            f"Domain {domain.domain_name} is not active",
            field="status",
            value=domain.status,
            suggestions=["Activate the domain or set PUBLISH_INACTIVE_DOMAINS"]
        )

    async def _previous_serial(self, slot: _DomainSlot, domain: DomainInfo) -> Optional[int]:
        stored = None
        if self.state is not None:
            try:
                stored = await self.state.get_last_serial(domain.id)
            except SQLAlchemyError as e:
                raise StoreReadError(
                    f"Could not read serial state for {domain.domain_name}",
                    details={"error": str(e)}
                ) from e
        if stored is None:
            stored = slot.last_serial
        if stored is not None:
            return stored

        live = await self.publisher.fetch_live_serial(domain.domain_name)
        if live is not None:
            logger.info(f"Seeding serial for {domain.domain_name} from the served zone: {live}")
        return live

    def _backoff(self, attempt: int) -> float:
        delay = self.settings.SYNC_BACKOFF_BASE * (2 ** (attempt - 1))
        return min(delay, self.settings.SYNC_BACKOFF_MAX)

    def _terminal_error(self, error: ZoneSyncException, attempts: int) -> ZoneSyncException:
        if isinstance(error, StoreReadError):
            return PublishError(
                error.message,
                stage=PublishError.STAGE_STORE,
                details={**error.details, "not_found": error.not_found, "attempts": attempts},
                suggestions=error.suggestions
            )
        if error.retryable:
            return PublishError(
                f"Giving up after {attempts} attempt(s): {error.message}",
                stage=PublishError.STAGE_TRANSPORT,
                details={"attempts": attempts, "last_error": error.to_dict()},
                suggestions=["Check SSH connectivity to the DNS server, then resync the domain"]
            )
        return error

    async def _finish_succeeded(
        self,
        slot: _DomainSlot,
        batch: List[PublishJob],
        compiled: CompiledZone,
        result: PublishResult
    ) -> None:
        slot.phase = DomainPhase.IDLE
        slot.last_status = JobStatus.SUCCEEDED
        slot.last_error = None
        slot.last_published_at = datetime.utcnow()
        for job in batch:
            job.succeed(compiled.serial, result.to_dict())
        logger.info(
            f"Published {compiled.domain_name} serial {compiled.serial} "
            f"for {len(batch)} job(s) after {batch[0].attempts} attempt(s)"
        )
        await self._persist(batch)
        for job in batch:
            job.release()

    async def _finish_failed(
        self,
        slot: _DomainSlot,
        batch: List[PublishJob],
        error: ZoneSyncException,
        compiled: Optional[CompiledZone]
    ) -> None:
        slot.phase = DomainPhase.FAILED
        slot.last_status = JobStatus.FAILED
        slot.last_error = error.to_dict()
        serial = compiled.serial if compiled is not None else None
        for job in batch:
            job.fail(error, serial)
        logger.error(f"Sync of domain {slot.domain_name or slot.domain_id} failed: {error.message}")
        await self._persist(batch)
        slot.phase = DomainPhase.IDLE
        for job in batch:
            job.release()

    async def _persist(self, batch: List[PublishJob]) -> None:
        if self.state is None:
            return
        for job in batch:
            try:
                await self.state.save_job(job)
            except SQLAlchemyError as e:
                logger.error(f"Failed to record job {job.id}: {e}")
