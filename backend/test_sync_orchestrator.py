#!/usr/bin/env python3
"""
Test script for the sync orchestrator: coalescing, retries and serial state
"""

import asyncio

import pytest

from conftest import FakeProbe
from zonesync.core.database import Database
from zonesync.core.exceptions import ValidationError
from zonesync.services.publish_job import JobStatus, SyncAction
from zonesync.services.record_store import InMemoryRecordStore
from zonesync.services.sync_orchestrator import SyncOrchestrator
from zonesync.services.sync_state import SyncStateRepository
from zonesync.services.zone_compiler import ZoneRecord
from zonesync.services.zone_publisher import ZonePublisher

DOMAIN_ID = "7d3f6c1e-0000-4000-8000-000000000001"
WAIT = 5.0


def make_store(status="active", records=None):
    store = InMemoryRecordStore()
    store.add_domain(DOMAIN_ID, "example.com", status=status)
    store.set_records(DOMAIN_ID, records if records is not None else [
        ZoneRecord(type="A", name="@", value="192.0.2.1", ttl=3600),
        ZoneRecord(type="CNAME", name="www", value="example.com", ttl=3600),
        ZoneRecord(type="MX", name="@", value="10 mail.example.com", ttl=3600, status="inactive"),
    ])
    return store


def make_orchestrator(settings, server, store, with_state=True):
    publisher = ZonePublisher(server, FakeProbe(server), settings)
    state = None
    if with_state:
        state = SyncStateRepository(Database(settings.SYNC_STATE_DATABASE_URL, echo=False))
    return SyncOrchestrator(store, publisher, state, settings)


async def stop(orchestrator):
    await orchestrator.shutdown()
    if orchestrator.state is not None:
        await orchestrator.state.database.close()


def test_change_event_publishes_current_records(settings, server):
    """A create event publishes the active record set and records the job"""
    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store())
        await orchestrator.start()
        job = orchestrator.notify_record_changed(
            DOMAIN_ID, "create", {"type": "A", "name": "@", "value": "192.0.2.1", "ttl": 3600}
        )
        assert job.status == JobStatus.PENDING
        await job.wait(WAIT)
        stored = await orchestrator.state.get_job(job.id)
        last_serial = await orchestrator.state.get_last_serial(DOMAIN_ID)
        await stop(orchestrator)
        return job, stored, last_serial

    job, stored, last_serial = asyncio.run(scenario())

    assert job.status == JobStatus.SUCCEEDED
    assert job.published is True
    assert job.domain_name == "example.com"
    assert job.attempts == 1
    assert job.serial == server.served["example.com"] == last_serial
    live = server.live_text("example.com")
    assert "@\t3600\tIN\tA\t192.0.2.1" in live
    assert "www\t3600\tIN\tCNAME\texample.com." in live
    assert "MX" not in live
    assert stored["status"] == "succeeded"
    assert stored["serial"] == job.serial


def test_burst_during_publish_is_coalesced(settings, server):
    """Events arriving mid-publish share one follow-up cycle with the latest records"""
    store = make_store()

    async def scenario():
        server.upload_gate = asyncio.Event()
        server.upload_started = asyncio.Event()
        orchestrator = make_orchestrator(settings, server, store)
        await orchestrator.start()

        first = orchestrator.notify_record_changed(DOMAIN_ID, "update")
        await asyncio.wait_for(server.upload_started.wait(), WAIT)

        store.set_records(DOMAIN_ID, [
            ZoneRecord(type="A", name="@", value="192.0.2.1", ttl=3600),
            ZoneRecord(type="A", name="api", value="192.0.2.40", ttl=300),
        ])
        second = orchestrator.notify_record_changed(DOMAIN_ID, "create")
        third = orchestrator.notify_record_changed(DOMAIN_ID, "delete")
        during = orchestrator.domain_state(DOMAIN_ID)
        uploads_during = len(server.uploads)

        server.upload_gate.set()
        await asyncio.gather(first.wait(WAIT), second.wait(WAIT), third.wait(WAIT))
        after = orchestrator.domain_state(DOMAIN_ID)
        await stop(orchestrator)
        return first, second, third, during, uploads_during, after

    first, second, third, during, uploads_during, after = asyncio.run(scenario())

    assert uploads_during == 1
    assert during["in_flight"] is True
    assert during["state"] == "publishing"
    assert during["pending"] == 2
    assert first.coalesced is False
    assert second.coalesced is True and third.coalesced is True
    assert all(job.status == JobStatus.SUCCEEDED for job in (first, second, third))
    assert second.serial == third.serial > first.serial
    assert len(server.uploads) == 2
    assert after["cycles"] == 2
    assert after["in_flight"] is False
    assert "api\t300\tIN\tA\t192.0.2.40" in server.live_text("example.com")
    assert "CNAME" not in server.live_text("example.com")


def test_transient_reload_failure_is_retried(settings, server):
    """A dropped connection during reload is retried with a fresh serial"""
    server.reload_outcomes = ["transient"]

    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store())
        await orchestrator.start()
        job = orchestrator.notify_record_changed(DOMAIN_ID, "update")
        await job.wait(WAIT)
        await stop(orchestrator)
        return job

    job = asyncio.run(scenario())

    assert job.status == JobStatus.SUCCEEDED
    assert job.attempts == 2
    assert len(server.ran("rndc")) == 2
    checked_serials = sorted({int(path.rsplit("-", 1)[1].split(".")[0]) for path in server.uploads})
    assert len(checked_serials) == 2
    assert job.serial == checked_serials[-1] == server.served["example.com"]
    assert "@\t3600\tIN\tA\t192.0.2.1" in server.live_text("example.com")


def test_exhausted_retries_fail_with_transport_stage(settings, server):
    server.upload_outcomes = ["transient"] * settings.SYNC_MAX_ATTEMPTS

    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store())
        await orchestrator.start()
        job = orchestrator.notify_record_changed(DOMAIN_ID, "update")
        await job.wait(WAIT)
        state = orchestrator.domain_state(DOMAIN_ID)
        await stop(orchestrator)
        return job, state

    job, state = asyncio.run(scenario())

    assert job.status == JobStatus.FAILED
    assert job.attempts == settings.SYNC_MAX_ATTEMPTS
    assert job.error["type"] == "PublishError"
    assert job.error["details"]["stage"] == "transport"
    assert job.error["details"]["last_error"]["type"] == "TransientPublishError"
    assert "publish failed" in job.message
    assert state["last_status"] == "failed"
    assert state["state"] == "idle"
    assert server.live_text("example.com") is None


def test_invalid_record_fails_without_remote_calls(settings, server):
    store = make_store(records=[ZoneRecord(type="A", name="www", value="192.0.2.1", ttl=0)])

    async def scenario():
        orchestrator = make_orchestrator(settings, server, store)
        await orchestrator.start()
        job = orchestrator.notify_record_changed(DOMAIN_ID, "create")
        await job.wait(WAIT)
        await stop(orchestrator)
        return job

    job = asyncio.run(scenario())

    assert job.status == JobStatus.FAILED
    assert job.attempts == 1
    assert job.error["type"] == "ValidationError"
    assert job.error["details"]["field"] == "ttl"
    assert server.commands == []
    assert server.uploads == []


def test_reload_error_is_not_retried(settings, server):
    server.reload_outcomes = ["error"]

    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store())
        await orchestrator.start()
        job = orchestrator.notify_record_changed(DOMAIN_ID, "update")
        await job.wait(WAIT)
        await stop(orchestrator)
        return job

    job = asyncio.run(scenario())

    assert job.status == JobStatus.FAILED
    assert job.attempts == 1
    assert job.error["details"]["stage"] == "reload"
    assert job.error["details"]["rollback_succeeded"] is True
    assert job.serial is not None


def test_missing_domain_fails_with_store_stage(settings, server):
    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store())
        await orchestrator.start()
        job = orchestrator.notify_record_changed("no-such-domain", "create")
        await job.wait(WAIT)
        await stop(orchestrator)
        return job

    job = asyncio.run(scenario())

    assert job.status == JobStatus.FAILED
    assert job.attempts == 1
    assert job.error["details"]["stage"] == "store"
    assert job.error["details"]["not_found"] is True
    assert server.commands == []


def test_inactive_domain_is_not_published_by_default(settings, server):
    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store(status="inactive"))
        await orchestrator.start()
        job = orchestrator.resync_domain(DOMAIN_ID)
        await job.wait(WAIT)
        await stop(orchestrator)
        return job

    job = asyncio.run(scenario())

    assert job.action == SyncAction.RESYNC
    assert job.status == JobStatus.FAILED
    assert job.error["type"] == "ValidationError"
    assert "not active" in job.error["message"]
    assert server.uploads == []


def test_inactive_domain_published_empty_when_enabled(settings, server):
    settings = settings.model_copy(update={"PUBLISH_INACTIVE_DOMAINS": True})

    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store(status="inactive"))
        await orchestrator.start()
        job = orchestrator.resync_domain(DOMAIN_ID)
        await job.wait(WAIT)
        await stop(orchestrator)
        return job

    job = asyncio.run(scenario())

    assert job.status == JobStatus.SUCCEEDED
    live = server.live_text("example.com")
    assert live.rstrip("\n").endswith("; Records")
    assert "192.0.2.1" not in live


def test_serials_survive_restart(settings, server):
    """A new orchestrator continues from the persisted serial"""
    async def publish_once():
        orchestrator = make_orchestrator(settings, server, make_store())
        await orchestrator.start()
        job = orchestrator.resync_domain(DOMAIN_ID)
        await job.wait(WAIT)
        await stop(orchestrator)
        return job.serial

    first = asyncio.run(publish_once())
    # Forget the served zone so the probe cannot seed the counter
    server.served.clear()
    second = asyncio.run(publish_once())

    assert first is not None and second is not None
    assert second > first


def test_serial_is_seeded_from_live_zone(settings, server):
    server.served["example.com"] = 4_000_000_000

    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store(), with_state=False)
        await orchestrator.start()
        job = orchestrator.resync_domain(DOMAIN_ID)
        await job.wait(WAIT)
        await stop(orchestrator)
        return job

    job = asyncio.run(scenario())

    assert job.status == JobStatus.SUCCEEDED
    assert job.serial == 4_000_000_001


def test_unknown_action_is_rejected(settings, server):
    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store(), with_state=False)
        await orchestrator.start()
        try:
            with pytest.raises(ValidationError) as exc_info:
                orchestrator.notify_record_changed(DOMAIN_ID, "rename")
            return exc_info.value
        finally:
            await stop(orchestrator)

    error = asyncio.run(scenario())
    assert error.field == "action"
    assert server.commands == []


def test_domains_publish_independently(settings, server):
    store = make_store()
    store.add_domain("other", "example.org")
    store.set_records("other", [ZoneRecord(type="A", name="@", value="198.51.100.7", ttl=600)])

    async def scenario():
        orchestrator = make_orchestrator(settings, server, store)
        await orchestrator.start()
        jobs = [orchestrator.resync_domain(DOMAIN_ID), orchestrator.resync_domain("other")]
        await asyncio.gather(*(job.wait(WAIT) for job in jobs))
        await stop(orchestrator)
        return jobs

    jobs = asyncio.run(scenario())

    assert [job.status for job in jobs] == [JobStatus.SUCCEEDED, JobStatus.SUCCEEDED]
    assert not any(job.coalesced for job in jobs)
    assert "198.51.100.7" in server.live_text("example.org")
    assert "192.0.2.1" in server.live_text("example.com")


def test_shutdown_fails_in_flight_jobs(settings, server):
    async def scenario():
        server.upload_gate = asyncio.Event()
        server.upload_started = asyncio.Event()
        orchestrator = make_orchestrator(settings, server, make_store(), with_state=False)
        await orchestrator.start()
        job = orchestrator.notify_record_changed(DOMAIN_ID, "update")
        await asyncio.wait_for(server.upload_started.wait(), WAIT)
        queued = orchestrator.notify_record_changed(DOMAIN_ID, "update")
        await stop(orchestrator)
        return job, queued

    job, queued = asyncio.run(scenario())

    assert job.status == JobStatus.FAILED
    assert queued.status == JobStatus.FAILED
    assert job.error["type"] == "TransientPublishError"
    assert server.closed is True


def test_job_history_is_bounded(settings, server):
    settings = settings.model_copy(update={"JOB_HISTORY_LIMIT": 2})

    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store(), with_state=False)
        await orchestrator.start()
        jobs = []
        for _ in range(4):
            job = orchestrator.resync_domain(DOMAIN_ID)
            await job.wait(WAIT)
            jobs.append(job)
        await stop(orchestrator)
        return orchestrator, jobs

    orchestrator, jobs = asyncio.run(scenario())

    assert orchestrator.get_job(jobs[0].id) is None
    assert orchestrator.get_job(jobs[-1].id) is jobs[-1]



def test_finished_domains_keep_one_idle_slot(settings, server):
    """Repeated cycles reuse the domain's slot, which keeps reporting the last publish"""
    async def scenario():
        orchestrator = make_orchestrator(settings, server, make_store(), with_state=False)
        await orchestrator.start()
        jobs = []
        for _ in range(3):
            job = orchestrator.resync_domain(DOMAIN_ID)
            await job.wait(WAIT)
            jobs.append(job)
        state = orchestrator.domain_state(DOMAIN_ID)
        slots = list(orchestrator._slots)
        await stop(orchestrator)
        return jobs, state, slots

    jobs, state, slots = asyncio.run(scenario())

    assert slots == [DOMAIN_ID]
    assert state["state"] == "idle"
    assert state["in_flight"] is False
    assert state["cycles"] == 3
    assert state["last_serial"] == jobs[-1].serial
    assert state["last_status"] == "succeeded"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
