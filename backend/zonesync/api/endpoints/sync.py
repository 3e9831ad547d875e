"""
Zone sync endpoints
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ...core.config import get_settings
from ...core.logging_config import get_logger
from ...core.security import verify_sync_token
from ...schemas.sync import DomainSyncStatus, PublishJobResponse, SyncRequest
from ...services.publish_job import PublishJob
from ...services.sync_orchestrator import SyncOrchestrator

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_sync_token)])


def get_orchestrator(request: Request) -> SyncOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None or not orchestrator.running:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync service is not running")
    return orchestrator


async def _job_response(job: PublishJob, response: Response, wait: bool) -> dict:
    if wait and not job.is_terminal:
        try:
            await job.wait(timeout=get_settings().SYNC_REQUEST_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Job {job.id} still pending after the request timeout")
    if not job.is_terminal:
        response.status_code = status.HTTP_202_ACCEPTED
    return job.to_dict()


@router.post("", response_model=PublishJobResponse)
async def sync_dns(
    body: SyncRequest,
    response: Response,
    wait: bool = Query(True, description="Wait for the publish to finish"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Notify a record change and publish the domain's zone"""
    record = body.record.model_dump(exclude_none=True) if body.record else None
    logger.info(f"Sync requested: action={body.action.value} domain={body.domain_id}")
    job = orchestrator.notify_record_changed(body.domain_id, body.action, record)
    return await _job_response(job, response, wait)


@router.get("/jobs/{job_id}", response_model=PublishJobResponse)
async def get_job(job_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Get a publish job by id"""
    job = orchestrator.get_job(job_id)
    if job is not None:
        return job.to_dict()

    stored = await orchestrator.state.get_job(job_id) if orchestrator.state is not None else None
    if stored is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    published = stored["status"] == "succeeded"
    stored.update({
        "saved": True,
        "published": published,
        "message": "Saved and published to DNS" if published else "Saved, but DNS publish failed",
    })
    return stored


@router.post("/domains/{domain_id}/resync", response_model=PublishJobResponse)
async def resync_domain(
    domain_id: str,
    response: Response,
    wait: bool = Query(True, description="Wait for the publish to finish"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Republish a domain from the record store"""
    logger.info(f"Resync requested for domain {domain_id}")
    job = orchestrator.resync_domain(domain_id)
    return await _job_response(job, response, wait)


@router.get("/domains/{domain_id}/status", response_model=DomainSyncStatus)
async def domain_status(
    domain_id: str,
    limit: int = Query(10, ge=0, le=100, description="Number of recent jobs to include"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Current sync state of a domain"""
    state = orchestrator.domain_state(domain_id)
    if orchestrator.state is not None and limit:
        state["recent_jobs"] = await orchestrator.state.recent_jobs(domain_id, limit)
    return state
