from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sse_starlette.sse import EventSourceResponse

from gen.orchestrator import JobOrchestrator
from shared.errors import JobNotFoundError
from shared.events import JobEventBroker

from ..dependencies import get_broker, get_orchestrator
from ..schemas.jobs import JobEventEntry, JobEventListResponse, JobListResponse, JobResponse

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=JobListResponse)
async def list_jobs(
    batch_id: Optional[str] = Query(None),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobListResponse:
    jobs = await orchestrator.list_jobs(batch_id)
    return JobListResponse(jobs=[JobResponse.model_validate(job) for job in jobs])


@router.get("/stream")
async def stream_jobs(
    batch_id: Optional[str] = Query(None),
    event_broker: JobEventBroker = Depends(get_broker),
):
    """Job transitions and notable steps as Server-Sent Events."""

    async def event_generator():
        async for event in event_broker.stream(batch_id):
            yield {
                "event": event.get("level", "info"),
                "data": json.dumps(event),
            }

    return EventSourceResponse(event_generator())


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    try:
        job = await orchestrator.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobResponse.model_validate(job)


@router.get("/{job_id}/events", response_model=JobEventListResponse)
async def list_job_events(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobEventListResponse:
    try:
        events = await orchestrator.list_events(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobEventListResponse(events=[JobEventEntry(**event) for event in events])
