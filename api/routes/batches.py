from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from gen.orchestrator import BatchRequest, JobOrchestrator
from selection.winners import PerformanceRecord, performance_from_insights
from shared.errors import ConfigurationError, DispatchError, InvalidRequestError

from ..dependencies import get_orchestrator
from ..schemas.batches import BatchCreateRequest, BatchCreateResponse

router = APIRouter(prefix="/batches", tags=["batches"])


@router.post("", response_model=BatchCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_batch(
    payload: BatchCreateRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> BatchCreateResponse:
    try:
        seeds = [PerformanceRecord(**item.model_dump()) for item in payload.seed_records]
        seeds.extend(performance_from_insights(ad) for ad in payload.seed_ads)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    request = BatchRequest(
        formats=payload.formats,
        headline=payload.headline,
        eyebrow=payload.eyebrow,
        cta=payload.cta,
        description=payload.description,
        source_url=payload.source_url,
        source_kind=payload.source_kind,
        campaign_id=payload.campaign_id,
        seed_records=seeds,
    )
    try:
        submission = await orchestrator.enqueue_batch(request)
    except InvalidRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (ConfigurationError, DispatchError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return BatchCreateResponse(batch_id=submission.batch_id, job_ids=submission.job_ids)
