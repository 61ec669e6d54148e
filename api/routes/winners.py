from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from selection.winners import (
    PerformanceRecord,
    identify_winning_creatives,
    performance_from_insights,
    rank_creatives,
    winning_creative_insights,
)

from ..schemas.winners import (
    PerformanceRecordModel,
    RankedCreativeModel,
    WinnersRequest,
    WinnersResponse,
)

router = APIRouter(prefix="/winners", tags=["winners"])


@router.post("", response_model=WinnersResponse)
def select_winners(payload: WinnersRequest) -> WinnersResponse:
    try:
        records = [PerformanceRecord(**item.model_dump()) for item in payload.records]
        records.extend(performance_from_insights(ad) for ad in payload.ads)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    winners = identify_winning_creatives(records, payload.count)
    return WinnersResponse(
        winners=[PerformanceRecordModel.model_validate(record) for record in winners],
        ranking=[RankedCreativeModel.model_validate(ranked) for ranked in rank_creatives(records)],
        insights=winning_creative_insights(winners),
    )
