from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PerformanceRecordModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = ""
    spend: float = Field(0.0, ge=0)
    impressions: int = Field(0, ge=0)
    leads: int = Field(0, ge=0)
    cost_per_lead: float = Field(0.0, ge=0)
    outbound_ctr: float = Field(0.0, ge=0)
    cost_per_outbound_click: float = Field(0.0, ge=0)
    cpm: float = Field(0.0, ge=0)
    roas_order_volume: float = Field(0.0, ge=0)
    roas_cash_collect: float = Field(0.0, ge=0)
    image_url: Optional[str] = None


class WinnersRequest(BaseModel):
    records: List[PerformanceRecordModel] = Field(default_factory=list)
    ads: List[Dict[str, Any]] = Field(
        default_factory=list, description="Meta Graph API ads with an insights block"
    )
    count: int = Field(3, ge=0)


class RankedCreativeModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    record: PerformanceRecordModel


class WinnersResponse(BaseModel):
    winners: List[PerformanceRecordModel] = Field(default_factory=list)
    ranking: List[RankedCreativeModel] = Field(default_factory=list)
    insights: str = ""
