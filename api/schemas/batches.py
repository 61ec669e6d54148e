from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from shared.models import SourceKind

from .winners import PerformanceRecordModel


class BatchCreateRequest(BaseModel):
    formats: List[str] = Field(..., description="Formats to generate: feed, story, reel")
    headline: str = Field(..., max_length=512)
    eyebrow: Optional[str] = Field(None, max_length=255)
    cta: Optional[str] = Field(None, max_length=255)
    description: str = ""
    source_url: Optional[str] = Field(None, max_length=2048)
    source_kind: Optional[SourceKind] = None
    campaign_id: Optional[str] = Field(None, max_length=64)
    seed_records: List[PerformanceRecordModel] = Field(
        default_factory=list, description="Past creatives; without a source_url the winner's image seeds the batch"
    )
    seed_ads: List[Dict[str, Any]] = Field(
        default_factory=list, description="Meta Graph API ads with insights and creative, used like seed_records"
    )


class BatchCreateResponse(BaseModel):
    batch_id: str
    job_ids: List[str] = Field(default_factory=list)
