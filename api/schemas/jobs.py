from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from formats.specs import CreativeFormat
from shared.models import JobStatus


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    batch_id: str
    format: CreativeFormat
    status: JobStatus
    prompt: Optional[str] = None
    provider_handle: Optional[str] = None
    image_url: Optional[str] = None
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class JobListResponse(BaseModel):
    jobs: List[JobResponse] = Field(default_factory=list)


class JobEventEntry(BaseModel):
    id: str
    job_id: str
    batch_id: str
    created_at: datetime
    level: str
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class JobEventListResponse(BaseModel):
    events: List[JobEventEntry] = Field(default_factory=list)
