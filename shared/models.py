"""Database models that capture the creative generation lifecycle."""
from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import declarative_base, relationship

from formats.specs import CreativeFormat


Base = declarative_base()


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Statuses a job may be in immediately before moving to the key status.
ALLOWED_PREDECESSORS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(),
    JobStatus.PROCESSING: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset({JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING, JobStatus.PROCESSING}),
}


class SourceKind(str, enum.Enum):
    IMAGE = "image"
    LANDING_PAGE = "landing_page"
    NONE = "none"


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""

    return datetime.now(UTC)


class CreativeBatch(Base):
    __tablename__ = "creative_batches"

    id = Column(String(36), primary_key=True)
    campaign_id = Column(String(64))
    source_url = Column(String(2048))
    source_kind = Column(Enum(SourceKind), default=SourceKind.NONE, nullable=False)
    eyebrow = Column(String(255))
    headline = Column(String(512), nullable=False)
    cta = Column(String(255))
    description = Column(Text, default="")
    design_system = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    jobs = relationship("CreativeJob", back_populates="batch", cascade="all, delete-orphan")


class CreativeJob(Base):
    __tablename__ = "creative_jobs"

    id = Column(String(36), primary_key=True)
    batch_id = Column(String(36), ForeignKey("creative_batches.id"), nullable=False, index=True)
    format = Column(Enum(CreativeFormat), nullable=False)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False)
    prompt = Column(Text)
    provider_handle = Column(String(128))
    image_url = Column(String(2048))
    result_url = Column(String(2048))
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))

    batch = relationship("CreativeBatch", back_populates="jobs")
    events = relationship("JobEvent", back_populates="job", cascade="all, delete-orphan")


class JobEvent(Base):
    __tablename__ = "job_events"

    id = Column(String(36), primary_key=True)
    job_id = Column(String(36), ForeignKey("creative_jobs.id"), nullable=False, index=True)
    batch_id = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    level = Column(String(16), default="info", nullable=False)
    message = Column(Text, nullable=False)
    data = Column("metadata", JSON, default=dict, nullable=False)

    job = relationship("CreativeJob", back_populates="events")
