"""Persistence of batches and job records with forward-only status changes."""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from formats.specs import CreativeFormat
from shared.errors import InvalidTransition, JobNotFoundError
from shared.events import JobEventBroker, emit_event, serialize_event
from shared.models import (
    ALLOWED_PREDECESSORS,
    TERMINAL_STATUSES,
    CreativeBatch,
    CreativeJob,
    JobEvent,
    JobStatus,
    SourceKind,
    _utcnow,
)

MUTABLE_FIELDS = frozenset({"prompt", "provider_handle", "image_url", "result_url", "error_message"})


@dataclass(frozen=True)
class JobRecord:
    """Read-only snapshot of a job row."""

    id: str
    batch_id: str
    format: CreativeFormat
    status: JobStatus
    prompt: Optional[str]
    provider_handle: Optional[str]
    image_url: Optional[str]
    result_url: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: CreativeJob) -> "JobRecord":
        return cls(
            id=row.id,
            batch_id=row.batch_id,
            format=row.format,
            status=row.status,
            prompt=row.prompt,
            provider_handle=row.provider_handle,
            image_url=row.image_url,
            result_url=row.result_url,
            error_message=row.error_message,
            created_at=row.created_at,
            updated_at=row.updated_at,
            started_at=row.started_at,
            finished_at=row.finished_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class BatchRecord:
    id: str
    campaign_id: Optional[str]
    source_url: Optional[str]
    source_kind: SourceKind
    eyebrow: Optional[str]
    headline: str
    cta: Optional[str]
    description: str
    design_system: Optional[Dict[str, Any]]
    created_at: datetime

    @classmethod
    def from_row(cls, row: CreativeBatch) -> "BatchRecord":
        return cls(
            id=row.id,
            campaign_id=row.campaign_id,
            source_url=row.source_url,
            source_kind=row.source_kind,
            eyebrow=row.eyebrow,
            headline=row.headline,
            cta=row.cta,
            description=row.description or "",
            design_system=row.design_system,
            created_at=row.created_at,
        )


class JobStore:
    """Owns every write to batches, jobs and their events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        event_broker: Optional[JobEventBroker] = None,
    ) -> None:
        self.session_factory = session_factory
        self.event_broker = event_broker

    async def create_batch(
        self,
        formats: Sequence[CreativeFormat],
        *,
        headline: str,
        eyebrow: Optional[str] = None,
        cta: Optional[str] = None,
        description: str = "",
        source_url: Optional[str] = None,
        source_kind: SourceKind = SourceKind.NONE,
        campaign_id: Optional[str] = None,
    ) -> Tuple[str, List[str]]:
        """Insert the batch and one pending job per format in one transaction."""

        batch_id = str(uuid.uuid4())
        job_ids = [str(uuid.uuid4()) for _ in formats]
        async with self.session_factory() as session:
            async with session.begin():
                session.add(
                    CreativeBatch(
                        id=batch_id,
                        campaign_id=campaign_id,
                        source_url=source_url,
                        source_kind=source_kind,
                        eyebrow=eyebrow,
                        headline=headline,
                        cta=cta,
                        description=description,
                    )
                )
                # flush the batch first so the job foreign keys resolve
                await session.flush()
                for job_id, fmt in zip(job_ids, formats):
                    now = _utcnow()
                    session.add(
                        CreativeJob(
                            id=job_id,
                            batch_id=batch_id,
                            format=fmt,
                            status=JobStatus.PENDING,
                            created_at=now,
                            updated_at=now,
                        )
                    )

            for job_id, fmt in zip(job_ids, formats):
                await emit_event(
                    session,
                    job_id,
                    batch_id,
                    f"Job queued for {fmt.value}",
                    metadata={"status": JobStatus.PENDING.value, "format": fmt.value},
                    event_broker=self.event_broker,
                )
        return batch_id, job_ids

    async def _load_job(self, session: AsyncSession, job_id: str) -> CreativeJob:
        job = await session.get(CreativeJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        message: Optional[str] = None,
        level: Optional[str] = None,
        **fields: Any,
    ) -> JobRecord:
        """Move a job forward to ``status`` and record the change as an event.

        The update only applies while the job is in one of the statuses allowed
        to precede ``status``; otherwise :class:`InvalidTransition` is raised
        and nothing changes.
        """

        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be set on a transition: {sorted(unknown)}")

        allowed = ALLOWED_PREDECESSORS[status]
        now = _utcnow()
        values: Dict[str, Any] = {"status": status, "updated_at": now, **fields}
        if status is JobStatus.PROCESSING:
            values["started_at"] = now
        if status in TERMINAL_STATUSES:
            values["finished_at"] = now

        async with self.session_factory() as session:
            result = await session.execute(
                update(CreativeJob)
                .where(CreativeJob.id == job_id, CreativeJob.status.in_(list(allowed)))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                current = await self._load_job(session, job_id)
                raise InvalidTransition(
                    f"Job {job_id} cannot move from {current.status.value} to {status.value}"
                )

            job = await self._load_job(session, job_id)
            record = JobRecord.from_row(job)
            metadata: Dict[str, Any] = {"status": status.value, "format": record.format.value}
            metadata.update({key: value for key, value in fields.items() if value is not None})
            await emit_event(
                session,
                record.id,
                record.batch_id,
                message or f"Job {status.value}",
                level=level or ("error" if status is JobStatus.FAILED else "info"),
                metadata=metadata,
                event_broker=self.event_broker,
            )
        return record

    async def record_event(
        self,
        job_id: str,
        batch_id: str,
        message: str,
        *,
        level: str = "info",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self.session_factory() as session:
            await emit_event(
                session,
                job_id,
                batch_id,
                message,
                level=level,
                metadata=metadata,
                event_broker=self.event_broker,
            )

    async def get_job(self, job_id: str) -> JobRecord:
        async with self.session_factory() as session:
            return JobRecord.from_row(await self._load_job(session, job_id))

    async def list_jobs(self, batch_id: Optional[str] = None) -> List[JobRecord]:
        """Jobs newest first, optionally restricted to one batch."""

        statement = select(CreativeJob).order_by(CreativeJob.created_at.desc())
        if batch_id is not None:
            statement = statement.where(CreativeJob.batch_id == batch_id)
        async with self.session_factory() as session:
            rows = (await session.execute(statement)).scalars().all()
        return [JobRecord.from_row(row) for row in rows]

    async def get_batch(self, batch_id: str) -> BatchRecord:
        async with self.session_factory() as session:
            batch = await session.get(CreativeBatch, batch_id)
            if batch is None:
                raise JobNotFoundError(batch_id, kind="batch")
            return BatchRecord.from_row(batch)

    async def save_design_system(self, batch_id: str, design_system: Dict[str, Any]) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(CreativeBatch)
                .where(CreativeBatch.id == batch_id)
                .values(design_system=design_system)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def list_events(self, job_id: str) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            await self._load_job(session, job_id)
            rows = (
                await session.execute(
                    select(JobEvent)
                    .where(JobEvent.job_id == job_id)
                    .order_by(JobEvent.created_at.asc())
                )
            ).scalars().all()
        return [serialize_event(row) for row in rows]
