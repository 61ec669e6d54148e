"""Fan a creative request out into one generation job per format."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from design.cache import DesignSystemCache
from design.extractor import DesignSystem, DesignSystemExtractor
from formats.layout import compute_overlay_layout
from formats.specs import CreativeFormat, get_format_spec, parse_format
from providers.base import ImageRequest, OverlayRequest, ProviderAdapter
from providers.factory import build_image_provider, build_overlay_provider, build_vision_provider
from providers.polling import PollPolicy, RetryHook, await_output, submit_with_retry
from selection.winners import PerformanceRecord, winning_seed
from shared.errors import (
    CreativePipelineError,
    DispatchError,
    InvalidRequestError,
    InvalidTransition,
    ProviderTransportError,
)
from shared.events import JobEventBroker
from shared.models import JobStatus, SourceKind

from . import telemetry
from .config import GenerationConfig
from .prompts import build_image_prompt
from .store import BatchRecord, JobRecord, JobStore

logger = logging.getLogger(__name__)

Dispatcher = Callable[[str], None]


def _absolute_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidRequestError(f"Source reference must be an absolute http(s) URL: {url}")
    return url


@dataclass(frozen=True)
class BatchRequest:
    """What the caller wants generated: copy, formats and an optional source."""

    formats: Sequence[Union[str, CreativeFormat]]
    headline: str
    eyebrow: Optional[str] = None
    cta: Optional[str] = None
    description: str = ""
    source_url: Optional[str] = None
    source_kind: Optional[Union[str, SourceKind]] = None
    campaign_id: Optional[str] = None
    seed_records: Sequence[PerformanceRecord] = ()

    def normalized_formats(self) -> List[CreativeFormat]:
        if not self.formats:
            raise InvalidRequestError("At least one format is required")
        formats: List[CreativeFormat] = []
        for value in self.formats:
            try:
                fmt = parse_format(value)
            except ValueError as exc:
                raise InvalidRequestError(str(exc)) from exc
            if fmt not in formats:
                formats.append(fmt)
        return formats

    def seed_source(self) -> str:
        """Creative image of the winning seed record."""

        winner = winning_seed(self.seed_records)
        if winner is None:
            raise InvalidRequestError("No winning creative among the seed records")
        if not winner.image_url:
            raise InvalidRequestError(f"Winning creative {winner.id} has no image")
        return _absolute_url(winner.image_url)

    def normalized_source(self) -> tuple[Optional[str], SourceKind]:
        """Explicit source first, else the winning seed creative, else none."""

        url = (self.source_url or "").strip() or None
        if url is None and self.seed_records:
            return self.seed_source(), SourceKind.IMAGE
        if url is None:
            return None, SourceKind.NONE
        url = _absolute_url(url)
        if self.source_kind is None:
            return url, SourceKind.LANDING_PAGE
        try:
            kind = SourceKind(self.source_kind)
        except ValueError as exc:
            raise InvalidRequestError(f"Unknown source kind '{self.source_kind}'") from exc
        if kind is SourceKind.NONE:
            raise InvalidRequestError("Source kind 'none' cannot carry a source URL")
        return url, kind


@dataclass(frozen=True)
class BatchSubmission:
    batch_id: str
    job_ids: List[str] = field(default_factory=list)


class JobOrchestrator:
    """Creates jobs, runs them against the providers and records the outcome.

    Every job of a batch shares one design system extraction.  Jobs run
    concurrently and fail independently: a provider problem marks only the
    affected job as failed.  By default batches run as asyncio tasks on the
    current loop; pass ``dispatcher`` to hand them to another runner (Celery)
    which then calls :meth:`run_batch`.
    """

    def __init__(
        self,
        config: GenerationConfig,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        store: Optional[JobStore] = None,
        image_provider: Optional[ProviderAdapter[ImageRequest]] = None,
        overlay_provider: Optional[ProviderAdapter[OverlayRequest]] = None,
        extractor: Optional[DesignSystemExtractor] = None,
        dispatcher: Optional[Dispatcher] = None,
        event_broker: Optional[JobEventBroker] = None,
    ) -> None:
        config.validate_for()
        if store is None:
            if session_factory is None:
                raise ValueError("Either a store or a session factory is required")
            store = JobStore(session_factory, event_broker=event_broker)
        self.config = config
        self.store = store
        self.image_provider = image_provider or build_image_provider(config)
        self.overlay_provider = overlay_provider or build_overlay_provider(config)
        self.extractor = extractor or DesignSystemExtractor(
            vision=build_vision_provider(config),
            vision_policy=config.vision_policy,
            cache=DesignSystemCache(redis_url=config.cache_url, ttl_seconds=config.cache_ttl_seconds),
            palette_size=config.palette_size,
        )
        self.dispatcher = dispatcher
        self._batch_tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._design_tasks: Dict[str, "asyncio.Task[DesignSystem]"] = {}

    # -- submission -----------------------------------------------------

    async def enqueue_batch(self, request: BatchRequest) -> BatchSubmission:
        formats = request.normalized_formats()
        source_url, source_kind = request.normalized_source()
        if not request.headline or not request.headline.strip():
            raise InvalidRequestError("A headline is required")
        self.config.validate_for(formats)

        batch_id, job_ids = await self.store.create_batch(
            formats,
            headline=request.headline.strip(),
            eyebrow=request.eyebrow,
            cta=request.cta,
            description=request.description or "",
            source_url=source_url,
            source_kind=source_kind,
            campaign_id=request.campaign_id,
        )
        logger.info("Accepted batch %s with %d job(s): %s", batch_id, len(job_ids), [f.value for f in formats])
        try:
            self._dispatch(batch_id)
        except Exception as exc:  # noqa: BLE001
            error = f"Dispatch failed: {exc}"
            logger.error("Batch %s could not be dispatched: %s", batch_id, exc)
            for job in await self.store.list_jobs(batch_id):
                failed = await self._fail(job, error)
                telemetry.record_outcome(job.format.value, failed.status.value)
            raise DispatchError(error) from exc
        return BatchSubmission(batch_id=batch_id, job_ids=job_ids)

    async def submit_batch(self, request: BatchRequest) -> List[str]:
        """Create one pending job per requested format and schedule them.

        Returns the job ids without waiting for any generation work.
        """

        submission = await self.enqueue_batch(request)
        return submission.job_ids

    def _dispatch(self, batch_id: str) -> None:
        if self.dispatcher is not None:
            self.dispatcher(batch_id)
            return
        task = asyncio.get_running_loop().create_task(self.run_batch(batch_id), name=f"batch-{batch_id}")
        self._batch_tasks[batch_id] = task
        task.add_done_callback(lambda done: self._forget_batch(batch_id, done))

    def _forget_batch(self, batch_id: str, task: "asyncio.Task[None]") -> None:
        self._batch_tasks.pop(batch_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Batch %s stopped unexpectedly", batch_id, exc_info=task.exception())

    async def wait_for_batch(self, batch_id: str) -> List[JobRecord]:
        task = self._batch_tasks.get(batch_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.store.list_jobs(batch_id)

    # -- queries ----------------------------------------------------------

    async def get_job(self, job_id: str) -> JobRecord:
        return await self.store.get_job(job_id)

    async def list_jobs(self, batch_id: Optional[str] = None) -> List[JobRecord]:
        return await self.store.list_jobs(batch_id)

    async def list_events(self, job_id: str) -> List[Dict[str, Any]]:
        return await self.store.list_events(job_id)

    # -- execution --------------------------------------------------------

    async def run_batch(self, batch_id: str) -> List[JobRecord]:
        batch = await self.store.get_batch(batch_id)
        jobs = [job for job in await self.store.list_jobs(batch_id) if job.status is JobStatus.PENDING]
        jobs.sort(key=lambda job: job.created_at)
        try:
            results = await asyncio.gather(
                *(self.run_job(job, batch) for job in jobs), return_exceptions=True
            )
        finally:
            self._design_tasks.pop(batch_id, None)
        for job, result in zip(jobs, results):
            if isinstance(result, BaseException):
                logger.error("Job %s could not be finalised", job.id, exc_info=result)
        return await self.store.list_jobs(batch_id)

    async def _extract_design(self, batch: BatchRecord) -> DesignSystem:
        async def warn(message: str, metadata: Dict[str, Any]) -> None:
            for job in await self.store.list_jobs(batch.id):
                await self.store.record_event(job.id, batch.id, message, level="warning", metadata=metadata)

        design = await self.extractor.extract(batch.source_url, batch.source_kind, on_warning=warn)
        await self.store.save_design_system(batch.id, design.to_dict())
        return design

    async def _design_system_for(self, batch: BatchRecord) -> DesignSystem:
        if batch.design_system is not None:
            return DesignSystem.from_dict(batch.design_system)
        task = self._design_tasks.get(batch.id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._extract_design(batch))
            self._design_tasks[batch.id] = task
        return await asyncio.shield(task)

    def _retry_hook(self, job: JobRecord) -> RetryHook:
        async def on_retry(exc: ProviderTransportError, attempt: int) -> None:
            telemetry.record_retry(exc.provider or "")
            logger.warning("Transport error for job %s (attempt %d): %s", job.id, attempt, exc)
            await self.store.record_event(
                job.id,
                job.batch_id,
                f"Transient {exc.provider or 'provider'} error, retrying",
                level="warning",
                metadata={"attempt": attempt, "error": str(exc), "status_code": exc.status_code},
            )

        return on_retry

    async def _generate(
        self, adapter: ProviderAdapter[Any], request: Any, policy: PollPolicy, job: JobRecord
    ) -> str:
        hook = self._retry_hook(job)
        handle = await submit_with_retry(adapter, request, policy, on_retry=hook)
        return await await_output(adapter, handle, policy, on_retry=hook)

    async def run_job(self, job: JobRecord, batch: BatchRecord) -> JobRecord:
        """Run one job through extraction, image generation and overlay."""

        spec = get_format_spec(job.format)
        image_url: Optional[str] = None
        try:
            design = await self._design_system_for(batch)
            prompt = build_image_prompt(
                design,
                spec,
                headline=batch.headline,
                eyebrow=batch.eyebrow,
                cta=batch.cta,
                direction=batch.description,
            )

            hook = self._retry_hook(job)
            policy = self.config.image_policy
            handle = await submit_with_retry(
                self.image_provider, ImageRequest(prompt=prompt, spec=spec), policy, on_retry=hook
            )
            await self.store.transition(
                job.id,
                JobStatus.PROCESSING,
                prompt=prompt,
                provider_handle=handle.id,
                message=f"Image generation started on {handle.provider}",
            )
            image_url = await await_output(self.image_provider, handle, policy, on_retry=hook)
            await self.store.record_event(
                job.id, job.batch_id, "Background image ready", metadata={"image_url": image_url}
            )

            overlay = OverlayRequest(
                background_url=image_url,
                headline=batch.headline,
                spec=spec,
                layout=compute_overlay_layout(spec),
                eyebrow=batch.eyebrow,
                cta=batch.cta,
                accent_color=design.accent_color,
                key_prefix=f"{self.config.asset_key_prefix}/{batch.id}",
            )
            result_url = await self._generate(
                self.overlay_provider, overlay, self.config.overlay_policy, job
            )
            record = await self.store.transition(
                job.id,
                JobStatus.COMPLETED,
                image_url=image_url,
                result_url=result_url,
                message="Creative ready",
            )
        except InvalidTransition:
            raise
        except CreativePipelineError as exc:
            record = await self._fail(job, str(exc) or type(exc).__name__, image_url=image_url)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error in job %s", job.id)
            record = await self._fail(job, f"{type(exc).__name__}: {exc}", image_url=image_url)
        else:
            logger.info("Job %s (%s) completed: %s", job.id, job.format.value, record.result_url)
        telemetry.record_outcome(job.format.value, record.status.value)
        return record

    async def _fail(self, job: JobRecord, error: str, *, image_url: Optional[str] = None) -> JobRecord:
        """Record the failure; a failed database write is tried once more."""

        logger.warning("Job %s (%s) failed: %s", job.id, job.format.value, error)
        try:
            return await self._mark_failed(job, error, image_url)
        except SQLAlchemyError:
            logger.warning("Could not record failure of job %s, retrying", job.id, exc_info=True)
            return await self._mark_failed(job, error, image_url)

    async def _mark_failed(self, job: JobRecord, error: str, image_url: Optional[str]) -> JobRecord:
        return await self.store.transition(
            job.id,
            JobStatus.FAILED,
            error_message=error,
            image_url=image_url,
            message=f"Job failed: {error}",
        )

    async def aclose(self) -> None:
        for task in list(self._batch_tasks.values()):
            await asyncio.gather(task, return_exceptions=True)
        await self.image_provider.aclose()
        await self.overlay_provider.aclose()
        await self.extractor.aclose()
        if self.extractor.vision is not None:
            await self.extractor.vision.aclose()
