"""Celery tasks that run creative batches outside the API process."""
from __future__ import annotations

import asyncio
from typing import Dict, List

from celery import shared_task
from celery.utils.log import get_task_logger
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from gen.config import GenerationConfig
from gen.orchestrator import JobOrchestrator
from shared.config import get_settings

from .celery_app import celery_app

logger = get_task_logger(__name__)


async def execute_batch(batch_id: str) -> List[Dict[str, str]]:
    """Run every pending job of ``batch_id`` on a dedicated engine."""

    settings = get_settings()
    engine = create_async_engine(settings.database_url, future=True)
    orchestrator = JobOrchestrator(
        GenerationConfig.from_settings(settings),
        async_sessionmaker(engine, expire_on_commit=False),
    )
    try:
        jobs = await orchestrator.run_batch(batch_id)
    finally:
        await orchestrator.aclose()
        await engine.dispose()
    return [{"id": job.id, "format": job.format.value, "status": job.status.value} for job in jobs]


@shared_task(name="creatives.run_batch")
def run_batch_task(batch_id: str) -> List[Dict[str, str]]:
    logger.info("Running creative batch %s", batch_id)
    summary = asyncio.run(execute_batch(batch_id))
    failed = [job["id"] for job in summary if job["status"] == "failed"]
    if failed:
        logger.warning("Batch %s finished with %d failed job(s): %s", batch_id, len(failed), failed)
    else:
        logger.info("Batch %s finished", batch_id)
    return summary


def dispatch_batch(batch_id: str) -> None:
    """Hand ``batch_id`` to a worker; used as the orchestrator's dispatcher."""

    celery_app.send_task("creatives.run_batch", args=[batch_id])
