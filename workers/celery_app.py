"""Celery application configuration."""
from __future__ import annotations

from celery import Celery
from kombu import Queue

from shared.config import get_settings

settings = get_settings()

celery_app = Celery(
    "creatives",
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=["workers.tasks"],
)

celery_app.conf.task_default_queue = "creatives"
celery_app.conf.task_queues = (Queue("creatives", routing_key="creatives"),)
celery_app.conf.task_routes = {"creatives.*": {"queue": "creatives", "routing_key": "creatives"}}
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)
