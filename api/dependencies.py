from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status

from gen.config import GenerationConfig
from gen.orchestrator import JobOrchestrator
from shared.config import get_settings
from shared.db import get_session_factory
from shared.errors import ConfigurationError
from shared.events import JobEventBroker, broker

_orchestrator: Optional[JobOrchestrator] = None


def get_broker() -> JobEventBroker:
    return broker


def build_orchestrator() -> JobOrchestrator:
    config = GenerationConfig.from_settings(get_settings())
    dispatcher = None
    if config.dispatch_mode == "celery":
        from workers.tasks import dispatch_batch

        dispatcher = dispatch_batch
    return JobOrchestrator(
        config,
        get_session_factory(),
        dispatcher=dispatcher,
        event_broker=broker,
    )


def get_orchestrator() -> JobOrchestrator:
    """Shared orchestrator; a configuration problem is reported as 503."""

    global _orchestrator
    if _orchestrator is None:
        try:
            _orchestrator = build_orchestrator()
        except ConfigurationError as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _orchestrator


async def close_orchestrator() -> None:
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.aclose()
        _orchestrator = None
