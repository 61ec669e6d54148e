from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from formats.specs import FORMAT_SPECS
from shared.config import get_settings, settings_dict
from shared.db import create_schema

from .dependencies import close_orchestrator
from .routes import batches, jobs, winners


description = """
Creative generation API.

1. Submit a **batch**: copy, an optional source visual and the formats to render.
2. Every format becomes a **job** that generates a background, overlays the
   copy inside the format's safe zones and stores the finished creative.
3. Follow progress through the job list, the per job event history or the
   live event stream.
4. Rank past creatives by performance to pick **winners**.
"""


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if get_settings().auto_create_schema:
        await create_schema()
    yield
    await close_orchestrator()


app = FastAPI(
    title="Creative Pipeline API",
    description=description,
    version="0.1.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "batches", "description": "Batch submission"},
        {"name": "jobs", "description": "Job status and event streams"},
        {"name": "winners", "description": "Winning creative selection"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(batches.router)
app.include_router(jobs.router)
app.include_router(winners.router)
app.mount("/metrics", make_asgi_app())


@app.get("/health", tags=["meta"])
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/settings", tags=["meta"])
def settings() -> dict:
    return settings_dict()


@app.get("/formats", tags=["meta"])
def formats() -> dict[str, list[dict]]:
    return {"formats": [spec.to_dict() for spec in FORMAT_SPECS.values()]}
