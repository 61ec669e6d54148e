from __future__ import annotations

import asyncio
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest
from sqlalchemy.exc import OperationalError

from design.extractor import DesignSystem
from formats.specs import CreativeFormat
from gen.orchestrator import BatchRequest, JobOrchestrator
from gen.tests.fakes import (
    CountingExtractor,
    RecordingOverlayProvider,
    ScriptedImageProvider,
    fast_config,
    open_store,
)
from providers.base import Failed, InProgress, Succeeded
from providers.polling import PollPolicy
from selection.winners import PerformanceRecord
from shared.errors import (
    ConfigurationError,
    DispatchError,
    InvalidRequestError,
    ProviderTransportError,
    SourceAssetError,
)
from shared.events import JobEventBroker
from shared.models import JobStatus, SourceKind


def _orchestrator(store, image=None, overlay=None, extractor=None, **config) -> JobOrchestrator:
    return JobOrchestrator(
        fast_config(**config),
        store=store,
        image_provider=image or ScriptedImageProvider(),
        overlay_provider=overlay or RecordingOverlayProvider(),
        extractor=extractor or CountingExtractor(),
    )


def _by_format(jobs):
    return {job.format: job for job in jobs}


def test_batch_with_instant_providers_completes_every_job(tmp_path: Path) -> None:
    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store)
            job_ids = await orchestrator.submit_batch(
                BatchRequest(formats=["feed", "story"], headline="Sleep better tonight", cta="Shop now")
            )
            first = await orchestrator.get_job(job_ids[0])
            jobs = await orchestrator.wait_for_batch(first.batch_id)
            events = await orchestrator.list_events(job_ids[0])
            await orchestrator.aclose()
            return job_ids, jobs, events

    job_ids, jobs, events = asyncio.run(scenario())

    assert len(job_ids) == 2
    assert {job.id for job in jobs} == set(job_ids)
    for job in jobs:
        assert job.status is JobStatus.COMPLETED
        assert job.result_url
        assert job.image_url == f"https://img.test/{job.format.value}.png"
        assert job.error_message is None
        assert job.started_at is not None and job.finished_at is not None

    statuses = [event["metadata"].get("status") for event in events if event["metadata"].get("status")]
    assert statuses == ["pending", "processing", "completed"]


def test_image_failure_for_one_format_fails_only_that_job(tmp_path: Path) -> None:
    image = ScriptedImageProvider(
        scripts={CreativeFormat.STORY: [InProgress(), Failed("NSFW content detected")]}
    )

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, image=image)
            job_ids = await orchestrator.submit_batch(
                BatchRequest(formats=[CreativeFormat.FEED, CreativeFormat.STORY], headline="Fresh look")
            )
            batch_id = (await orchestrator.get_job(job_ids[0])).batch_id
            return await orchestrator.wait_for_batch(batch_id)

    jobs = _by_format(asyncio.run(scenario()))

    assert jobs[CreativeFormat.FEED].status is JobStatus.COMPLETED
    assert jobs[CreativeFormat.FEED].result_url
    assert jobs[CreativeFormat.STORY].status is JobStatus.FAILED
    assert jobs[CreativeFormat.STORY].error_message == "NSFW content detected"
    assert jobs[CreativeFormat.STORY].result_url is None


def test_provider_that_never_finishes_times_out(tmp_path: Path) -> None:
    image = ScriptedImageProvider(scripts={CreativeFormat.REEL: [InProgress()]})

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, image=image)
            [job_id] = await orchestrator.submit_batch(BatchRequest(formats=["reel"], headline="Wait for it"))
            job = await orchestrator.get_job(job_id)
            await orchestrator.wait_for_batch(job.batch_id)
            return await orchestrator.get_job(job_id)

    job = asyncio.run(scenario())

    assert job.status is JobStatus.FAILED
    assert "timed out" in job.error_message
    assert image.polls[CreativeFormat.REEL] == 3


def test_transport_errors_are_retried_within_the_poll_budget(tmp_path: Path) -> None:
    image = ScriptedImageProvider(
        scripts={
            CreativeFormat.FEED: [
                ProviderTransportError("connection reset", provider="scripted-image"),
                InProgress(),
            ]
        }
    )

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, image=image)
            [job_id] = await orchestrator.submit_batch(BatchRequest(formats=["feed"], headline="Retry me"))
            job = await orchestrator.get_job(job_id)
            await orchestrator.wait_for_batch(job.batch_id)
            events = await orchestrator.list_events(job_id)
            return await orchestrator.get_job(job_id), events

    job, events = asyncio.run(scenario())

    assert job.status is JobStatus.FAILED
    assert "timed out" in job.error_message
    assert any(event["level"] == "warning" and "retrying" in event["message"] for event in events)


def test_transient_poll_error_then_success_completes(tmp_path: Path) -> None:
    image = ScriptedImageProvider(
        scripts={
            CreativeFormat.FEED: [
                ProviderTransportError("502 from upstream", provider="scripted-image", status_code=502),
                Succeeded(("https://img.test/recovered.png",)),
            ]
        }
    )

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, image=image)
            [job_id] = await orchestrator.submit_batch(BatchRequest(formats=["feed"], headline="Recover"))
            job = await orchestrator.get_job(job_id)
            await orchestrator.wait_for_batch(job.batch_id)
            return await orchestrator.get_job(job_id)

    job = asyncio.run(scenario())

    assert job.status is JobStatus.COMPLETED
    assert job.image_url == "https://img.test/recovered.png"


def test_submit_transport_failures_exhaust_the_submit_budget(tmp_path: Path) -> None:
    image = ScriptedImageProvider(
        submit_errors={CreativeFormat.FEED: ProviderTransportError("dns failure", provider="scripted-image")}
    )

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, image=image)
            [job_id] = await orchestrator.submit_batch(BatchRequest(formats=["feed"], headline="Offline"))
            job = await orchestrator.get_job(job_id)
            await orchestrator.wait_for_batch(job.batch_id)
            return await orchestrator.get_job(job_id)

    job = asyncio.run(scenario())

    assert job.status is JobStatus.FAILED
    assert "timed out" in job.error_message
    assert image.submits[CreativeFormat.FEED] == 2
    assert job.started_at is None


def test_missing_template_rejects_batch_before_creating_jobs(tmp_path: Path) -> None:
    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(
                store,
                overlay_provider="bannerbear",
                bannerbear_api_key="bb-key",
                bannerbear_templates={CreativeFormat.FEED: "tmpl-feed"},
            )
            with pytest.raises(ConfigurationError) as excinfo:
                await orchestrator.submit_batch(BatchRequest(formats=["feed", "story"], headline="Nope"))
            return str(excinfo.value), await orchestrator.list_jobs()

    message, jobs = asyncio.run(scenario())

    assert "story" in message
    assert jobs == []


def test_missing_credentials_fail_at_construction(tmp_path: Path) -> None:
    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            with pytest.raises(ConfigurationError):
                _orchestrator(store, replicate_api_token=None)

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "request_kwargs",
    [
        {"formats": []},
        {"formats": ["banner"]},
        {"formats": ["feed"], "source_url": "ftp://example.com/hero.png"},
        {"formats": ["feed"], "source_url": "/relative/hero.png"},
        {"formats": ["feed"], "headline": "   "},
    ],
)
def test_invalid_requests_create_nothing(tmp_path: Path, request_kwargs) -> None:
    payload = {"headline": "Valid headline", **request_kwargs}

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store)
            with pytest.raises(InvalidRequestError):
                await orchestrator.submit_batch(BatchRequest(**payload))
            return await orchestrator.list_jobs()

    assert asyncio.run(scenario()) == []


def test_duplicate_formats_are_collapsed(tmp_path: Path) -> None:
    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store)
            job_ids = await orchestrator.submit_batch(
                BatchRequest(formats=["feed", "FEED", "story", "feed"], headline="Twice")
            )
            jobs = await orchestrator.wait_for_batch((await orchestrator.get_job(job_ids[0])).batch_id)
            return job_ids, jobs

    job_ids, jobs = asyncio.run(scenario())

    assert len(job_ids) == 2
    assert sorted(job.format.value for job in jobs) == ["feed", "story"]


def test_design_system_is_extracted_once_per_batch(tmp_path: Path) -> None:
    design = DesignSystem(color_palette=("#000000", "#ff3366"), style_tags=("dark", "vibrant", "warm"))
    extractor = CountingExtractor(design)
    image = ScriptedImageProvider()
    overlay = RecordingOverlayProvider()

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, image=image, overlay=overlay, extractor=extractor)
            job_ids = await orchestrator.submit_batch(
                BatchRequest(
                    formats=["feed", "story", "reel"],
                    headline="Bold colors",
                    source_url="https://brand.test/landing",
                )
            )
            return await orchestrator.wait_for_batch((await orchestrator.get_job(job_ids[0])).batch_id)

    jobs = asyncio.run(scenario())

    assert all(job.status is JobStatus.COMPLETED for job in jobs)
    assert extractor.calls == ["https://brand.test/landing"]
    assert {request.accent_color for request in overlay.requests} == {"#ff3366"}
    assert all("#ff3366" in request.prompt for request in image.requests)


def test_unreadable_source_fails_every_job_of_the_batch(tmp_path: Path) -> None:
    extractor = CountingExtractor(error=SourceAssetError("No usable hero image found on https://brand.test"))

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, extractor=extractor)
            job_ids = await orchestrator.submit_batch(
                BatchRequest(formats=["feed", "story"], headline="Hero", source_url="https://brand.test")
            )
            return await orchestrator.wait_for_batch((await orchestrator.get_job(job_ids[0])).batch_id)

    jobs = asyncio.run(scenario())

    assert len(extractor.calls) == 1
    for job in jobs:
        assert job.status is JobStatus.FAILED
        assert "No usable hero image" in job.error_message
        assert job.started_at is None


def test_unexpected_errors_are_recorded_with_their_type(tmp_path: Path) -> None:
    overlay = RecordingOverlayProvider(error=RuntimeError("renderer crashed"))

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, overlay=overlay)
            [job_id] = await orchestrator.submit_batch(BatchRequest(formats=["feed"], headline="Crash"))
            await orchestrator.wait_for_batch((await orchestrator.get_job(job_id)).batch_id)
            return await orchestrator.get_job(job_id)

    job = asyncio.run(scenario())

    assert job.status is JobStatus.FAILED
    assert job.error_message == "RuntimeError: renderer crashed"
    assert job.image_url == "https://img.test/feed.png"


def test_transitions_are_published_to_stream_subscribers(tmp_path: Path) -> None:
    broker = JobEventBroker()

    async def scenario():
        async with open_store(tmp_path / "jobs.db", broker=broker) as store:
            orchestrator = _orchestrator(store)
            async with broker.subscribe() as queue:
                [job_id] = await orchestrator.submit_batch(BatchRequest(formats=["story"], headline="Live"))
                await orchestrator.wait_for_batch((await orchestrator.get_job(job_id)).batch_id)
                received = []
                while not queue.empty():
                    received.append(queue.get_nowait())
            return job_id, received

    job_id, received = asyncio.run(scenario())

    assert {event["job_id"] for event in received} == {job_id}
    statuses = [event["metadata"]["status"] for event in received if "status" in event["metadata"]]
    assert statuses == ["pending", "processing", "completed"]


def test_custom_dispatcher_receives_the_batch(tmp_path: Path) -> None:
    dispatched = []

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = JobOrchestrator(
                fast_config(),
                store=store,
                image_provider=ScriptedImageProvider(),
                overlay_provider=RecordingOverlayProvider(),
                extractor=CountingExtractor(),
                dispatcher=dispatched.append,
            )
            submission = await orchestrator.enqueue_batch(BatchRequest(formats=["feed"], headline="Later"))
            pending = await orchestrator.list_jobs(submission.batch_id)
            finished = await orchestrator.run_batch(submission.batch_id)
            return submission, pending, finished

    submission, pending, finished = asyncio.run(scenario())

    assert dispatched == [submission.batch_id]
    assert [job.status for job in pending] == [JobStatus.PENDING]
    assert [job.status for job in finished] == [JobStatus.COMPLETED]


def test_failed_dispatch_fails_every_job_of_the_batch(tmp_path: Path) -> None:
    def broker_down(batch_id: str) -> None:
        raise ConnectionError("broker down")

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = JobOrchestrator(
                fast_config(),
                store=store,
                image_provider=ScriptedImageProvider(),
                overlay_provider=RecordingOverlayProvider(),
                extractor=CountingExtractor(),
                dispatcher=broker_down,
            )
            with pytest.raises(DispatchError) as excinfo:
                await orchestrator.submit_batch(BatchRequest(formats=["feed", "reel"], headline="Nowhere"))
            return str(excinfo.value), await orchestrator.list_jobs()

    message, jobs = asyncio.run(scenario())

    assert message == "Dispatch failed: broker down"
    assert len(jobs) == 2
    for job in jobs:
        assert job.status is JobStatus.FAILED
        assert job.error_message == "Dispatch failed: broker down"
        assert job.finished_at is not None


def test_slow_job_does_not_hold_back_a_fast_one(tmp_path: Path) -> None:
    image = ScriptedImageProvider(
        scripts={CreativeFormat.FEED: [InProgress(), InProgress(), InProgress(), Succeeded(("https://img.test/feed.png",))]}
    )
    policy = PollPolicy(interval_seconds=0.05, max_attempts=10, submit_attempts=2)

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, image=image, image_policy=policy)
            job_ids = await orchestrator.submit_batch(BatchRequest(formats=["feed", "story"], headline="Race"))
            return await orchestrator.wait_for_batch((await orchestrator.get_job(job_ids[0])).batch_id)

    jobs = _by_format(asyncio.run(scenario()))
    feed, story = jobs[CreativeFormat.FEED], jobs[CreativeFormat.STORY]

    assert feed.status is JobStatus.COMPLETED
    assert story.status is JobStatus.COMPLETED
    assert image.polls[CreativeFormat.FEED] == 4
    assert image.polls[CreativeFormat.STORY] == 1
    assert story.finished_at < feed.finished_at


def test_failure_is_recorded_after_one_failed_database_write(tmp_path: Path) -> None:
    image = ScriptedImageProvider(scripts={CreativeFormat.FEED: [Failed("Prediction was canceled")]})
    lost_writes = []

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            transition = store.transition

            async def flaky_transition(job_id, status, **fields):
                if status is JobStatus.FAILED and not lost_writes:
                    lost_writes.append(job_id)
                    raise OperationalError("UPDATE creative_jobs", {}, Exception("database is locked"))
                return await transition(job_id, status, **fields)

            store.transition = flaky_transition
            orchestrator = _orchestrator(store, image=image)
            [job_id] = await orchestrator.submit_batch(BatchRequest(formats=["feed"], headline="Locked"))
            await orchestrator.wait_for_batch((await orchestrator.get_job(job_id)).batch_id)
            return job_id, await orchestrator.get_job(job_id)

    job_id, job = asyncio.run(scenario())

    assert lost_writes == [job_id]
    assert job.status is JobStatus.FAILED
    assert job.error_message == "Prediction was canceled"


def _seed(ad_id: str, cpl: float, image_url=None, *, leads: int = 10) -> PerformanceRecord:
    return PerformanceRecord(
        id=ad_id,
        name=f"Ad {ad_id}",
        spend=cpl * leads,
        impressions=2000,
        leads=leads,
        cost_per_lead=cpl,
        outbound_ctr=1.2,
        image_url=image_url,
    )


def test_winning_seed_creative_becomes_the_batch_source(tmp_path: Path) -> None:
    extractor = CountingExtractor()
    seeds = [
        _seed("pricey", 30.0, "https://cdn.test/pricey.jpg"),
        _seed("winner", 9.5, "https://cdn.test/winner.jpg"),
    ]

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, extractor=extractor)
            [job_id] = await orchestrator.submit_batch(
                BatchRequest(formats=["feed"], headline="Seeded", seed_records=seeds)
            )
            job = await orchestrator.get_job(job_id)
            await orchestrator.wait_for_batch(job.batch_id)
            return await store.get_batch(job.batch_id)

    batch = asyncio.run(scenario())

    assert batch.source_url == "https://cdn.test/winner.jpg"
    assert batch.source_kind is SourceKind.IMAGE
    assert extractor.calls == ["https://cdn.test/winner.jpg"]


def test_explicit_source_wins_over_seed_records(tmp_path: Path) -> None:
    extractor = CountingExtractor()

    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store, extractor=extractor)
            [job_id] = await orchestrator.submit_batch(
                BatchRequest(
                    formats=["story"],
                    headline="Explicit",
                    source_url="https://brand.test/hero.png",
                    source_kind="image",
                    seed_records=[_seed("winner", 9.5, "https://cdn.test/winner.jpg")],
                )
            )
            await orchestrator.wait_for_batch((await orchestrator.get_job(job_id)).batch_id)

    asyncio.run(scenario())

    assert extractor.calls == ["https://brand.test/hero.png"]


@pytest.mark.parametrize(
    "seeds, fragment",
    [
        ([_seed("no-leads", 0.0, "https://cdn.test/a.jpg", leads=0)], "No winning creative"),
        ([_seed("bare", 5.0)], "has no image"),
    ],
)
def test_seed_records_without_a_usable_winner_are_rejected(tmp_path: Path, seeds, fragment) -> None:
    async def scenario():
        async with open_store(tmp_path / "jobs.db") as store:
            orchestrator = _orchestrator(store)
            with pytest.raises(InvalidRequestError, match=fragment):
                await orchestrator.submit_batch(BatchRequest(formats=["feed"], headline="Seedless", seed_records=seeds))
            return await orchestrator.list_jobs()

    assert asyncio.run(scenario()) == []
