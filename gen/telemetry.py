"""Prometheus counters for the generation pipeline."""
from __future__ import annotations

from collections import Counter
from typing import Dict, Tuple

from prometheus_client import Counter as PrometheusCounter

_outcome_counts: Counter[Tuple[str, str]] = Counter()

_job_outcomes = PrometheusCounter(
    "creatives_jobs_finished_total",
    "Jobs that reached a terminal status, by format and status.",
    ["format", "status"],
)
_provider_retries = PrometheusCounter(
    "creatives_provider_transport_retries_total",
    "Provider calls retried after a transport failure.",
    ["provider"],
)


def record_outcome(format_value: str, status_value: str) -> None:
    _outcome_counts[(format_value, status_value)] += 1
    _job_outcomes.labels(format=format_value, status=status_value).inc()


def record_retry(provider: str) -> None:
    _provider_retries.labels(provider=provider or "unknown").inc()


def snapshot_outcomes() -> Dict[Tuple[str, str], int]:
    """Terminal outcomes counted in this process."""

    return dict(_outcome_counts)
