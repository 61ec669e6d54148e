from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from selection.winners import (
    PerformanceRecord,
    creative_image_url,
    identify_winning_creatives,
    performance_from_insights,
    rank_creatives,
    winning_creative_insights,
    winning_seed,
)


def _record(ad_id: str, cpl: float, ctr: float, *, leads: int = 10, impressions: int = 1000) -> PerformanceRecord:
    return PerformanceRecord(
        id=ad_id,
        name=f"Ad {ad_id}",
        spend=cpl * leads,
        impressions=impressions,
        leads=leads,
        cost_per_lead=cpl,
        outbound_ctr=ctr,
    )


@pytest.fixture()
def records() -> list[PerformanceRecord]:
    return [
        _record("a", 12.0, 1.0),
        _record("b", 0.0, 5.0, leads=0),
        _record("c", 8.0, 0.5),
        _record("d", 12.0, 2.5),
        _record("e", 3.0, 0.9, impressions=0),
        _record("f", 8.0, 0.5),
    ]


def test_orders_by_cost_per_lead_then_ctr(records: list[PerformanceRecord]) -> None:
    winners = identify_winning_creatives(records, len(records))
    assert [w.id for w in winners] == ["c", "f", "d", "a", "b", "e"]


def test_unrankable_records_trail_even_with_better_metrics(records: list[PerformanceRecord]) -> None:
    ranked = rank_creatives(records)
    tail = [item.record.id for item in ranked[-2:]]
    assert tail == ["b", "e"]
    assert [item.rank for item in ranked] == list(range(1, len(records) + 1))


@pytest.mark.parametrize("count", range(0, 7))
def test_returns_exactly_count_distinct_records(records: list[PerformanceRecord], count: int) -> None:
    winners = identify_winning_creatives(records, count)
    assert len(winners) == count
    assert len({w.id for w in winners}) == count
    assert all(w in records for w in winners)


def test_count_is_clamped(records: list[PerformanceRecord]) -> None:
    assert identify_winning_creatives(records, -3) == []
    assert len(identify_winning_creatives(records, 50)) == len(records)
    assert identify_winning_creatives([], 5) == []


def test_selection_is_deterministic(records: list[PerformanceRecord]) -> None:
    first = identify_winning_creatives(records, 4)
    second = identify_winning_creatives(list(records), 4)
    assert first == second


def test_negative_metrics_are_rejected() -> None:
    with pytest.raises(ValueError):
        PerformanceRecord(id="x", name="x", spend=-1.0)


def test_performance_from_insights_computes_rates() -> None:
    ad = {
        "id": "123",
        "name": "Spring promo",
        "insights": {
            "data": [
                {
                    "spend": "100.0",
                    "impressions": "20000",
                    "actions": [{"action_type": "lead", "value": "8"}],
                    "outbound_clicks": [{"action_type": "outbound_click", "value": "400"}],
                }
            ]
        },
    }
    record = performance_from_insights(ad)
    assert record.leads == 8
    assert record.cost_per_lead == pytest.approx(12.5)
    assert record.cost_per_outbound_click == pytest.approx(0.25)
    assert record.outbound_ctr == pytest.approx(2.0)
    assert record.cpm == pytest.approx(5.0)


def test_performance_from_insights_without_data() -> None:
    record = performance_from_insights({"id": "1", "name": "Empty"})
    assert record.leads == 0
    assert record.image_url is None
    assert record.cost_per_lead == 0.0
    assert not record.is_rankable


def test_insights_summary() -> None:
    winner = _record("w", 10.0, 2.0)
    summary = winning_creative_insights([winner])
    assert 'Top performer: "Ad w"' in summary
    assert "Low cost per lead" in summary
    assert "High outbound CTR" in summary
    assert "No winning creatives" in winning_creative_insights([])


@pytest.mark.parametrize(
    "creative, expected",
    [
        ({"image_url": "https://cdn.test/own.jpg", "thumbnail_url": "https://cdn.test/thumb.jpg"}, "https://cdn.test/own.jpg"),
        ({"object_story_spec": {"link_data": {"picture": "https://cdn.test/link.jpg"}}}, "https://cdn.test/link.jpg"),
        ({"object_story_spec": {"link_data": {"image_url": " https://cdn.test/data.jpg "}}}, "https://cdn.test/data.jpg"),
        ({"image_url": "", "thumbnail_url": "https://cdn.test/thumb.jpg"}, "https://cdn.test/thumb.jpg"),
        ({}, None),
    ],
)
def test_creative_image_url_prefers_the_full_image(creative, expected) -> None:
    assert creative_image_url({"id": "1", "creative": creative}) == expected


def test_performance_from_insights_keeps_the_creative_image() -> None:
    record = performance_from_insights(
        {"id": "9", "name": "Hero", "creative": {"thumbnail_url": "https://cdn.test/thumb.jpg"}}
    )
    assert record.image_url == "https://cdn.test/thumb.jpg"


def test_winning_seed_is_the_top_rankable_record(records: list[PerformanceRecord]) -> None:
    assert winning_seed(records).id == "c"
    assert winning_seed([_record("b", 0.0, 5.0, leads=0)]) is None
    assert winning_seed([]) is None
