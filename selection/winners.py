"""Rank historical ad performance to pick winning creatives."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class PerformanceRecord:
    """Metrics snapshot of one historical ad."""

    id: str
    name: str
    spend: float = 0.0
    impressions: int = 0
    leads: int = 0
    cost_per_lead: float = 0.0
    outbound_ctr: float = 0.0
    cost_per_outbound_click: float = 0.0
    cpm: float = 0.0
    roas_order_volume: float = 0.0
    roas_cash_collect: float = 0.0
    image_url: Optional[str] = None

    def __post_init__(self) -> None:
        for name in (
            "spend",
            "impressions",
            "leads",
            "cost_per_lead",
            "outbound_ctr",
            "cost_per_outbound_click",
            "cpm",
            "roas_order_volume",
            "roas_cash_collect",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    @property
    def is_rankable(self) -> bool:
        return self.leads > 0 and self.impressions > 0

    @property
    def roas(self) -> float:
        return max(self.roas_order_volume, self.roas_cash_collect)


@dataclass(frozen=True)
class RankedCreative:
    rank: int
    record: PerformanceRecord


def _find_action(actions: Optional[Iterable[Mapping[str, Any]]], action_type: str) -> int:
    for action in actions or []:
        if action.get("action_type") == action_type:
            try:
                return int(float(action.get("value", 0)))
            except (TypeError, ValueError):
                return 0
    return 0


def creative_image_url(ad: Mapping[str, Any]) -> Optional[str]:
    """Image of the ad's creative: its own image, the link picture, then the thumbnail."""

    creative = ad.get("creative") or {}
    link_data = (creative.get("object_story_spec") or {}).get("link_data") or {}
    for candidate in (
        creative.get("image_url"),
        link_data.get("picture"),
        link_data.get("image_url"),
        creative.get("thumbnail_url"),
    ):
        if candidate and str(candidate).strip():
            return str(candidate).strip()
    return None


def performance_from_insights(ad: Mapping[str, Any]) -> PerformanceRecord:
    """Build a record from a Graph API ad payload with an ``insights`` edge."""

    data = (ad.get("insights") or {}).get("data") or [{}]
    insights = data[0] or {}
    spend = float(insights.get("spend") or 0)
    impressions = int(float(insights.get("impressions") or 0))
    leads = _find_action(insights.get("actions"), "lead")
    clicks = _find_action(insights.get("outbound_clicks"), "outbound_click")
    return PerformanceRecord(
        id=str(ad.get("id", "")),
        name=str(ad.get("name", "")),
        spend=spend,
        impressions=impressions,
        leads=leads,
        cost_per_lead=spend / leads if leads else 0.0,
        cost_per_outbound_click=spend / clicks if clicks else 0.0,
        outbound_ctr=(clicks / impressions) * 100 if impressions else 0.0,
        cpm=(spend / impressions) * 1000 if impressions else 0.0,
        image_url=creative_image_url(ad),
    )


def rank_creatives(records: Sequence[PerformanceRecord]) -> List[RankedCreative]:
    """Order every record: cheapest lead first, then highest outbound CTR.

    Records without leads or impressions cannot be compared and trail the
    ranking in their input order.  ``sorted`` is stable, so full ties keep
    their input order too.
    """

    rankable = [record for record in records if record.is_rankable]
    unrankable = [record for record in records if not record.is_rankable]
    ordered = sorted(rankable, key=lambda r: (r.cost_per_lead, -r.outbound_ctr)) + unrankable
    return [RankedCreative(rank=index, record=record) for index, record in enumerate(ordered, start=1)]


def identify_winning_creatives(
    records: Sequence[PerformanceRecord], count: int
) -> List[PerformanceRecord]:
    count = max(0, min(int(count), len(records)))
    if count == 0:
        return []
    return [ranked.record for ranked in rank_creatives(records)[:count]]


def winning_seed(records: Sequence[PerformanceRecord]) -> Optional[PerformanceRecord]:
    """Top record with leads and impressions; new batches borrow its creative."""

    winners = identify_winning_creatives(records, 1)
    if winners and winners[0].is_rankable:
        return winners[0]
    return None


def winning_creative_insights(winners: Sequence[PerformanceRecord]) -> str:
    if not winners:
        return "No winning creatives found. Need more data to analyze performance."

    top = winners[0]
    insights = [f'Top performer: "{top.name}" (CPL: {top.cost_per_lead:.2f}, CTR: {top.outbound_ctr:.2f}%)']
    if top.roas > 2:
        insights.append(f"Strong ROAS of {top.roas:.2f}x indicates high revenue generation.")
    if top.is_rankable and top.cost_per_lead < 20:
        insights.append(
            f"Low cost per lead ({top.cost_per_lead:.2f}) shows efficient lead acquisition."
        )
    if top.outbound_ctr > 1.5:
        insights.append(
            f"High outbound CTR ({top.outbound_ctr:.2f}%) indicates compelling creative and messaging."
        )
    return " ".join(insights)
