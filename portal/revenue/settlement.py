from __future__ import annotations

"""
Revenue attribution -> per-partner settlement aggregation.

Pure functions (no Firestore dependency). Bad input never raises: malformed or
non-pending events are skipped and an unusable fee percentage falls back to the
platform default.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Literal, Mapping, Optional, Union

from portal.common.config import DEFAULT_PLATFORM_FEE_PERCENTAGE
from portal.common.logging import log_event

from .models import EVENT_TYPES, AttributionEvent, Settlement

logger = logging.getLogger(__name__)

EventLike = Union[AttributionEvent, Mapping[str, Any]]


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def resolve_fee_percentage(value: Any) -> float:
    """
    Platform fee percentage in [0, 100]; anything else degrades to the default.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        if value is not None:
            log_event(logger, "settlement.invalid_fee_percentage", severity="WARNING", value=str(value))
        return DEFAULT_PLATFORM_FEE_PERCENTAGE
    v = float(value)
    if not math.isfinite(v) or v < 0 or v > 100:
        log_event(logger, "settlement.invalid_fee_percentage", severity="WARNING", value=v)
        return DEFAULT_PLATFORM_FEE_PERCENTAGE
    return v


def coerce_events(events: Optional[Iterable[EventLike]]) -> list[AttributionEvent]:
    out: list[AttributionEvent] = []
    for raw in events or ():
        if isinstance(raw, AttributionEvent):
            out.append(raw)
            continue
        try:
            if not isinstance(raw, Mapping):
                raise TypeError(f"expected mapping, got {type(raw).__name__}")
            out.append(AttributionEvent.from_firestore(str(raw.get("id") or ""), raw))
        except (TypeError, ValueError) as e:
            log_event(logger, "settlement.event_skipped", severity="WARNING", error=str(e))
    return out


@dataclass
class _PartnerAccumulator:
    partner_id: str
    amounts: list[float] = field(default_factory=list)
    event_ids: list[str] = field(default_factory=list)
    by_type: dict[str, list[float]] = field(default_factory=lambda: {t: [] for t in EVENT_TYPES})

    def add(self, event: AttributionEvent) -> None:
        amount = event.attributed_amount
        self.amounts.append(amount)
        self.event_ids.append(event.id)
        self.by_type[event.event_type].append(amount)


def aggregate_settlements(
    events: Optional[Iterable[EventLike]],
    platform_fee_percentage: Any = None,
    *,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> list[Settlement]:
    """
    Group pending events by partner and compute gross/fee/net per partner.

    - gross = sum(revenue_amount * attribution_percentage / 100)
    - fee = gross * platform_fee_percentage / 100
    - net = gross - fee

    When period bounds are given, only events with created_at in
    [period_start, period_end] are included. An event id is counted at most
    once. Settlements are returned ordered by partner id.
    """
    fee_pct = resolve_fee_percentage(platform_fee_percentage)
    start = _as_utc(period_start) if period_start is not None else None
    end = _as_utc(period_end) if period_end is not None else None

    groups: dict[str, _PartnerAccumulator] = {}
    seen: set[str] = set()
    skipped = 0

    for event in coerce_events(events):
        if not event.is_pending or event.id in seen:
            skipped += 1
            continue
        if start is not None or end is not None:
            ts = event.created_at
            if ts is None or (start is not None and ts < start) or (end is not None and ts > end):
                skipped += 1
                continue
        seen.add(event.id)
        acc = groups.get(event.partner_id)
        if acc is None:
            acc = groups[event.partner_id] = _PartnerAccumulator(partner_id=event.partner_id)
        acc.add(event)

    if skipped:
        log_event(logger, "settlement.events_excluded", severity="INFO", count=skipped)

    settlements: list[Settlement] = []
    for partner_id in sorted(groups):
        acc = groups[partner_id]
        gross = math.fsum(acc.amounts)
        fee = gross * (fee_pct / 100.0)
        settlements.append(
            Settlement(
                partner_id=partner_id,
                gross_revenue=gross,
                platform_fee_percentage=fee_pct,
                platform_fee_amount=fee,
                net_revenue=gross - fee,
                event_count=len(acc.event_ids),
                event_ids=tuple(acc.event_ids),
                events_by_type={t: math.fsum(v) for t, v in acc.by_type.items()},
                period_start=start,
                period_end=end,
            )
        )
    return settlements


DashboardPeriod = Literal["month", "quarter", "year"]
DASHBOARD_PERIODS: tuple[str, ...] = ("month", "quarter", "year")


def dashboard_period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """First instant (UTC) of the current month, quarter or year. Unknown periods mean month."""
    ref = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    if period == "year":
        month = 1
    elif period == "quarter":
        month = (ref.month - 1) // 3 * 3 + 1
    else:
        month = ref.month
    return datetime(ref.year, month, 1, tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class RevenueSummary:
    total_revenue: float
    pending_revenue: float
    settled_revenue: float
    revenue_by_type: Mapping[str, float]
    event_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_revenue": self.total_revenue,
            "pending_revenue": self.pending_revenue,
            "settled_revenue": self.settled_revenue,
            "revenue_by_type": dict(self.revenue_by_type),
            "event_count": self.event_count,
        }


def summarize_partner_revenue(events: Optional[Iterable[EventLike]]) -> RevenueSummary:
    """
    Attributed revenue totals for a partner dashboard, split by settlement
    status and by event type. Malformed and duplicate events are skipped.
    """
    total: list[float] = []
    by_status: dict[str, list[float]] = {"pending": [], "settled": []}
    by_type: dict[str, list[float]] = {t: [] for t in EVENT_TYPES}
    seen: set[str] = set()

    for event in coerce_events(events):
        if event.id in seen:
            continue
        seen.add(event.id)
        amount = event.attributed_amount
        total.append(amount)
        by_status[event.settlement_status].append(amount)
        by_type[event.event_type].append(amount)

    return RevenueSummary(
        total_revenue=math.fsum(total),
        pending_revenue=math.fsum(by_status["pending"]),
        settled_revenue=math.fsum(by_status["settled"]),
        revenue_by_type={t: math.fsum(v) for t, v in by_type.items()},
        event_count=len(seen),
    )
