from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Optional


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _opt_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, str) and value.strip():
        return _as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    return None


def _first(d: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if d.get(k) is not None:
            return d.get(k)
    return None


EventType = Literal[
    "lead_generated",
    "service_delivered",
    "introduction_facilitated",
    "conversion_completed",
]
EVENT_TYPES: tuple[str, ...] = (
    "lead_generated",
    "service_delivered",
    "introduction_facilitated",
    "conversion_completed",
)

SettlementStatus = Literal["pending", "settled"]


def _finite(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    v = float(value)
    if not math.isfinite(v):
        raise ValueError(f"{name} must be finite")
    return v


@dataclass(frozen=True, slots=True)
class AttributionEvent:
    """
    Immutable revenue attribution fact.

    Firestore path:
      attributionEvents/{event_id}

    Only the settlement fields change after creation (pending -> settled).
    """

    id: str
    partner_id: str
    sme_id: str
    event_type: EventType
    revenue_amount: float
    attribution_percentage: float = 100.0

    buyer_id: Optional[str] = None
    source: Optional[str] = None
    deal_id: Optional[str] = None
    notes: Optional[str] = None

    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    settlement_status: SettlementStatus = "pending"
    settlement_id: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("id", "partner_id", "sme_id"):
            v = (getattr(self, name) or "").strip()
            if not v:
                raise ValueError(f"{name} is required")
            if "/" in v:
                raise ValueError(f"{name} must not contain '/'")
            object.__setattr__(self, name, v)

        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"event_type must be one of: {'|'.join(EVENT_TYPES)}")

        amount = _finite(self.revenue_amount, "revenue_amount")
        if amount < 0:
            raise ValueError("revenue_amount must be >= 0")
        object.__setattr__(self, "revenue_amount", amount)

        pct = _finite(self.attribution_percentage, "attribution_percentage")
        if pct < 0 or pct > 100:
            raise ValueError("attribution_percentage must be 0..100")
        object.__setattr__(self, "attribution_percentage", pct)

        if self.settlement_status not in ("pending", "settled"):
            raise ValueError("settlement_status must be one of: pending|settled")

        if self.created_at is not None:
            object.__setattr__(self, "created_at", _as_utc(self.created_at))

    @property
    def attributed_amount(self) -> float:
        return self.revenue_amount * (self.attribution_percentage / 100.0)

    @property
    def is_pending(self) -> bool:
        return self.settlement_status == "pending"

    def to_firestore(self) -> dict[str, Any]:
        return {
            "partner_id": self.partner_id,
            "sme_id": self.sme_id,
            "buyer_id": self.buyer_id,
            "event_type": self.event_type,
            "revenue_amount": self.revenue_amount,
            "attribution_percentage": self.attribution_percentage,
            "source": self.source,
            "deal_id": self.deal_id,
            "notes": self.notes,
            "settlement_status": self.settlement_status,
            "settlement_id": self.settlement_id,
            "created_at": self.created_at,
            "created_by": self.created_by,
            "is_immutable": True,
        }

    @staticmethod
    def from_firestore(event_id: str, data: Mapping[str, Any]) -> "AttributionEvent":
        d = dict(data or {})
        pct = _first(d, "attribution_percentage", "attributionPercentage")
        return AttributionEvent(
            id=str(event_id or d.get("id") or ""),
            partner_id=str(_first(d, "partner_id", "partnerId") or ""),
            sme_id=str(_first(d, "sme_id", "smeId") or ""),
            event_type=str(_first(d, "event_type", "eventType") or ""),
            revenue_amount=_first(d, "revenue_amount", "revenueAmount"),
            attribution_percentage=100.0 if pct is None else pct,
            buyer_id=_first(d, "buyer_id", "buyerId"),
            source=d.get("source"),
            deal_id=_first(d, "deal_id", "dealId"),
            notes=d.get("notes"),
            created_at=_opt_utc(_first(d, "created_at", "createdAt")),
            created_by=_first(d, "created_by", "createdBy"),
            settlement_status=str(_first(d, "settlement_status", "settlementStatus") or "pending"),
            settlement_id=_first(d, "settlement_id", "settlementId"),
        )


@dataclass(frozen=True, slots=True)
class Settlement:
    """
    Per-partner aggregate over pending attribution events.

    Firestore path:
      revenueSettlements/{settlement_id}

    Created once per settlement run; immutable afterwards.
    """

    partner_id: str
    gross_revenue: float
    platform_fee_percentage: float
    platform_fee_amount: float
    net_revenue: float
    event_count: int
    event_ids: tuple[str, ...]
    events_by_type: Mapping[str, float] = field(default_factory=dict)

    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    status: Literal["calculated"] = "calculated"

    id: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    def with_identity(self, *, settlement_id: str, created_at: datetime, created_by: Optional[str]) -> "Settlement":
        return Settlement(
            partner_id=self.partner_id,
            gross_revenue=self.gross_revenue,
            platform_fee_percentage=self.platform_fee_percentage,
            platform_fee_amount=self.platform_fee_amount,
            net_revenue=self.net_revenue,
            event_count=self.event_count,
            event_ids=self.event_ids,
            events_by_type=dict(self.events_by_type),
            period_start=self.period_start,
            period_end=self.period_end,
            status=self.status,
            id=settlement_id,
            created_at=_as_utc(created_at),
            created_by=created_by,
        )

    def to_firestore(self) -> dict[str, Any]:
        return {
            "partner_id": self.partner_id,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "gross_revenue": float(self.gross_revenue),
            "platform_fee_percentage": float(self.platform_fee_percentage),
            "platform_fee_amount": float(self.platform_fee_amount),
            "net_revenue": float(self.net_revenue),
            "event_count": int(self.event_count),
            "event_ids": list(self.event_ids),
            "events_by_type": dict(self.events_by_type),
            "status": self.status,
            "settlement_date": self.created_at,
            "created_at": self.created_at,
            "created_by": self.created_by,
        }
