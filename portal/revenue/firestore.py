from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from google.cloud.firestore import Client

from portal.common.logging import log_event
from portal.persistence.firebase_client import get_firestore_client
from portal.persistence.firestore_retry import with_firestore_retry

from .models import AttributionEvent, Settlement
from .schema import (
    COLLECTION_ATTRIBUTION_EVENTS,
    COLLECTION_REVENUE_SETTLEMENTS,
    DEFAULT_LIST_LIMIT,
    MAX_EVENTS_PER_SETTLEMENT,
)

logger = logging.getLogger(__name__)


class SettlementTooLarge(ValueError):
    pass


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def attribution_events_collection(db: Optional[Client] = None):
    client = db or get_firestore_client()
    return client.collection(COLLECTION_ATTRIBUTION_EVENTS)


def settlements_collection(db: Optional[Client] = None):
    client = db or get_firestore_client()
    return client.collection(COLLECTION_REVENUE_SETTLEMENTS)


def record_attribution_event(
    *,
    partner_id: str,
    sme_id: str,
    event_type: str,
    revenue_amount: float,
    attribution_percentage: float = 100.0,
    buyer_id: Optional[str] = None,
    source: Optional[str] = None,
    deal_id: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
    db: Optional[Client] = None,
) -> AttributionEvent:
    """
    Persist a new immutable attribution event with settlement_status=pending.

    Writes:
      attributionEvents/{auto_id}

    Raises ValueError for invalid input (before any write).
    """
    ref = attribution_events_collection(db).document()
    event = AttributionEvent(
        id=ref.id,
        partner_id=partner_id,
        sme_id=sme_id,
        event_type=event_type,
        revenue_amount=revenue_amount,
        attribution_percentage=attribution_percentage,
        buyer_id=buyer_id,
        source=source,
        deal_id=deal_id,
        notes=notes,
        created_at=_utc_now(),
        created_by=created_by,
    )
    doc = event.to_firestore()
    with_firestore_retry(lambda: ref.set(doc))
    return event


def _parse_events(snaps: Iterable[Any]) -> list[AttributionEvent]:
    out: list[AttributionEvent] = []
    for snap in snaps:
        try:
            out.append(AttributionEvent.from_firestore(snap.id, snap.to_dict() or {}))
        except (TypeError, ValueError) as e:
            log_event(logger, "attribution.event_unreadable", severity="WARNING", event_id=snap.id, error=str(e))
    return out


def list_attribution_events(
    *,
    partner_id: Optional[str] = None,
    sme_id: Optional[str] = None,
    event_type: Optional[str] = None,
    settlement_status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
    db: Optional[Client] = None,
) -> list[AttributionEvent]:
    q = attribution_events_collection(db)
    if partner_id:
        q = q.where("partner_id", "==", partner_id)
    if sme_id:
        q = q.where("sme_id", "==", sme_id)
    if event_type:
        q = q.where("event_type", "==", event_type)
    if settlement_status:
        q = q.where("settlement_status", "==", settlement_status)
    if start is not None:
        q = q.where("created_at", ">=", start)
    if end is not None:
        q = q.where("created_at", "<=", end)
    q = q.order_by("created_at", direction="DESCENDING")
    if offset:
        q = q.offset(int(offset))
    q = q.limit(int(limit))
    return _parse_events(q.stream())


def load_pending_events(
    *,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    db: Optional[Client] = None,
) -> list[AttributionEvent]:
    """
    All pending events whose created_at falls within [period_start, period_end].
    """
    q = attribution_events_collection(db).where("settlement_status", "==", "pending")
    if period_start is not None:
        q = q.where("created_at", ">=", period_start)
    if period_end is not None:
        q = q.where("created_at", "<=", period_end)
    return _parse_events(q.stream())


def load_partner_events(
    *,
    partner_id: str,
    since: Optional[datetime] = None,
    db: Optional[Client] = None,
) -> list[AttributionEvent]:
    """Every event of one partner created at or after `since`, any settlement status."""
    q = attribution_events_collection(db).where("partner_id", "==", partner_id)
    if since is not None:
        q = q.where("created_at", ">=", since)
    return _parse_events(q.stream())


def write_settlements(
    settlements: Sequence[Settlement],
    *,
    created_by: Optional[str] = None,
    db: Optional[Client] = None,
) -> list[Settlement]:
    """
    Persist settlements and mark their events settled.

    Each settlement document and the updates of its events share one batch,
    so an event is either settled with the new settlement id or left pending
    alongside no settlement at all. Returns the settlements with their ids.

    Writes:
      revenueSettlements/{auto_id}
      attributionEvents/{event_id} (settlement_status, settlement_id, settled_at)
    """
    oversized = [s.partner_id for s in settlements if len(s.event_ids) > MAX_EVENTS_PER_SETTLEMENT]
    if oversized:
        raise SettlementTooLarge(
            f"settlement for partner(s) {', '.join(oversized)} exceeds {MAX_EVENTS_PER_SETTLEMENT} events"
        )

    client = db or get_firestore_client()
    events_col = attribution_events_collection(client)
    written: list[Settlement] = []

    for settlement in settlements:
        now = _utc_now()
        ref = settlements_collection(client).document()
        stored = settlement.with_identity(settlement_id=ref.id, created_at=now, created_by=created_by)

        batch = client.batch()
        batch.set(ref, stored.to_firestore())
        for event_id in stored.event_ids:
            batch.update(
                events_col.document(event_id),
                {"settlement_status": "settled", "settlement_id": ref.id, "settled_at": now},
            )
        with_firestore_retry(batch.commit)

        log_event(
            logger,
            "settlement.written",
            settlement_id=ref.id,
            partner_id=stored.partner_id,
            event_count=stored.event_count,
            gross_revenue=stored.gross_revenue,
            net_revenue=stored.net_revenue,
        )
        written.append(stored)
    return written


def list_settlements(
    *,
    partner_id: Optional[str] = None,
    limit: int = DEFAULT_LIST_LIMIT,
    db: Optional[Client] = None,
) -> list[dict[str, Any]]:
    q = settlements_collection(db)
    if partner_id:
        q = q.where("partner_id", "==", partner_id)
    q = q.order_by("created_at", direction="DESCENDING").limit(int(limit))
    out: list[dict[str, Any]] = []
    for snap in q.stream():
        d = snap.to_dict() or {}
        d["id"] = snap.id
        out.append(d)
    return out
