from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status

from portal.common.config import get_config
from portal.common.logging import log_event
from portal.identity.auth import ContextDep, require_role
from portal.identity.context import PortalContext
from portal.notifications.audit import write_audit_log
from portal.notifications.email_queue import enqueue_email, settlement_email
from portal.proof_packs.firestore import get_user_profile
from portal.revenue.firestore import (
    SettlementTooLarge,
    list_attribution_events,
    list_settlements,
    load_partner_events,
    load_pending_events,
    record_attribution_event,
    write_settlements,
)
from portal.revenue.models import AttributionEvent
from portal.revenue.schema import DEFAULT_LIST_LIMIT
from portal.revenue.settlement import (
    DashboardPeriod,
    aggregate_settlements,
    dashboard_period_start,
    summarize_partner_revenue,
)

from ..db import get_db
from ..models import AttributionCreate, SettlementRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue", tags=["revenue"])


def _event_out(event: AttributionEvent) -> dict[str, Any]:
    d = event.to_firestore()
    d["id"] = event.id
    return d


def _own_partner_id(ctx: PortalContext, db) -> str:
    claim = ctx.claims.get("partner_id") or ctx.claims.get("partnerId")
    if claim:
        return str(claim)
    profile = get_user_profile(uid=ctx.uid, db=db)
    return str(profile.get("partner_id") or profile.get("partnerId") or "")


def _partner_scope(ctx: PortalContext, db) -> Optional[str]:
    """
    partner_user callers only ever see their own partner id. Returns "" when
    the caller is a partner without a linked partner id (sees nothing).
    """
    if not ctx.has_role("partner_user"):
        return None
    return _own_partner_id(ctx, db)


@router.post("/attribution")
def create_attribution(payload: AttributionCreate, ctx: PortalContext = ContextDep):
    db = get_db()
    try:
        event = record_attribution_event(
            partner_id=payload.partner_id,
            sme_id=payload.sme_id,
            event_type=payload.event_type,
            revenue_amount=payload.revenue_amount,
            attribution_percentage=payload.attribution_percentage,
            buyer_id=payload.buyer_id,
            source=payload.source,
            deal_id=payload.deal_id,
            notes=payload.notes,
            created_by=ctx.uid,
            db=db,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    write_audit_log(
        user_id=ctx.uid,
        action="attribution_logged",
        resource="attribution_event",
        resource_id=event.id,
        details={
            "partner_id": event.partner_id,
            "event_type": event.event_type,
            "revenue_amount": event.revenue_amount,
        },
        db=db,
    )
    return {"success": True, "event_id": event.id, "event": _event_out(event)}


@router.get("/attribution")
def get_attribution(
    ctx: PortalContext = ContextDep,
    partner_id: Optional[str] = None,
    sme_id: Optional[str] = None,
    event_type: Optional[str] = None,
    settlement_status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    db = get_db()
    scope = _partner_scope(ctx, db)
    if scope is not None:
        if not scope:
            return {"events": []}
        partner_id = scope

    events = list_attribution_events(
        partner_id=partner_id,
        sme_id=sme_id,
        event_type=event_type,
        settlement_status=settlement_status,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset,
        db=db,
    )
    return {"events": [_event_out(e) for e in events]}


@router.post("/settlement")
def run_settlement(payload: SettlementRequest, ctx: PortalContext = ContextDep):
    require_role(ctx, "platform_admin")
    cfg = get_config()
    db = get_db()

    fee_pct = payload.platform_fee_percentage
    if fee_pct is None:
        fee_pct = cfg.platform_fee_percentage

    events = load_pending_events(period_start=payload.start_date, period_end=payload.end_date, db=db)
    if not events:
        return {"success": True, "message": "No pending events to settle", "settlements": [], "total_events": 0}

    settlements = aggregate_settlements(
        events, fee_pct, period_start=payload.start_date, period_end=payload.end_date
    )
    try:
        written = write_settlements(settlements, created_by=ctx.uid, db=db)
    except SettlementTooLarge as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    period = f"{payload.start_date.date().isoformat()} - {payload.end_date.date().isoformat()}"
    for s in written:
        partner_email = get_user_profile(uid=s.partner_id, db=db).get("email")
        if not partner_email:
            continue
        subject, body = settlement_email(
            period=period,
            gross_revenue=s.gross_revenue,
            platform_fee_percentage=s.platform_fee_percentage,
            platform_fee_amount=s.platform_fee_amount,
            net_revenue=s.net_revenue,
            event_count=s.event_count,
            revenue_url=f"{cfg.app_url}/portal/partner/revenue",
        )
        enqueue_email(to=[partner_email], subject=subject, body=body, db=db)

    settled_events = sum(s.event_count for s in written)
    write_audit_log(
        user_id=ctx.uid,
        action="settlement_calculated",
        resource="revenue_settlement",
        resource_id="batch",
        details={
            "start_date": payload.start_date.isoformat(),
            "end_date": payload.end_date.isoformat(),
            "partner_count": len(written),
            "total_events": settled_events,
        },
        db=db,
    )
    log_event(
        logger,
        "settlement.run_completed",
        partner_count=len(written),
        total_events=settled_events,
        platform_fee_percentage=written[0].platform_fee_percentage if written else fee_pct,
    )
    return {
        "success": True,
        "settlements": [
            {
                "settlement_id": s.id,
                "partner_id": s.partner_id,
                "gross_revenue": s.gross_revenue,
                "platform_fee_amount": s.platform_fee_amount,
                "net_revenue": s.net_revenue,
                "event_count": s.event_count,
            }
            for s in written
        ],
        "total_events": settled_events,
    }


@router.get("/settlements")
def get_settlements(
    ctx: PortalContext = ContextDep,
    partner_id: Optional[str] = None,
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=500),
):
    require_role(ctx, "platform_admin", "partner_user")
    db = get_db()
    scope = _partner_scope(ctx, db)
    if scope is not None:
        if not scope:
            return {"settlements": []}
        partner_id = scope
    return {"settlements": list_settlements(partner_id=partner_id, limit=limit, db=db)}


@router.get("/dashboard")
def revenue_dashboard(
    ctx: PortalContext = ContextDep,
    period: DashboardPeriod = "month",
    partner_id: Optional[str] = None,
):
    """
    Attributed revenue for one partner since the start of the current month,
    quarter or year, plus the partner's ten latest settlements. Platform
    admins pick the partner; everyone else sees their own.
    """
    db = get_db()
    if not ctx.has_role("platform_admin"):
        partner_id = _own_partner_id(ctx, db)
    if not partner_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Partner ID not found")

    since = dashboard_period_start(period)
    events = load_partner_events(partner_id=partner_id, since=since, db=db)
    summary = summarize_partner_revenue(events)
    return {
        **summary.to_dict(),
        "partner_id": partner_id,
        "period": period,
        "period_start": since.isoformat(),
        "events": [_event_out(e) for e in events],
        "settlements": list_settlements(partner_id=partner_id, limit=10, db=db),
    }
