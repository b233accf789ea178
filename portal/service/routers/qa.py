from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from portal.common.config import get_config
from portal.identity.auth import ContextDep, require_role
from portal.identity.context import PortalContext
from portal.notifications.audit import write_audit_log
from portal.notifications.email_queue import enqueue_email, proof_pack_reviewed_email
from portal.proof_packs import lifecycle
from portal.proof_packs.firestore import get_user_profile, list_submitted_proof_packs, load_proof_pack, save_proof_pack

from ..db import get_db
from ..models import ReviewRequest
from .proof_packs import pack_out, raise_for_transition

router = APIRouter(prefix="/qa", tags=["qa"])

REVIEWER_ROLES = ("qa_reviewer", "platform_admin")


@router.get("/queue")
def review_queue(
    ctx: PortalContext = ContextDep,
    min_score: Optional[int] = Query(default=None, ge=0, le=100),
    max_score: Optional[int] = Query(default=None, ge=0, le=100),
):
    """Submitted packs, oldest submission first."""
    require_role(ctx, *REVIEWER_ROLES)
    packs = list_submitted_proof_packs(db=get_db())
    if min_score is not None:
        packs = [p for p in packs if p.pack_health.overall_score >= min_score]
    if max_score is not None:
        packs = [p for p in packs if p.pack_health.overall_score <= max_score]
    return {"queue": [pack_out(p) for p in packs]}


@router.post("/review")
def review_pack(payload: ReviewRequest, ctx: PortalContext = ContextDep):
    require_role(ctx, *REVIEWER_ROLES)
    cfg = get_config()
    db = get_db()

    pack = load_proof_pack(pack_id=payload.proof_pack_id, db=db)
    if pack is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proof Pack not found")
    try:
        reviewed = lifecycle.review(pack, action=payload.action, reviewer=ctx.uid, comments=payload.comments)
    except lifecycle.ProofPackError as e:
        raise_for_transition(e)

    save_proof_pack(pack=reviewed, db=db)

    score = reviewed.pack_health.overall_score
    owner_email = get_user_profile(uid=pack.user_id, db=db).get("email")
    if owner_email:
        subject, body = proof_pack_reviewed_email(
            approved=payload.action == "approve",
            title=reviewed.title,
            score=score,
            comments=reviewed.review_comments,
            pack_url=f"{cfg.app_url}/portal/proof-packs/{pack.id}",
        )
        enqueue_email(to=[owner_email], subject=subject, body=body, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action=f"proof_pack_{payload.action}d",
        resource="proof_pack",
        resource_id=pack.id,
        details={"title": reviewed.title, "comments": reviewed.review_comments, "pack_health_score": score},
        db=db,
    )
    return {"success": True, "message": f"Proof Pack {payload.action}d successfully"}
