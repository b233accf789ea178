from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, status

from portal.common.config import get_config
from portal.identity.auth import ContextDep
from portal.identity.context import PortalContext
from portal.notifications.audit import write_audit_log
from portal.notifications.email_queue import enqueue_email, proof_pack_submitted_email
from portal.proof_packs import lifecycle
from portal.proof_packs.firestore import (
    count_proof_packs,
    create_share_link,
    deactivate_share_link,
    get_user_profile,
    list_pack_access_events,
    list_proof_packs,
    list_share_links,
    load_proof_pack,
    load_share_link,
    new_proof_pack_id,
    save_proof_pack,
)
from portal.proof_packs.health import remediation_actions
from portal.proof_packs.models import ProofPack, ProofPackDocument, ShareLink
from portal.proof_packs.schema import new_document_id, new_share_token

from ..db import get_db
from ..models import DocumentUpload, GapStatusUpdate, ProofPackCreate, ProofPackUpdate, ShareCreate

router = APIRouter(prefix="/proof-packs", tags=["proof-packs"])

READ_ANY_ROLES = ("qa_reviewer", "platform_admin")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _profile_field(profile: dict[str, Any], snake: str, camel: str) -> Any:
    return profile.get(snake) or profile.get(camel)


def pack_out(pack: ProofPack, *, include_file_data: bool = False) -> dict[str, Any]:
    d = pack.to_firestore()
    d["id"] = pack.id
    if not include_file_data:
        for doc in d["documents"]:
            doc.pop("file_data", None)
    return d


def raise_for_transition(e: lifecycle.ProofPackError) -> None:
    if isinstance(e, lifecycle.NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if isinstance(e, lifecycle.HealthBelowThreshold):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "current_score": e.current_score, "required_score": e.required_score},
        ) from e
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


def _load_pack(db, pack_id: str) -> ProofPack:
    pack = load_proof_pack(pack_id=pack_id, db=db)
    if pack is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proof Pack not found")
    return pack


def _load_owned_pack(db, pack_id: str, ctx: PortalContext) -> ProofPack:
    pack = _load_pack(db, pack_id)
    if not pack.owned_by(ctx.uid):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to modify this Proof Pack")
    return pack


def _health_response(pack: ProofPack) -> dict[str, Any]:
    return {
        "pack_health": pack.pack_health.to_firestore(),
        "gaps": [g.to_firestore() for g in pack.gaps],
    }


@router.get("")
def list_packs(ctx: PortalContext = ContextDep):
    db = get_db()
    profile = get_user_profile(uid=ctx.uid, db=db)
    packs = list_proof_packs(user_id=ctx.uid, sme_id=_profile_field(profile, "sme_id", "smeId"), db=db)
    return {"proof_packs": [pack_out(p) for p in packs]}


@router.post("")
def create_pack(payload: ProofPackCreate, ctx: PortalContext = ContextDep):
    db = get_db()
    cfg = get_config()
    profile = get_user_profile(uid=ctx.uid, db=db)
    sme_id = _profile_field(profile, "sme_id", "smeId")

    tier = _profile_field(profile, "subscription_tier", "subscriptionTier")
    if tier == "free":
        existing = count_proof_packs(user_id=ctx.uid, sme_id=sme_id, db=db)
        if existing >= cfg.free_tier_pack_limit:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Free tier limited to {cfg.free_tier_pack_limit} Proof Packs. Upgrade to create more.",
            )

    now = _utc_now()
    pack = ProofPack(
        id=new_proof_pack_id(db),
        user_id=ctx.uid,
        sme_id=sme_id,
        tenant_id=_profile_field(profile, "tenant_id", "tenantId"),
        title=payload.title or "",
        description=payload.description or "",
        created_at=now,
    )
    pack = lifecycle.recompute(pack, config=cfg.pack_health, now=now)
    save_proof_pack(pack=pack, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="proof_pack_created",
        resource="proof_pack",
        resource_id=pack.id,
        details={"title": pack.title},
        db=db,
    )
    return {"id": pack.id, "proof_pack": pack_out(pack)}


@router.get("/{pack_id}")
def get_pack(pack_id: str, ctx: PortalContext = ContextDep):
    db = get_db()
    pack = _load_pack(db, pack_id)
    if not pack.owned_by(ctx.uid) and not ctx.has_role(*READ_ANY_ROLES):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to view this Proof Pack")
    out = pack_out(pack, include_file_data=True)
    out["remediation_actions"] = [asdict(a) for a in remediation_actions(pack.documents, pack.gaps)]
    return out


@router.get("/{pack_id}/access-log")
def access_log(pack_id: str, ctx: PortalContext = ContextDep):
    """Buyer views and downloads of the pack (newest first) plus its share links."""
    db = get_db()
    pack = _load_pack(db, pack_id)
    if not pack.owned_by(ctx.uid):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to view access log")

    events = list_pack_access_events(pack_id=pack.id, db=db)
    buyers: dict[str, dict[str, str]] = {}
    for event in events:
        buyer_id = str(event.get("buyer_id") or event.get("buyerId") or "")
        if buyer_id and buyer_id not in buyers:
            profile = get_user_profile(uid=buyer_id, db=db)
            buyers[buyer_id] = {
                "email": profile.get("email") or "Unknown",
                "company_name": _profile_field(profile, "company_name", "companyName") or "Unknown",
            }
        event["buyer"] = buyers.get(buyer_id) or {"email": "Unknown", "company_name": "Unknown"}

    return {
        "access_events": events,
        "share_links": list_share_links(pack_id=pack.id, db=db),
        "total_access": len(events),
    }


@router.put("/{pack_id}")
def update_pack(pack_id: str, payload: ProofPackUpdate, ctx: PortalContext = ContextDep):
    db = get_db()
    pack = _load_owned_pack(db, pack_id, ctx)
    try:
        lifecycle.ensure_editable(pack)
    except lifecycle.ProofPackError as e:
        raise_for_transition(e)

    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        updated = ProofPack.from_firestore(pack.id, {**pack.to_firestore(), **changes, "updated_at": _utc_now()})
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    save_proof_pack(pack=updated, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="proof_pack_updated",
        resource="proof_pack",
        resource_id=pack.id,
        details={k: changes[k] for k in ("title", "visibility") if k in changes},
        db=db,
    )
    return {"success": True, "proof_pack": pack_out(updated)}


@router.post("/{pack_id}/documents")
def upload_document(pack_id: str, payload: DocumentUpload, ctx: PortalContext = ContextDep):
    cfg = get_config()
    size = payload.payload_bytes()
    if size > cfg.max_document_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File size exceeds {cfg.max_document_bytes} byte limit",
        )

    db = get_db()
    pack = _load_owned_pack(db, pack_id, ctx)
    now = _utc_now()
    try:
        document = ProofPackDocument(
            id=new_document_id(),
            category=payload.category,
            file_name=payload.file_name,
            mime_type=payload.mime_type,
            file_size=size,
            expiration_date=payload.expiration_date,
            uploaded_at=now,
            document_type=payload.document_type,
            notes=payload.notes,
            file_data=payload.file_data,
        )
        updated = lifecycle.add_document(pack, document, config=cfg.pack_health, now=now)
    except lifecycle.ProofPackError as e:
        raise_for_transition(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    save_proof_pack(pack=updated, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="document_uploaded",
        resource="proof_pack",
        resource_id=pack.id,
        details={"document_id": document.id, "file_name": document.file_name, "category": document.category},
        db=db,
    )
    doc_out = document.to_firestore()
    doc_out.pop("file_data", None)
    return {"success": True, "document": doc_out, **_health_response(updated)}


@router.delete("/{pack_id}/documents/{document_id}")
def delete_document(pack_id: str, document_id: str, ctx: PortalContext = ContextDep):
    cfg = get_config()
    db = get_db()
    pack = _load_owned_pack(db, pack_id, ctx)
    try:
        updated = lifecycle.remove_document(pack, document_id, config=cfg.pack_health)
    except lifecycle.ProofPackError as e:
        raise_for_transition(e)

    save_proof_pack(pack=updated, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="document_deleted",
        resource="proof_pack",
        resource_id=pack.id,
        details={"document_id": document_id},
        db=db,
    )
    return {"success": True, **_health_response(updated)}


@router.put("/{pack_id}/gaps/{gap_id}")
def update_gap(pack_id: str, gap_id: str, payload: GapStatusUpdate, ctx: PortalContext = ContextDep):
    cfg = get_config()
    db = get_db()
    pack = _load_owned_pack(db, pack_id, ctx)
    try:
        updated = lifecycle.set_gap_status(pack, gap_id, payload.status, config=cfg.pack_health)
    except lifecycle.ProofPackError as e:
        raise_for_transition(e)

    save_proof_pack(pack=updated, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="gap_status_updated",
        resource="proof_pack",
        resource_id=pack.id,
        details={"gap_id": gap_id, "status": payload.status},
        db=db,
    )
    return {"success": True, **_health_response(updated)}


@router.post("/{pack_id}/submit")
def submit_pack(pack_id: str, ctx: PortalContext = ContextDep):
    cfg = get_config()
    db = get_db()
    pack = _load_owned_pack(db, pack_id, ctx)
    try:
        submitted = lifecycle.submit(pack, submitted_by=ctx.uid, config=cfg.pack_health)
    except lifecycle.ProofPackError as e:
        raise_for_transition(e)

    save_proof_pack(pack=submitted, db=db)

    score = submitted.pack_health.overall_score
    email = get_user_profile(uid=ctx.uid, db=db).get("email")
    if email:
        subject, body = proof_pack_submitted_email(
            title=submitted.title, score=score, pack_url=f"{cfg.app_url}/portal/proof-packs/{pack_id}"
        )
        enqueue_email(to=[email], subject=subject, body=body, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="proof_pack_submitted",
        resource="proof_pack",
        resource_id=pack_id,
        details={"title": submitted.title, "pack_health_score": score},
        db=db,
    )
    return {"success": True, "message": "Proof Pack submitted for review"}


@router.post("/{pack_id}/share")
def share_pack(pack_id: str, payload: ShareCreate, ctx: PortalContext = ContextDep):
    cfg = get_config()
    db = get_db()
    pack = _load_owned_pack(db, pack_id, ctx)
    try:
        lifecycle.check_shareable(pack)
    except lifecycle.ProofPackError as e:
        raise_for_transition(e)

    now = _utc_now()
    days = payload.expiration_days
    expires_at = now + timedelta(days=days) if days else None
    token = new_share_token()
    link = ShareLink(
        proof_pack_id=pack.id,
        user_id=ctx.uid,
        token=token,
        sme_id=pack.sme_id,
        expires_at=expires_at,
        created_at=now,
    )
    link_id = create_share_link(link=link, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="share_link_created",
        resource="proof_pack",
        resource_id=pack.id,
        details={"share_link_id": link_id, "expiration_days": days or "no expiration"},
        db=db,
    )
    return {
        "success": True,
        "share_link_id": link_id,
        "share_url": f"{cfg.app_url}/share/{token}",
        "token": token,
        "expires_at": expires_at.isoformat() if expires_at else None,
    }


@router.delete("/{pack_id}/share/{link_id}")
def revoke_share_link(pack_id: str, link_id: str, ctx: PortalContext = ContextDep):
    db = get_db()
    link = load_share_link(link_id=link_id, db=db)
    if link is None or (link.get("proof_pack_id") or link.get("proofPackId")) != pack_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Share link not found")
    if (link.get("user_id") or link.get("userId")) != ctx.uid:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to revoke this share link")

    deactivate_share_link(link_id=link_id, revoked_by=ctx.uid, db=db)
    write_audit_log(
        user_id=ctx.uid,
        action="share_link_revoked",
        resource="share_link",
        resource_id=link_id,
        details={"proof_pack_id": pack_id},
        db=db,
    )
    return {"success": True, "message": "Share link revoked"}
