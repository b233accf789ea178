from __future__ import annotations

"""
Proof Pack state transitions.

Every document add/remove and gap status change goes through `recompute`, so
`pack_health` and `gaps` on a returned ProofPack always match its documents.
These functions never touch Firestore; callers persist the returned pack.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from portal.common.config import ELIGIBILITY_THRESHOLD, PackHealthConfig

from .health import evaluate_pack
from .models import GAP_STATUSES, ProofPack, ProofPackDocument


class ProofPackError(ValueError):
    """Base error for rejected transitions (HTTP 400)."""


class NotFoundError(ProofPackError):
    """A referenced document/gap does not exist on the pack (HTTP 404)."""


class InvalidStateError(ProofPackError):
    pass


class HealthBelowThreshold(ProofPackError):
    def __init__(self, message: str, *, current_score: int):
        super().__init__(message)
        self.current_score = int(current_score)
        self.required_score = ELIGIBILITY_THRESHOLD


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def recompute(
    pack: ProofPack,
    *,
    documents: Optional[tuple[ProofPackDocument, ...]] = None,
    config: Optional[PackHealthConfig] = None,
    now: Optional[datetime] = None,
) -> ProofPack:
    now_utc = now or _utc_now()
    docs = pack.documents if documents is None else tuple(documents)
    health, gaps = evaluate_pack(docs, config, now=now_utc, previous_gaps=pack.gaps)
    return replace(pack, documents=docs, pack_health=health, gaps=tuple(gaps), updated_at=now_utc)


def ensure_editable(pack: ProofPack) -> None:
    if pack.status == "submitted":
        raise InvalidStateError("Proof Pack is under review and cannot be edited")


def add_document(
    pack: ProofPack,
    document: ProofPackDocument,
    *,
    config: Optional[PackHealthConfig] = None,
    now: Optional[datetime] = None,
) -> ProofPack:
    ensure_editable(pack)
    if any(d.id == document.id for d in pack.documents):
        raise InvalidStateError(f"document {document.id} already exists")
    return recompute(pack, documents=pack.documents + (document,), config=config, now=now)


def remove_document(
    pack: ProofPack,
    document_id: str,
    *,
    config: Optional[PackHealthConfig] = None,
    now: Optional[datetime] = None,
) -> ProofPack:
    ensure_editable(pack)
    remaining = tuple(d for d in pack.documents if d.id != document_id)
    if len(remaining) == len(pack.documents):
        raise NotFoundError("Document not found")
    return recompute(pack, documents=remaining, config=config, now=now)


def set_gap_status(
    pack: ProofPack,
    gap_id: str,
    status: str,
    *,
    config: Optional[PackHealthConfig] = None,
    now: Optional[datetime] = None,
) -> ProofPack:
    ensure_editable(pack)
    if status not in GAP_STATUSES:
        raise ProofPackError("status must be one of: open|acknowledged|not_applicable")
    if not any(g.id == gap_id for g in pack.gaps):
        raise NotFoundError("Gap not found")
    gaps = tuple(replace(g, status=status) if g.id == gap_id else g for g in pack.gaps)
    return recompute(replace(pack, gaps=gaps), config=config, now=now)


def submit(
    pack: ProofPack,
    *,
    submitted_by: str,
    config: Optional[PackHealthConfig] = None,
    now: Optional[datetime] = None,
) -> ProofPack:
    """
    draft -> submitted. Gated on a score recomputed at `now` so documents that
    expired since the last change count against the pack.
    """
    if pack.status != "draft":
        raise InvalidStateError("Proof Pack has already been submitted")
    now_utc = now or _utc_now()
    fresh = recompute(pack, config=config, now=now_utc)
    score = fresh.pack_health.overall_score
    if score < ELIGIBILITY_THRESHOLD:
        raise HealthBelowThreshold(
            f"Pack Health score must be >= {ELIGIBILITY_THRESHOLD} to submit for review", current_score=score
        )
    return replace(
        fresh,
        status="submitted",
        submitted_at=now_utc,
        submitted_by=submitted_by,
        review_status="pending",
        reviewed_by=None,
        reviewed_at=None,
        review_comments=None,
    )


def check_shareable(pack: ProofPack) -> None:
    if pack.status != "approved":
        raise InvalidStateError("Only approved Proof Packs can be shared")
    if pack.pack_health.overall_score < ELIGIBILITY_THRESHOLD:
        raise HealthBelowThreshold(
            f"Pack Health score must be >= {ELIGIBILITY_THRESHOLD} to share",
            current_score=pack.pack_health.overall_score,
        )


def review(
    pack: ProofPack,
    *,
    action: str,
    reviewer: str,
    comments: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ProofPack:
    """
    submitted -> approved (approve) | draft with review_status=rejected (reject).
    """
    if action not in ("approve", "reject"):
        raise ProofPackError("Invalid action. Must be 'approve' or 'reject'")
    comments = (comments or "").strip() or None
    if action == "reject" and not comments:
        raise ProofPackError("Comments are required when rejecting")
    if pack.status != "submitted":
        raise InvalidStateError("Proof Pack is not in submitted status")

    now_utc = now or _utc_now()
    approved = action == "approve"
    return replace(
        pack,
        status="approved" if approved else "draft",
        review_status="approved" if approved else "rejected",
        reviewed_by=reviewer,
        reviewed_at=now_utc,
        review_comments=comments,
        updated_at=now_utc,
    )
