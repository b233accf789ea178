from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Mapping, Optional, TypeVar

from portal.common.logging import log_event

logger = logging.getLogger(__name__)
T = TypeVar("T")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        # Treat naive datetimes as UTC to avoid ambiguous comparisons.
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _opt_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, str) and value.strip():
        return _as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    return None


def _first(d: Mapping[str, Any], *keys: str) -> Any:
    # Documents written by older clients use camelCase field names.
    for k in keys:
        if d.get(k) is not None:
            return d.get(k)
    return None


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _parse_entries(raw_items: Any, parse: Callable[[Mapping[str, Any]], T], *, kind: str) -> tuple[T, ...]:
    # Unreadable entries are skipped and logged.
    out: list[T] = []
    for raw in raw_items if isinstance(raw_items, (list, tuple)) else ():
        try:
            if not isinstance(raw, Mapping):
                raise TypeError(f"expected mapping, got {type(raw).__name__}")
            out.append(parse(raw))
        except (TypeError, ValueError) as e:
            log_event(logger, "proof_pack.entry_skipped", severity="WARNING", kind=kind, error=str(e))
    return tuple(out)


PackStatus = Literal["draft", "submitted", "approved"]
PACK_STATUSES: tuple[str, ...] = ("draft", "submitted", "approved")

ReviewStatus = Literal["pending", "approved", "rejected"]
REVIEW_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected")

Visibility = Literal["private", "shared", "public"]
VISIBILITIES: tuple[str, ...] = ("private", "shared", "public")

GapKind = Literal["missing", "expired", "expiring"]
GapPriority = Literal["high", "medium", "low"]
GapStatus = Literal["open", "acknowledged", "not_applicable"]
GAP_STATUSES: tuple[str, ...] = ("open", "acknowledged", "not_applicable")
CLOSED_GAP_STATUSES: frozenset[str] = frozenset({"acknowledged", "not_applicable"})


@dataclass(frozen=True, slots=True)
class ProofPackDocument:
    """
    One uploaded proof item, stored inline in proofPacks/{pack_id}.documents.

    Immutable once uploaded; replaced by delete + re-upload.
    """

    id: str
    category: str
    file_name: str = ""
    mime_type: str = ""
    file_size: int = 0
    expiration_date: Optional[datetime] = None
    uploaded_at: Optional[datetime] = None
    document_type: Optional[str] = None
    notes: Optional[str] = None
    file_data: Optional[str] = None

    def __post_init__(self) -> None:
        did = (self.id or "").strip()
        if not did:
            raise ValueError("document id is required")
        object.__setattr__(self, "id", did)

        cat = (self.category or "").strip()
        if not cat:
            raise ValueError("category is required")
        object.__setattr__(self, "category", cat)

        if self.file_size < 0:
            raise ValueError("file_size must be >= 0")

        if self.expiration_date is not None:
            object.__setattr__(self, "expiration_date", _as_utc(self.expiration_date))
        if self.uploaded_at is not None:
            object.__setattr__(self, "uploaded_at", _as_utc(self.uploaded_at))

    def to_firestore(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "category": self.category,
            "mime_type": self.mime_type,
            "file_size": int(self.file_size),
            "file_data": self.file_data,
            "expiration_date": self.expiration_date,
            "uploaded_at": self.uploaded_at,
            "metadata": {
                "document_type": self.document_type,
                "notes": self.notes,
            },
        }

    @staticmethod
    def from_firestore(data: Mapping[str, Any]) -> "ProofPackDocument":
        d = dict(data or {})
        meta = dict(d.get("metadata") or {})
        return ProofPackDocument(
            id=str(d.get("id") or ""),
            category=str(d.get("category") or ""),
            file_name=str(_first(d, "file_name", "fileName") or ""),
            mime_type=str(_first(d, "mime_type", "mimeType") or ""),
            file_size=int(_first(d, "file_size", "fileSize") or 0),
            expiration_date=_opt_utc(_first(d, "expiration_date", "expirationDate")),
            uploaded_at=_opt_utc(_first(d, "uploaded_at", "uploadedAt")),
            document_type=_opt_str(_first(meta, "document_type", "documentType")),
            notes=_opt_str(meta.get("notes")),
            file_data=_first(d, "file_data", "fileData"),
        )


@dataclass(frozen=True, slots=True)
class Gap:
    id: str
    category: str
    kind: GapKind
    priority: GapPriority
    recommendation: str
    status: GapStatus = "open"

    def __post_init__(self) -> None:
        if self.kind not in ("missing", "expired", "expiring"):
            raise ValueError("kind must be one of: missing|expired|expiring")
        if self.priority not in ("high", "medium", "low"):
            raise ValueError("priority must be one of: high|medium|low")
        if self.status not in GAP_STATUSES:
            raise ValueError("status must be one of: open|acknowledged|not_applicable")

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_GAP_STATUSES

    def to_firestore(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "kind": self.kind,
            "priority": self.priority,
            "recommendation": self.recommendation,
            "status": self.status,
        }

    @staticmethod
    def from_firestore(data: Mapping[str, Any]) -> "Gap":
        d = dict(data or {})
        return Gap(
            id=str(d.get("id") or ""),
            category=str(d.get("category") or ""),
            kind=str(d.get("kind") or "missing"),
            priority=str(d.get("priority") or "high"),
            recommendation=str(d.get("recommendation") or ""),
            status=str(d.get("status") or "open"),
        )


@dataclass(frozen=True, slots=True)
class PackHealth:
    overall_score: int
    completeness_score: int
    expiration_score: int
    quality_score: int
    remediation_score: int
    is_eligible_for_introductions: bool
    breakdown: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    calculated_at: Optional[datetime] = None

    @staticmethod
    def zero(*, calculated_at: Optional[datetime] = None) -> "PackHealth":
        return PackHealth(
            overall_score=0,
            completeness_score=0,
            expiration_score=0,
            quality_score=0,
            remediation_score=0,
            is_eligible_for_introductions=False,
            calculated_at=calculated_at,
        )

    def to_firestore(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "completeness_score": self.completeness_score,
            "expiration_score": self.expiration_score,
            "quality_score": self.quality_score,
            "remediation_score": self.remediation_score,
            "is_eligible_for_introductions": bool(self.is_eligible_for_introductions),
            "breakdown": {k: dict(v) for k, v in self.breakdown.items()},
            "calculated_at": self.calculated_at,
        }

    @staticmethod
    def from_firestore(data: Optional[Mapping[str, Any]]) -> "PackHealth":
        d = dict(data or {})
        return PackHealth(
            overall_score=int(_first(d, "overall_score", "overallScore") or 0),
            completeness_score=int(_first(d, "completeness_score", "completenessScore") or 0),
            expiration_score=int(_first(d, "expiration_score", "expirationScore") or 0),
            quality_score=int(_first(d, "quality_score", "qualityScore") or 0),
            remediation_score=int(_first(d, "remediation_score", "remediationScore") or 0),
            is_eligible_for_introductions=bool(
                _first(d, "is_eligible_for_introductions", "isEligibleForIntroductions") or False
            ),
            breakdown=dict(d.get("breakdown") or {}),
            calculated_at=_opt_utc(_first(d, "calculated_at", "calculatedAt")),
        )


@dataclass(frozen=True, slots=True)
class ProofPack:
    """
    Firestore path:
      proofPacks/{pack_id}

    `pack_health` and `gaps` are derived from `documents`; callers recompute
    them through `portal.proof_packs.health.evaluate_pack` on every change.
    """

    id: str
    user_id: str
    title: str = "Untitled Proof Pack"
    sme_id: Optional[str] = None
    tenant_id: Optional[str] = None
    partner_id: Optional[str] = None
    description: str = ""
    status: PackStatus = "draft"
    visibility: Visibility = "private"
    tags: tuple[str, ...] = ()
    documents: tuple[ProofPackDocument, ...] = ()
    pack_health: PackHealth = field(default_factory=PackHealth.zero)
    gaps: tuple[Gap, ...] = ()

    review_status: Optional[ReviewStatus] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_comments: Optional[str] = None
    submitted_at: Optional[datetime] = None
    submitted_by: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        pid = (self.id or "").strip()
        if not pid:
            raise ValueError("id is required")
        if "/" in pid:
            raise ValueError("id must not contain '/'")
        object.__setattr__(self, "id", pid)

        uid = (self.user_id or "").strip()
        if not uid:
            raise ValueError("user_id is required")
        object.__setattr__(self, "user_id", uid)

        object.__setattr__(self, "title", (self.title or "").strip() or "Untitled Proof Pack")

        if self.status not in PACK_STATUSES:
            raise ValueError("status must be one of: draft|submitted|approved")
        if self.visibility not in VISIBILITIES:
            raise ValueError("visibility must be one of: private|shared|public")
        if self.review_status is not None and self.review_status not in REVIEW_STATUSES:
            raise ValueError("review_status must be one of: pending|approved|rejected")

        object.__setattr__(self, "tags", tuple(s for s in (str(t).strip() for t in self.tags or ()) if s))

        for name in ("reviewed_at", "submitted_at", "created_at", "updated_at"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, _as_utc(value))

    def owned_by(self, uid: str) -> bool:
        return self.user_id == uid

    def to_firestore(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "user_id": self.user_id,
            "sme_id": self.sme_id,
            "tenant_id": self.tenant_id,
            "partner_id": self.partner_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "visibility": self.visibility,
            "tags": list(self.tags),
            "documents": [d.to_firestore() for d in self.documents],
            "document_count": len(self.documents),
            "pack_health": self.pack_health.to_firestore(),
            "gaps": [g.to_firestore() for g in self.gaps],
            "review_status": self.review_status,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at,
            "review_comments": self.review_comments,
            "submitted_at": self.submitted_at,
            "submitted_by": self.submitted_by,
        }
        if self.created_at is not None:
            doc["created_at"] = self.created_at
        if self.updated_at is not None:
            doc["updated_at"] = self.updated_at
        return doc

    @staticmethod
    def from_firestore(pack_id: str, data: Mapping[str, Any]) -> "ProofPack":
        d = dict(data or {})
        return ProofPack(
            id=pack_id,
            user_id=str(_first(d, "user_id", "userId") or ""),
            sme_id=_first(d, "sme_id", "smeId"),
            tenant_id=_first(d, "tenant_id", "tenantId"),
            partner_id=_first(d, "partner_id", "partnerId"),
            title=str(d.get("title") or ""),
            description=str(d.get("description") or ""),
            status=str(d.get("status") or "draft"),
            visibility=str(d.get("visibility") or "private"),
            tags=tuple(str(t) for t in d.get("tags") or ()),
            documents=_parse_entries(d.get("documents"), ProofPackDocument.from_firestore, kind="document"),
            pack_health=PackHealth.from_firestore(_first(d, "pack_health", "packHealth")),
            gaps=_parse_entries(d.get("gaps"), Gap.from_firestore, kind="gap"),
            review_status=_first(d, "review_status", "reviewStatus"),
            reviewed_by=_first(d, "reviewed_by", "reviewedBy"),
            reviewed_at=_opt_utc(_first(d, "reviewed_at", "reviewedAt")),
            review_comments=_first(d, "review_comments", "reviewComments"),
            submitted_at=_opt_utc(_first(d, "submitted_at", "submittedAt")),
            submitted_by=_first(d, "submitted_by", "submittedBy"),
            created_at=_opt_utc(_first(d, "created_at", "createdAt")),
            updated_at=_opt_utc(_first(d, "updated_at", "updatedAt")),
        )


@dataclass(frozen=True, slots=True)
class ShareLink:
    """
    Firestore path:
      shareLinks/{link_id}
    """

    proof_pack_id: str
    user_id: str
    token: str
    sme_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    access_count: int = 0
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not (self.proof_pack_id or "").strip():
            raise ValueError("proof_pack_id is required")
        if not (self.token or "").strip():
            raise ValueError("token is required")
        if self.expires_at is not None:
            object.__setattr__(self, "expires_at", _as_utc(self.expires_at))
        if self.created_at is not None:
            object.__setattr__(self, "created_at", _as_utc(self.created_at))

    def to_firestore(self) -> dict[str, Any]:
        return {
            "proof_pack_id": self.proof_pack_id,
            "sme_id": self.sme_id,
            "user_id": self.user_id,
            "token": self.token,
            "expires_at": self.expires_at,
            "is_active": bool(self.is_active),
            "access_count": int(self.access_count),
            "created_at": self.created_at,
            "created_by": self.user_id,
        }
