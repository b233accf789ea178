from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from google.cloud.firestore import Client

from portal.persistence.firebase_client import get_firestore_client
from portal.persistence.firestore_retry import with_firestore_retry

from .models import ProofPack, ShareLink
from .schema import COLLECTION_PROOF_PACK_ACCESS, COLLECTION_PROOF_PACKS, COLLECTION_SHARE_LINKS, COLLECTION_USERS


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def proof_packs_collection(db: Optional[Client] = None):
    client = db or get_firestore_client()
    return client.collection(COLLECTION_PROOF_PACKS)


def proof_pack_ref(*, pack_id: str, db: Optional[Client] = None):
    return proof_packs_collection(db).document(pack_id)


def share_links_collection(db: Optional[Client] = None):
    client = db or get_firestore_client()
    return client.collection(COLLECTION_SHARE_LINKS)


def get_user_profile(*, uid: str, db: Optional[Client] = None) -> dict[str, Any]:
    """
    users/{uid}; an empty dict when the profile does not exist.
    """
    client = db or get_firestore_client()
    snap = client.collection(COLLECTION_USERS).document(uid).get()
    if not getattr(snap, "exists", False):
        return {}
    return snap.to_dict() or {}


def load_proof_pack(*, pack_id: str, db: Optional[Client] = None) -> Optional[ProofPack]:
    if not pack_id or "/" in pack_id:
        return None
    snap = proof_pack_ref(pack_id=pack_id, db=db).get()
    if not getattr(snap, "exists", False):
        return None
    return ProofPack.from_firestore(pack_id, snap.to_dict() or {})


def new_proof_pack_id(db: Optional[Client] = None) -> str:
    return proof_packs_collection(db).document().id


def save_proof_pack(*, pack: ProofPack, db: Optional[Client] = None) -> None:
    """
    Upsert of the pack document (documents, derived health and gaps
    are always written together).

    Writes:
      proofPacks/{pack_id}
    """
    doc = pack.to_firestore()
    doc.setdefault("created_at", _utc_now())
    doc.setdefault("updated_at", _utc_now())
    ref = proof_pack_ref(pack_id=pack.id, db=db)
    with_firestore_retry(lambda: ref.set(doc, merge=True))


def _owner_query(*, sme_id: Optional[str], user_id: str, db: Optional[Client]):
    col = proof_packs_collection(db)
    if sme_id:
        return col.where("sme_id", "==", sme_id)
    return col.where("user_id", "==", user_id)


def list_proof_packs(*, user_id: str, sme_id: Optional[str] = None, db: Optional[Client] = None) -> list[ProofPack]:
    q = _owner_query(sme_id=sme_id, user_id=user_id, db=db).order_by("updated_at", direction="DESCENDING")
    return [ProofPack.from_firestore(s.id, s.to_dict() or {}) for s in q.stream()]


def count_proof_packs(*, user_id: str, sme_id: Optional[str] = None, db: Optional[Client] = None) -> int:
    return sum(1 for _ in _owner_query(sme_id=sme_id, user_id=user_id, db=db).stream())


def list_submitted_proof_packs(*, db: Optional[Client] = None) -> list[ProofPack]:
    q = proof_packs_collection(db).where("status", "==", "submitted").order_by("submitted_at")
    return [ProofPack.from_firestore(s.id, s.to_dict() or {}) for s in q.stream()]


def create_share_link(*, link: ShareLink, db: Optional[Client] = None) -> str:
    """
    Writes:
      shareLinks/{auto_id}
    """
    ref = share_links_collection(db).document()
    doc = link.to_firestore()
    if doc.get("created_at") is None:
        doc["created_at"] = _utc_now()
    with_firestore_retry(lambda: ref.set(doc))
    return ref.id


def load_share_link(*, link_id: str, db: Optional[Client] = None) -> Optional[dict[str, Any]]:
    if not link_id or "/" in link_id:
        return None
    snap = share_links_collection(db).document(link_id).get()
    if not getattr(snap, "exists", False):
        return None
    return snap.to_dict() or {}


def deactivate_share_link(*, link_id: str, revoked_by: str, db: Optional[Client] = None) -> None:
    ref = share_links_collection(db).document(link_id)
    doc = {"is_active": False, "revoked_at": _utc_now(), "revoked_by": revoked_by}
    with_firestore_retry(lambda: ref.update(doc))


def _with_ids(snaps) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for snap in snaps:
        d = snap.to_dict() or {}
        d["id"] = snap.id
        out.append(d)
    return out


def list_share_links(*, pack_id: str, db: Optional[Client] = None) -> list[dict[str, Any]]:
    return _with_ids(share_links_collection(db).where("proof_pack_id", "==", pack_id).stream())


def list_pack_access_events(*, pack_id: str, limit: int = 100, db: Optional[Client] = None) -> list[dict[str, Any]]:
    """
    Newest first.

    Reads:
      proofPackAccess where proof_pack_id == pack_id
    """
    client = db or get_firestore_client()
    q = (
        client.collection(COLLECTION_PROOF_PACK_ACCESS)
        .where("proof_pack_id", "==", pack_id)
        .order_by("timestamp", direction="DESCENDING")
        .limit(int(limit))
    )
    return _with_ids(q.stream())
