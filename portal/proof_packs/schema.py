from __future__ import annotations

"""
Firestore collection naming + ID conventions for Proof Packs.

Collections:
- proofPacks/{pack_id} (documents are stored inline in the `documents` array)
- shareLinks/{link_id}
- proofPackAccess/{auto_id} (buyer views and downloads through share links)
- users/{uid} (profile: sme_id, email, subscription_tier, partner_id)

This file avoids Firestore reads/writes; it provides names and deterministic
ids used by the service layer.
"""

import re
import secrets

COLLECTION_PROOF_PACKS = "proofPacks"
COLLECTION_SHARE_LINKS = "shareLinks"
COLLECTION_PROOF_PACK_ACCESS = "proofPackAccess"
COLLECTION_USERS = "users"

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def category_slug(category: str) -> str:
    """
    Example: "Past Performance" -> "past_performance"
    """
    return _SLUG_RE.sub("_", (category or "").strip().lower()).strip("_")


def gap_id(*, category: str, kind: str) -> str:
    """
    Deterministic gap id so an acknowledgement survives recomputation.

    Examples: "gap_financial", "gap_expired_financial", "gap_expiring_financial"
    """
    slug = category_slug(category)
    if kind == "missing":
        return f"gap_{slug}"
    return f"gap_{kind}_{slug}"


def new_document_id() -> str:
    return f"doc_{secrets.token_hex(8)}"


def new_share_token() -> str:
    return secrets.token_hex(32)
