from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from google.cloud.firestore import Client

from portal.persistence.firebase_client import get_firestore_client
from portal.persistence.firestore_retry import with_firestore_retry

COLLECTION_AUDIT_LOGS = "auditLogs"


def write_audit_log(
    *,
    user_id: str,
    action: str,
    resource: str,
    resource_id: str,
    details: Optional[Mapping[str, Any]] = None,
    db: Optional[Client] = None,
) -> str:
    """
    Writes:
      auditLogs/{auto_id}

    Failures propagate; an audit insert is part of the request it records.
    """
    client = db or get_firestore_client()
    ref = client.collection(COLLECTION_AUDIT_LOGS).document()
    doc = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "resource_id": resource_id,
        "details": dict(details or {}),
        "timestamp": datetime.now(timezone.utc),
    }
    with_firestore_retry(lambda: ref.set(doc))
    return ref.id
