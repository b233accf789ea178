from __future__ import annotations

from portal.persistence.firebase_client import get_firestore_client


def get_db():
    return get_firestore_client()
