from __future__ import annotations

import os
import threading
from typing import Optional

import firebase_admin
import google.auth
from firebase_admin import credentials, firestore
from google.auth.exceptions import DefaultCredentialsError

_CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

# Any of these means we are running on managed infrastructure.
_MANAGED_RUNTIME_VARS = ("K_SERVICE", "CLOUD_RUN_JOB", "FUNCTION_TARGET")

_init_lock = threading.Lock()


class ProductionFirestoreRefused(RuntimeError):
    pass


def running_locally() -> bool:
    if (os.getenv("ENV") or "").strip().lower() == "local":
        return True
    return not any((os.getenv(name) or "").strip() for name in _MANAGED_RUNTIME_VARS)


def require_firestore_emulator_or_allow_prod(*, caller: str) -> None:
    """
    Local runs must point at the emulator (FIRESTORE_EMULATOR_HOST) or opt in
    to the real project with ALLOW_PROD_FIRESTORE=1.
    """
    if not running_locally():
        return
    if (os.getenv("FIRESTORE_EMULATOR_HOST") or "").strip():
        return
    if (os.getenv("ALLOW_PROD_FIRESTORE") or "").strip() == "1":
        return
    raise ProductionFirestoreRefused(
        f"{caller}: refusing to touch production Firestore from a local process. "
        "Set FIRESTORE_EMULATOR_HOST (e.g. 127.0.0.1:8080) or ALLOW_PROD_FIRESTORE=1."
    )


def _project_id(explicit: Optional[str]) -> str:
    project = explicit or os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT")
    if project:
        return project
    try:
        _, project = google.auth.default(scopes=[_CLOUD_PLATFORM_SCOPE])
    except DefaultCredentialsError:
        project = None
    if not project:
        raise RuntimeError("Set FIREBASE_PROJECT_ID; no project id found in Application Default Credentials.")
    return project


def init_firebase_admin(*, project_id: Optional[str] = None) -> None:
    """Initialize the default Firebase app once per process (ADC credentials)."""
    require_firestore_emulator_or_allow_prod(caller="init_firebase_admin")
    if firebase_admin._apps:
        return
    with _init_lock:
        if firebase_admin._apps:
            return
        try:
            cred = credentials.ApplicationDefault()
        except DefaultCredentialsError as e:
            raise RuntimeError(
                "Application Default Credentials unavailable. Locally: `gcloud auth application-default login`."
            ) from e
        firebase_admin.initialize_app(cred, {"projectId": _project_id(project_id)})


def get_firestore_client(*, project_id: Optional[str] = None):
    init_firebase_admin(project_id=project_id)
    return firestore.client()
