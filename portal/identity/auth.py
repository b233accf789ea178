from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from firebase_admin import auth as firebase_auth

from portal.common.logging import log_event
from portal.persistence.firebase_client import init_firebase_admin

from .context import KNOWN_ROLES, PortalContext

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization") or ""
    if not header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization: Bearer <token>",
        )
    token = header.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Empty bearer token")
    return token


def verify_id_token(token: str) -> dict:
    init_firebase_admin()
    return firebase_auth.verify_id_token(token)


def get_portal_context(request: Request) -> PortalContext:
    """
    Verify the Firebase ID token and extract (uid, role).

    The role comes from the `role` custom claim. Unknown roles are kept as-is
    so role checks fail closed.
    """
    token = _bearer_token(request)

    try:
        decoded = verify_id_token(token)
    except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
            firebase_auth.RevokedIdTokenError, firebase_auth.CertificateFetchError) as e:
        # Never log the token value; only the failure reason.
        log_event(
            logger,
            "auth_failure",
            severity="WARNING",
            auth_provider="firebase",
            reason="verify_id_token_failed",
            error=type(e).__name__,
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid ID token") from e

    uid = str(decoded.get("uid") or decoded.get("sub") or "").strip()
    if not uid:
        log_event(logger, "auth_failure", severity="WARNING", auth_provider="firebase", reason="missing_uid")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid ID token: missing uid")

    role = str(decoded.get("role") or "sme_user").strip()
    if role not in KNOWN_ROLES:
        log_event(logger, "auth_unknown_role", severity="WARNING", uid=uid, role=role)

    return PortalContext(uid=uid, role=role, claims=decoded)


def require_role(ctx: PortalContext, *roles: str) -> None:
    if not ctx.has_role(*roles):
        log_event(logger, "auth_forbidden", severity="WARNING", uid=ctx.uid, role=ctx.role, required=list(roles))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


ContextDep = Depends(get_portal_context)
