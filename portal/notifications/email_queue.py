from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from google.cloud.firestore import Client

from portal.common.logging import log_event
from portal.persistence.firebase_client import get_firestore_client
from portal.persistence.firestore_retry import with_firestore_retry

logger = logging.getLogger(__name__)

COLLECTION_EMAIL_QUEUE = "emailQueue"


def enqueue_email(
    *,
    to: Iterable[Optional[str]],
    subject: str,
    body: str,
    db: Optional[Client] = None,
) -> Optional[str]:
    """
    Queue an email for later delivery.

    Writes:
      emailQueue/{auto_id} {to, subject, body, created_at, status="pending"}

    Returns None (and writes nothing) when no recipient address is known.
    """
    recipients = [str(a).strip() for a in to if a and str(a).strip()]
    if not recipients:
        log_event(logger, "email.skipped_no_recipient", severity="INFO", subject=subject)
        return None

    client = db or get_firestore_client()
    ref = client.collection(COLLECTION_EMAIL_QUEUE).document()
    doc = {
        "to": recipients,
        "subject": subject,
        "body": body,
        "created_at": datetime.now(timezone.utc),
        "status": "pending",
    }
    with_firestore_retry(lambda: ref.set(doc))
    return ref.id


def proof_pack_submitted_email(*, title: str, score: int, pack_url: str) -> tuple[str, str]:
    body = (
        "<h2>Proof Pack Submitted Successfully</h2>"
        f'<p>Your Proof Pack "{title}" has been submitted for QA review.</p>'
        f"<p><strong>Pack Health Score:</strong> {score}</p>"
        "<p>You will receive an email notification once the review is complete.</p>"
        "<p>While under review, you cannot edit the Proof Pack.</p>"
        f'<p><a href="{pack_url}">View Proof Pack</a></p>'
    )
    return "Proof Pack Submitted for Review", body


def proof_pack_reviewed_email(
    *, approved: bool, title: str, score: int, comments: Optional[str], pack_url: str
) -> tuple[str, str]:
    if approved:
        body = (
            "<h2>Congratulations! Your Proof Pack has been approved.</h2>"
            f'<p>Your Proof Pack "{title}" has been reviewed and approved by our QA team.</p>'
            f"<p><strong>Pack Health Score:</strong> {score}</p>"
            "<p>Your Proof Pack is now eligible for buyer introductions.</p>"
        )
        if comments:
            body += f"<p><strong>Reviewer Comments:</strong> {comments}</p>"
        body += f'<p><a href="{pack_url}">View Proof Pack</a></p>'
        return "Proof Pack Approved!", body

    body = (
        "<h2>Your Proof Pack requires revisions</h2>"
        f'<p>Your Proof Pack "{title}" has been reviewed and requires some updates before approval.</p>'
        f"<p><strong>Reviewer Comments:</strong></p><p>{comments}</p>"
        "<p>Please make the necessary revisions and resubmit for review.</p>"
        f'<p><a href="{pack_url}">Edit Proof Pack</a></p>'
    )
    return "Proof Pack Requires Revisions", body


def settlement_email(
    *,
    period: str,
    gross_revenue: float,
    platform_fee_percentage: float,
    platform_fee_amount: float,
    net_revenue: float,
    event_count: int,
    revenue_url: str,
) -> tuple[str, str]:
    body = (
        "<h2>Revenue Settlement Report</h2>"
        "<p>Your revenue settlement has been calculated.</p>"
        f"<p><strong>Period:</strong> {period}</p>"
        f"<p><strong>Gross Revenue:</strong> ${gross_revenue:.2f}</p>"
        f"<p><strong>Platform Fee ({platform_fee_percentage:g}%):</strong> ${platform_fee_amount:.2f}</p>"
        f"<p><strong>Net Revenue:</strong> ${net_revenue:.2f}</p>"
        f"<p><strong>Events:</strong> {event_count}</p>"
        f'<p><a href="{revenue_url}">View Details</a></p>'
    )
    return "Revenue Settlement", body
