from __future__ import annotations

from datetime import datetime, timezone

import pytest

from portal.proof_packs.models import Gap, ProofPack, ProofPackDocument
from portal.revenue.models import AttributionEvent


def test_proof_pack_rejects_path_like_ids_and_unknown_status():
    with pytest.raises(ValueError):
        ProofPack(id="a/b", user_id="u1")
    with pytest.raises(ValueError):
        ProofPack(id="p1", user_id="")
    with pytest.raises(ValueError):
        ProofPack(id="p1", user_id="u1", status="archived")


def test_proof_pack_reads_camel_case_documents():
    pack = ProofPack.from_firestore(
        "p1",
        {
            "userId": "u1",
            "smeId": "sme-co",
            "title": "  ",
            "documents": [
                {"id": "d1", "category": "Financial", "fileName": "fs.pdf",
                 "expirationDate": "2030-01-01T00:00:00Z"},
            ],
            "submittedAt": "2025-03-01T12:00:00",
        },
    )
    assert pack.user_id == "u1"
    assert pack.sme_id == "sme-co"
    assert pack.title == "Untitled Proof Pack"
    (doc,) = pack.documents
    assert doc.file_name == "fs.pdf"
    assert doc.expiration_date == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert pack.submitted_at.tzinfo is not None


def test_document_and_gap_validation():
    with pytest.raises(ValueError):
        ProofPackDocument(id="d1", category=" ")
    with pytest.raises(ValueError):
        ProofPackDocument(id="d1", category="Financial", file_size=-1)
    with pytest.raises(ValueError):
        Gap(id="g1", category="Financial", kind="missing", priority="high", recommendation="x", status="ignored")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"revenue_amount": -5.0},
        {"revenue_amount": float("inf")},
        {"revenue_amount": True},
        {"attribution_percentage": 100.5},
        {"event_type": "referral"},
        {"partner_id": "a/b"},
    ],
)
def test_attribution_event_validation(kwargs):
    base = {"id": "e1", "partner_id": "p1", "sme_id": "s1", "event_type": "lead_generated", "revenue_amount": 10.0}
    base.update(kwargs)
    with pytest.raises(ValueError):
        AttributionEvent(**base)


def test_attributed_amount_applies_percentage():
    event = AttributionEvent(
        id="e1", partner_id="p1", sme_id="s1", event_type="service_delivered",
        revenue_amount=800.0, attribution_percentage=25.0,
    )
    assert event.attributed_amount == pytest.approx(200.0)
    assert event.is_pending
    assert event.to_firestore()["is_immutable"] is True


def test_unreadable_stored_entries_are_skipped_not_fatal():
    pack = ProofPack.from_firestore(
        "p1",
        {
            "user_id": "u1",
            "documents": [
                {"id": "d1", "category": "Financial", "metadata": {"notes": 42}},
                {"id": "d2", "category": ""},
                "junk",
            ],
            "gaps": [{"id": "g1", "category": "Safety", "kind": "sideways"}],
        },
    )
    assert [d.id for d in pack.documents] == ["d1"]
    assert pack.documents[0].notes == "42"
    assert pack.gaps == ()
