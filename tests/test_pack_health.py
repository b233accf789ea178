from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from portal.common.config import DEFAULT_REQUIRED_CATEGORIES, ELIGIBILITY_THRESHOLD, PackHealthConfig, QualityRules
from portal.proof_packs.health import (
    compute_pack_health,
    evaluate_pack,
    identify_gaps,
    is_eligible,
    quality_points,
    remediation_actions,
)
from portal.proof_packs.models import ProofPackDocument

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _doc(category: str, *, expires: datetime | None = None, complete: bool = True, doc_id: str | None = None):
    slug = category.lower().replace(" ", "-")
    return ProofPackDocument(
        id=doc_id or f"doc_{slug}",
        category=category,
        file_name=f"{slug}-evidence-2025.pdf",
        mime_type="application/pdf",
        file_size=1024,
        expiration_date=expires,
        uploaded_at=NOW - timedelta(days=1),
        document_type="certificate" if complete else None,
        notes="Issued by the state licensing board" if complete else None,
    )


def _full_set() -> list[ProofPackDocument]:
    return [_doc(c) for c in DEFAULT_REQUIRED_CATEGORIES]


def test_single_covered_category_of_two_reports_the_other_as_missing():
    cfg = PackHealthConfig(required_categories=("insurance", "license"))
    docs = [_doc("insurance", expires=NOW + timedelta(days=365), complete=False)]

    gaps = identify_gaps(docs, cfg, now=NOW)
    assert [g.category for g in gaps] == ["license"]
    assert gaps[0].kind == "missing"
    assert gaps[0].priority == "high"

    health = compute_pack_health(docs, cfg, now=NOW)
    assert health.completeness_score == 50
    assert health.expiration_score == 50
    # Descriptive name + specific category = 2 of 4 rules, averaged over 2 categories.
    assert health.quality_score == 25
    assert health.remediation_score == 0
    # 0.4*50 + 0.3*50 + 0.2*25 + 0.1*0
    assert health.overall_score == 40
    assert health.is_eligible_for_introductions is False


def test_every_required_category_covered_by_non_expiring_documents_has_no_gaps():
    health, gaps = evaluate_pack(_full_set(), now=NOW)

    assert gaps == []
    assert health.completeness_score == 100
    assert health.expiration_score == 100
    assert health.quality_score == 100
    assert health.remediation_score == 100
    assert health.overall_score == 100
    assert health.is_eligible_for_introductions is True


def test_empty_pack_scores_zero_and_reports_every_category_missing():
    health, gaps = evaluate_pack([], now=NOW)

    assert health.overall_score == 0
    assert {g.category for g in gaps} == set(DEFAULT_REQUIRED_CATEGORIES)
    assert all(g.kind == "missing" and g.status == "open" for g in gaps)


def test_expiring_document_earns_partial_credit_and_a_medium_gap():
    cfg = PackHealthConfig(required_categories=("Financial",))
    docs = [_doc("Financial", expires=NOW + timedelta(days=10))]

    health, gaps = evaluate_pack(docs, cfg, now=NOW)
    assert [(g.kind, g.priority, g.id) for g in gaps] == [("expiring", "medium", "gap_expiring_financial")]
    assert health.expiration_score == 70
    # 0.4*100 + 0.3*70 + 0.2*100 + 0.1*0
    assert health.overall_score == 81


def test_all_documents_expired_reports_expired_gap():
    cfg = PackHealthConfig(required_categories=("Financial",))
    docs = [
        _doc("Financial", expires=NOW - timedelta(days=1), doc_id="d1"),
        _doc("Financial", expires=NOW - timedelta(days=90), doc_id="d2"),
    ]

    health, gaps = evaluate_pack(docs, cfg, now=NOW)
    assert [(g.kind, g.priority) for g in gaps] == [("expired", "high")]
    assert health.completeness_score == 100
    assert health.expiration_score == 0
    assert health.overall_score == 60


def test_one_valid_document_outweighs_expired_ones_in_the_same_category():
    cfg = PackHealthConfig(required_categories=("Financial",))
    docs = [
        _doc("Financial", expires=NOW - timedelta(days=1), doc_id="old"),
        _doc("Financial", expires=NOW + timedelta(days=400), doc_id="new"),
    ]
    assert identify_gaps(docs, cfg, now=NOW) == []


def test_acknowledged_gap_keeps_its_status_and_counts_toward_remediation():
    cfg = PackHealthConfig(required_categories=("Financial", "Safety"))
    docs = [_doc("Financial")]

    _, gaps = evaluate_pack(docs, cfg, now=NOW)
    acknowledged = [replace(g, status="acknowledged") for g in gaps]

    health, regaps = evaluate_pack(docs, cfg, now=NOW, previous_gaps=acknowledged)
    assert [g.status for g in regaps] == ["acknowledged"]
    assert health.remediation_score == 100


@pytest.mark.parametrize(
    "docs",
    [
        [],
        [_doc("Financial")],
        [_doc("Other", complete=False)],
        [_doc(c, expires=NOW - timedelta(days=5)) for c in DEFAULT_REQUIRED_CATEGORIES],
        [_doc(c, expires=NOW + timedelta(days=3)) for c in DEFAULT_REQUIRED_CATEGORIES],
        _full_set() + [_doc("Financial", doc_id="dup")],
    ],
)
def test_overall_score_is_bounded_and_eligibility_matches_threshold(docs):
    health = compute_pack_health(docs, now=NOW)
    assert 0 <= health.overall_score <= 100
    assert health.is_eligible_for_introductions == (health.overall_score >= ELIGIBILITY_THRESHOLD)


@pytest.mark.parametrize("category", DEFAULT_REQUIRED_CATEGORIES)
def test_removing_the_only_document_of_a_required_category_never_raises_the_score(category):
    docs = _full_set()
    docs[0] = _doc(docs[0].category, expires=NOW + timedelta(days=5))
    before, gaps = evaluate_pack(docs, now=NOW)

    remaining = [d for d in docs if d.category != category]
    after, _ = evaluate_pack(remaining, now=NOW, previous_gaps=gaps)
    assert after.overall_score <= before.overall_score


def test_removal_is_monotone_even_when_existing_gaps_were_acknowledged():
    docs = [_doc(c) for c in DEFAULT_REQUIRED_CATEGORIES[:4]]
    _, gaps = evaluate_pack(docs, now=NOW)
    acked = [replace(g, status="not_applicable") for g in gaps]
    before, gaps = evaluate_pack(docs, now=NOW, previous_gaps=acked)

    after, _ = evaluate_pack(docs[1:], now=NOW, previous_gaps=gaps)
    assert after.overall_score <= before.overall_score


def test_unusable_configuration_degrades_to_zero_score_and_full_gap_list():
    no_categories = PackHealthConfig(required_categories=())
    health = compute_pack_health(_full_set(), no_categories, now=NOW)
    assert health.overall_score == 0
    assert health.is_eligible_for_introductions is False
    assert [g.category for g in identify_gaps(_full_set(), no_categories, now=NOW)] == list(
        DEFAULT_REQUIRED_CATEGORIES
    )

    zero_weights = PackHealthConfig(weights={"completeness": 0, "expiration": 0, "quality": 0, "remediation": 0})
    assert compute_pack_health(_full_set(), zero_weights, now=NOW).overall_score == 0


def test_weights_are_normalized_by_their_sum():
    cfg = PackHealthConfig(
        required_categories=("Financial", "Safety"),
        weights={"completeness": 2.0, "expiration": 0.0, "quality": 0.0, "remediation": 0.0},
    )
    health = compute_pack_health([_doc("Financial")], cfg, now=NOW)
    assert health.overall_score == health.completeness_score == 50
    assert health.breakdown["completeness"]["weight"] == pytest.approx(1.0)


def test_raw_firestore_documents_are_accepted_and_malformed_entries_skipped():
    cfg = PackHealthConfig(required_categories=("Financial", "Safety"))
    raw = [
        {
            "id": "d1",
            "category": "Financial",
            "fileName": "financial-statements-2024.pdf",
            "expirationDate": (NOW + timedelta(days=200)).isoformat(),
            "metadata": {"documentType": "audit", "notes": "Audited by an external CPA firm"},
        },
        {"id": "d2", "category": ""},
        "not-a-document",
        {"id": "d3", "category": "Safety", "file_size": -5},
    ]
    health, gaps = evaluate_pack(raw, cfg, now=NOW)
    assert health.completeness_score == 50
    assert [g.category for g in gaps] == ["Safety"]


def test_quality_points_follow_the_configured_rules():
    rules = QualityRules()
    assert quality_points(_doc("Financial"), rules) == 4
    assert quality_points(_doc("Other", complete=False), rules) == 1

    untitled = replace(_doc("Financial"), file_name="Untitled document.pdf")
    assert quality_points(untitled, rules) == 3


def test_is_eligible_uses_the_shared_threshold():
    assert is_eligible(ELIGIBILITY_THRESHOLD) is True
    assert is_eligible(ELIGIBILITY_THRESHOLD - 1) is False
    assert is_eligible(None) is False


def test_remediation_actions_are_sorted_by_priority_then_impact():
    cfg = PackHealthConfig(required_categories=("Financial", "Safety", "Security"))
    docs = [
        _doc("Financial", expires=NOW - timedelta(days=1)),
        _doc("Safety", expires=NOW + timedelta(days=5), complete=False),
    ]
    _, gaps = evaluate_pack(docs, cfg, now=NOW)

    actions = remediation_actions(docs, gaps)
    assert [a.id for a in actions] == [
        "action_missing_0",
        "action_expired_0",
        "action_metadata",
        "action_expiring",
    ]


@pytest.mark.parametrize(
    "weights",
    [
        {"completeness": float("inf"), "expiration": 0.3},
        {"completeness": 0.4, "quality": float("nan")},
    ],
)
def test_non_finite_weights_degrade_to_zero_score(weights):
    health = compute_pack_health(_full_set(), PackHealthConfig(weights=weights), now=NOW)
    assert health.overall_score == 0
    assert health.is_eligible_for_introductions is False


def test_non_string_metadata_in_raw_documents_is_tolerated():
    raw = [
        {
            "id": "d1",
            "category": "Financial",
            "file_name": "financial-statements.pdf",
            "metadata": {"notes": 123456789012, "document_type": 7},
        }
    ]
    health, gaps = evaluate_pack(raw, PackHealthConfig(required_categories=("Financial",)), now=NOW)
    assert gaps == []
    assert health.completeness_score == 100
    assert health.quality_score == 100


def test_naive_now_is_read_as_utc():
    cfg = PackHealthConfig(required_categories=("Financial",))
    docs = [_doc("Financial", expires=NOW + timedelta(days=10))]
    naive = NOW.replace(tzinfo=None)

    assert compute_pack_health(docs, cfg, now=naive) == compute_pack_health(docs, cfg, now=NOW)
    assert [g.kind for g in identify_gaps(docs, cfg, now=naive)] == ["expiring"]


@pytest.mark.parametrize(
    "days, expected_kinds",
    [
        (10**9, ["expiring"]),  # clamped to ten years
        (-5, []),  # clamped to zero
        (float("inf"), []),  # default window
    ],
)
def test_out_of_range_warning_window_is_bounded(days, expected_kinds):
    cfg = PackHealthConfig(required_categories=("Financial",), expiration_warning_days=days)
    docs = [_doc("Financial", expires=NOW + timedelta(days=400))]

    health, gaps = evaluate_pack(docs, cfg, now=NOW)
    assert [g.kind for g in gaps] == expected_kinds
    assert 0 <= health.overall_score <= 100


def test_warning_window_past_datetime_max_counts_as_expiring():
    far = datetime.max.replace(tzinfo=timezone.utc) - timedelta(days=1)
    cfg = PackHealthConfig(required_categories=("Financial",))
    docs = [_doc("Financial", expires=far)]

    gaps = identify_gaps(docs, cfg, now=far - timedelta(days=2))
    assert [g.kind for g in gaps] == ["expiring"]
